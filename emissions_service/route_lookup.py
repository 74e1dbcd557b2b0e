# route_lookup.py
"""
Google Maps route lookup: geocode both addresses, then ask the Distance
Matrix API for the driving distance and duration between the two points.
"""
import logging
from functools import partial
from typing import Callable, Optional

import httpx

from emissions_service.config import GOOGLE_MAPS_API_KEY, GOOGLE_MAPS_BASE_URL, ROUTE_LOOKUP_TIMEOUT
from emissions_service.errors import ConfigurationError, UpstreamLookupError
from emissions_service.schemas import RouteInfo, RoutePoint

logger = logging.getLogger("emissions-service.route_lookup")


def extract_city(address_components: list) -> str:
    """'City, ST' from geocoder address components, or 'Unknown'."""
    city = next(
        (c for c in address_components
         if "locality" in c.get("types", []) or "administrative_area_level_2" in c.get("types", [])),
        None,
    )
    state = next(
        (c for c in address_components if "administrative_area_level_1" in c.get("types", [])),
        None,
    )
    if city and state:
        return f"{city['long_name']}, {state['short_name']}"
    if city:
        return city["long_name"]
    return "Unknown"


class RouteLookupClient:
    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = GOOGLE_MAPS_BASE_URL,
        timeout: float = ROUTE_LOOKUP_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not api_key:
            raise ConfigurationError("Google Maps API key not configured")
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def _get_json(self, client: httpx.AsyncClient, path: str, params: dict, what: str) -> dict:
        try:
            response = await client.get(path, params={**params, "key": self.api_key})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"[RouteLookup] ⚠ {what} request failed: {e}")
            raise UpstreamLookupError(f"Could not {what}") from e

    async def geocode(self, client: httpx.AsyncClient, address: str, label: str) -> RoutePoint:
        data = await self._get_json(client, "/geocode/json", {"address": address}, f"geocode {label} address")
        results = data.get("results") or []
        if data.get("status") != "OK" or not results:
            logger.warning(f"[RouteLookup] Geocoding {label} failed: status={data.get('status')}")
            raise UpstreamLookupError(f"Could not geocode {label} address")

        best = results[0]
        location = best["geometry"]["location"]
        return RoutePoint(
            address=best.get("formatted_address", address),
            city=extract_city(best.get("address_components", [])),
            lat=location["lat"],
            lng=location["lng"],
        )

    async def distance(self, client: httpx.AsyncClient, origin: RoutePoint, destination: RoutePoint):
        data = await self._get_json(
            client,
            "/distancematrix/json",
            {
                "origins": f"{origin.lat},{origin.lng}",
                "destinations": f"{destination.lat},{destination.lng}",
                "mode": "driving",
            },
            "calculate distance",
        )
        try:
            element = data["rows"][0]["elements"][0]
            meters = element["distance"]["value"]
            seconds = element["duration"]["value"]
        except (KeyError, IndexError, TypeError):
            element = None
        if data.get("status") != "OK" or element is None:
            logger.warning(f"[RouteLookup] Distance matrix failed: status={data.get('status')}")
            raise UpstreamLookupError("Could not calculate distance")

        return round(meters / 1000, 2), round(seconds / 60)

    async def lookup(self, origin_address: str, destination_address: str) -> RouteInfo:
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        ) as client:
            origin = await self.geocode(client, origin_address, "origin")
            destination = await self.geocode(client, destination_address, "destination")
            distance_km, duration_minutes = await self.distance(client, origin, destination)

        logger.info(f"[RouteLookup] 🗺️ {origin.city} → {destination.city}: {distance_km} km, {duration_minutes} min")
        return RouteInfo(
            origin=origin,
            destination=destination,
            distance_km=distance_km,
            duration_minutes=duration_minutes,
        )


def get_route_lookup() -> Callable[[], RouteLookupClient]:
    """FastAPI dependency returning a client factory.

    The factory raises ConfigurationError when no API key is set, so callers
    validate their input before building the client.
    """
    return partial(RouteLookupClient, GOOGLE_MAPS_API_KEY)
