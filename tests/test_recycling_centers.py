import pytest

from emissions_service import store
from emissions_service.database import database
from emissions_service.geo import haversine_km
from emissions_service.schemas import RecyclingCenter

CENTERS = [
    RecyclingCenter(name="Mission Recycling", city="San Francisco", lat=37.7599, lng=-122.4148,
                    accepted_materials=["paper", "glass"]),
    RecyclingCenter(name="Oakland Drop-off", city="Oakland", lat=37.8044, lng=-122.2712,
                    accepted_materials=["plastic"]),
    RecyclingCenter(name="San Jose Depot", city="San Jose", lat=37.3382, lng=-121.8863),
    RecyclingCenter(name="Unmapped Center", city="Nowhere"),
]


def seed(client):
    async def _seed():
        if not database.is_connected:
            await database.connect()
        return await store.add_recycling_centers(CENTERS)
    return client.portal.call(_seed)


def test_haversine_known_distance():
    # San Francisco to Los Angeles
    assert haversine_km(37.7749, -122.4194, 34.0522, -118.2437) == pytest.approx(559, abs=2)
    assert haversine_km(10, 10, 10, 10) == 0


def test_nearest_first_within_radius(client):
    assert seed(client) == 4
    response = client.get("/recycling-centers", params={"lat": 37.7749, "lng": -122.4194, "radius": 25})
    assert response.status_code == 200
    body = response.json()
    assert [c["name"] for c in body["data"]] == ["Mission Recycling", "Oakland Drop-off"]
    assert body["count"] == 2
    distances = [c["distance_km"] for c in body["data"]]
    assert distances == sorted(distances)
    assert body["data"][0]["accepted_materials"] == ["paper", "glass"]


def test_wide_radius_and_limit(client):
    seed(client)
    data = client.get("/recycling-centers", params={
        "lat": 37.7749, "lng": -122.4194, "radius": 100, "limit": 2,
    }).json()["data"]
    assert len(data) == 2


def test_without_coordinates_lists_all(client):
    seed(client)
    data = client.get("/recycling-centers").json()["data"]
    assert len(data) == 4
    assert all("distance_km" not in c for c in data)
