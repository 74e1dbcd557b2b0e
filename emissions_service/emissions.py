# emissions.py
from typing import Dict, List, NamedTuple

from emissions_service.errors import InvalidVehicleType, ValidationError
from emissions_service.schemas import VehicleType

# kg CO2 per km
EMISSION_FACTORS: Dict[str, float] = {
    VehicleType.bike.value: 0.0,
    VehicleType.ev.value: 0.05,
    VehicleType.van.value: 0.18,
    VehicleType.truck.value: 0.27,
}

BASELINE_VEHICLE = VehicleType.truck.value
BASELINE_FACTOR = EMISSION_FACTORS[BASELINE_VEHICLE]

PRECISION = 4


class EmissionResult(NamedTuple):
    factor: float
    co2_kg: float


def normalize_vehicle_type(vehicle_type) -> str:
    """Return the canonical vehicle type string or raise InvalidVehicleType."""
    if isinstance(vehicle_type, VehicleType):
        return vehicle_type.value
    if isinstance(vehicle_type, str) and vehicle_type.strip().lower() in EMISSION_FACTORS:
        return vehicle_type.strip().lower()
    raise InvalidVehicleType(vehicle_type)


def emission_factor(vehicle_type) -> float:
    return EMISSION_FACTORS[normalize_vehicle_type(vehicle_type)]


def compute_emissions(distance_km: float, vehicle_type) -> EmissionResult:
    """
    CO2 for a trip: distance_km * factor(vehicle_type), kept to 4 decimals.
    Raises InvalidVehicleType for unknown vehicles and ValidationError
    for negative or non-numeric distances.
    """
    factor = emission_factor(vehicle_type)
    distance = _as_distance(distance_km)
    return EmissionResult(factor=factor, co2_kg=round(distance * factor, PRECISION))


def compute_carbon_saved(distance_km: float, actual_co2_kg: float) -> float:
    """Savings against the all-truck baseline. Not clamped: a negative result is an anomaly worth seeing."""
    baseline = _as_distance(distance_km) * BASELINE_FACTOR
    return round(baseline - float(actual_co2_kg), PRECISION)


def vehicle_alternatives(distance_km: float) -> List[dict]:
    distance = _as_distance(distance_km)
    lowest = min(EMISSION_FACTORS.values())
    alternatives = []
    for vehicle, factor in EMISSION_FACTORS.items():
        co2 = round(distance * factor, PRECISION)
        alternatives.append({
            "vehicle_type": vehicle,
            "emission_factor": factor,
            "co2_emissions": co2,
            "carbon_saved": compute_carbon_saved(distance, co2),
            "recommended": factor == lowest,
        })
    return alternatives


def _as_distance(distance_km) -> float:
    if isinstance(distance_km, bool):
        raise ValidationError(f"Invalid distance: {distance_km!r}")
    try:
        distance = float(distance_km)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid distance: {distance_km!r}")
    if distance < 0 or distance != distance:
        raise ValidationError(f"Distance must be non-negative, got {distance_km!r}")
    return distance
