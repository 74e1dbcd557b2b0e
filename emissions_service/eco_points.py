# eco_points.py
from typing import Optional, NamedTuple

from emissions_service.emissions import normalize_vehicle_type
from emissions_service.errors import MissingRequiredField, ValidationError


class EcoPointRule(NamedTuple):
    points: int
    action_type: str
    description: str


ZERO_EMISSION = "zero_emission"
EV_DELIVERY = "ev_delivery"
RECYCLING = "recycling"

# Automatic awards, evaluated once when a delivery is created
ECO_POINT_RULES = {
    "bike": EcoPointRule(50, ZERO_EMISSION, "Bike delivery - Zero emissions!"),
    "ev": EcoPointRule(30, EV_DELIVERY, "Electric vehicle delivery - Low emissions!"),
}


def evaluate_eco_points(vehicle_type) -> Optional[EcoPointRule]:
    """Return the automatic award for a vehicle choice, or None for van/truck."""
    return ECO_POINT_RULES.get(normalize_vehicle_type(vehicle_type))


def validate_manual_award(user_identifier, points_earned, action_type) -> int:
    """Check a manually awarded grant and return the points as an int."""
    missing = [
        name for name, value in (
            ("user_identifier", user_identifier),
            ("points_earned", points_earned),
            ("action_type", action_type),
        )
        if value is None or (isinstance(value, str) and not value.strip())
    ]
    if missing:
        raise MissingRequiredField(*missing)

    if isinstance(points_earned, bool):
        raise ValidationError("points_earned must be a positive integer")
    if isinstance(points_earned, float) and points_earned.is_integer():
        points_earned = int(points_earned)
    if not isinstance(points_earned, int) or points_earned <= 0:
        raise ValidationError("points_earned must be a positive integer")
    return points_earned
