import pytest

from emissions_service.eco_points import evaluate_eco_points, validate_manual_award
from emissions_service.emissions import (
    EMISSION_FACTORS, compute_carbon_saved, compute_emissions, vehicle_alternatives,
)
from emissions_service.errors import InvalidVehicleType, MissingRequiredField, ValidationError


class TestEmissionModel:

    @pytest.mark.parametrize("vehicle,factor", [("bike", 0.0), ("ev", 0.05), ("van", 0.18), ("truck", 0.27)])
    def test_factor_times_distance(self, vehicle, factor):
        for distance in (0, 1.5, 10, 123.456):
            result = compute_emissions(distance, vehicle)
            assert result.factor == factor
            assert result.co2_kg == pytest.approx(distance * factor, abs=1e-4)

    def test_worked_examples(self):
        bike = compute_emissions(10, "bike")
        assert bike.co2_kg == 0.0
        assert compute_carbon_saved(10, bike.co2_kg) == pytest.approx(2.7)

        truck = compute_emissions(10, "truck")
        assert truck.co2_kg == pytest.approx(2.7)
        assert compute_carbon_saved(10, truck.co2_kg) == pytest.approx(0.0)

        ev = compute_emissions(20, "ev")
        assert ev.co2_kg == pytest.approx(1.0)
        assert compute_carbon_saved(20, ev.co2_kg) == pytest.approx(4.4)

    def test_vehicle_type_is_case_insensitive(self):
        assert compute_emissions(10, " EV ").factor == 0.05

    @pytest.mark.parametrize("vehicle", ["scooter", "", None, 3])
    def test_unknown_vehicle_is_rejected(self, vehicle):
        with pytest.raises(InvalidVehicleType):
            compute_emissions(10, vehicle)

    @pytest.mark.parametrize("distance", [-1, "far", None, float("nan"), True])
    def test_bad_distance_is_rejected(self, distance):
        with pytest.raises(ValidationError):
            compute_emissions(distance, "van")

    def test_carbon_saved_is_not_clamped(self):
        # more than a truck would emit: surfaced as a negative saving
        assert compute_carbon_saved(10, 5.0) == pytest.approx(-2.3)

    def test_alternatives_cover_every_vehicle(self):
        alternatives = vehicle_alternatives(10)
        assert [a["vehicle_type"] for a in alternatives] == list(EMISSION_FACTORS)
        recommended = [a["vehicle_type"] for a in alternatives if a["recommended"]]
        assert recommended == ["bike"]
        truck = next(a for a in alternatives if a["vehicle_type"] == "truck")
        assert truck["carbon_saved"] == 0.0


class TestEcoPointRules:

    def test_bike(self):
        rule = evaluate_eco_points("bike")
        assert (rule.points, rule.action_type) == (50, "zero_emission")

    def test_ev(self):
        rule = evaluate_eco_points("ev")
        assert (rule.points, rule.action_type) == (30, "ev_delivery")

    @pytest.mark.parametrize("vehicle", ["van", "truck"])
    def test_no_award_for_fossil_vehicles(self, vehicle):
        assert evaluate_eco_points(vehicle) is None

    def test_unknown_vehicle(self):
        with pytest.raises(InvalidVehicleType):
            evaluate_eco_points("scooter")

    def test_manual_award_validation(self):
        assert validate_manual_award("alice", 20, "recycling") == 20
        assert validate_manual_award("alice", 20.0, "recycling") == 20

        with pytest.raises(MissingRequiredField) as exc:
            validate_manual_award("  ", None, "recycling")
        assert exc.value.fields == ["user_identifier", "points_earned"]

        for bad in (0, -5, 2.5, "10", True):
            with pytest.raises(ValidationError):
                validate_manual_award("alice", bad, "recycling")
