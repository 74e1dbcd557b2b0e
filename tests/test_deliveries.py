import pytest
from sqlalchemy import Column, DateTime, Float, Integer, MetaData, String, Table

from emissions_service import store
from emissions_service.database import database, row_to_dict
from emissions_service.models import deliveries, emissions, eco_points, orders


class TestCreateDelivery:

    def test_bike_delivery_gets_emission_and_points(self, client):
        response = client.post("/deliveries", json={
            "order_id": "ORD-1",
            "shipment_id": "SHIP-1",
            "distance_km": 10,
            "vehicle_type": "bike",
        })
        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert data["emission"]["co2_emissions_kg"] == 0.0
        assert data["emission"]["emission_factor"] == 0.0
        assert data["eco_points_awarded"] == 50

        delivery = data["delivery"]
        assert delivery["status"] == "pending"
        assert delivery["shipment_id"] == "SHIP-1"
        assert delivery["delivery_attempts"] == 1
        assert [p["action_type"] for p in delivery["eco_points"]] == ["zero_emission"]
        # falls back to the order id when no customer name is given
        assert delivery["eco_points"][0]["user_identifier"] == "ORD-1"

    def test_round_trip_matches_formula(self, client, make_delivery):
        created = make_delivery("ev", distance_km=20)
        response = client.get(f"/deliveries/{created['delivery_id']}")
        assert response.status_code == 200
        delivery = response.json()["data"]
        assert delivery["co2_emissions_kg"] == pytest.approx(1.0)
        assert delivery["emission_factor"] == 0.05
        assert [(p["points_earned"], p["action_type"]) for p in delivery["eco_points"]] == [(30, "ev_delivery")]

    @pytest.mark.parametrize("vehicle", ["van", "truck"])
    def test_no_points_for_van_and_truck(self, client, make_delivery, vehicle):
        created = make_delivery(vehicle, distance_km=10)
        delivery = client.get(f"/deliveries/{created['delivery_id']}").json()["data"]
        assert delivery["eco_points"] == []

    def test_shipment_id_is_generated(self, make_delivery):
        delivery = make_delivery("van")
        assert delivery["shipment_id"].startswith("SHIP-")
        suffix = delivery["shipment_id"].rsplit("-", 1)[1]
        assert len(suffix) == 6 and suffix.isalnum() and suffix.upper() == suffix

    def test_unknown_vehicle_persists_nothing(self, client, count_rows):
        response = client.post("/deliveries", json={
            "order_id": "ORD-X", "distance_km": 10, "vehicle_type": "scooter",
        })
        assert response.status_code == 400
        assert response.json()["success"] is False
        assert "vehicle" in response.json()["error"].lower()
        for table in (orders, deliveries, emissions, eco_points):
            assert count_rows(table) == 0

    def test_missing_fields(self, client, count_rows):
        response = client.post("/deliveries", json={"order_id": "ORD-1"})
        assert response.status_code == 400
        error = response.json()["error"]
        assert "distance_km" in error and "vehicle_type" in error
        assert count_rows(deliveries) == 0

    def test_zero_distance_is_valid(self, make_delivery):
        assert make_delivery("truck", distance_km=0)["co2_emissions_kg"] == 0.0

    def test_duplicate_shipment_is_rejected(self, client, make_delivery, count_rows):
        make_delivery("van", shipment_id="SHIP-DUP")
        response = client.post("/deliveries", json={
            "order_id": "ORD-9", "shipment_id": "SHIP-DUP", "distance_km": 3, "vehicle_type": "van",
        })
        assert response.status_code == 400
        assert count_rows(deliveries) == 1

    def test_order_is_upserted(self, client, make_delivery, count_rows):
        first = make_delivery("van", order_id="ORD-7", customer_name="Ada")
        second = make_delivery("bike", order_id="ORD-7", customer_name="Ada L.", customer_phone="555-0100")
        assert count_rows(orders) == 1

        again = client.get(f"/deliveries/{first['delivery_id']}").json()["data"]
        assert again["customer_name"] == "Ada L."
        assert again["customer_phone"] == "555-0100"
        assert second["eco_points"][0]["user_identifier"] == "Ada L."

    def test_upsert_without_name_keeps_existing_customer(self, client, make_delivery):
        make_delivery("van", order_id="ORD-8", customer_name="Grace")
        created = make_delivery("van", order_id="ORD-8")
        assert created["customer_name"] == "Grace"

    def test_emission_failure_rolls_back_delivery(self, client, count_rows, monkeypatch):
        broken = Table(
            "no_such_emissions", MetaData(),
            Column("emission_id", String, primary_key=True),
            Column("delivery_id", Integer),
            Column("vehicle_type", String),
            Column("distance_km", Float),
            Column("co2_emissions_kg", Float),
            Column("emission_factor", Float),
            Column("created_at", DateTime),
        )
        monkeypatch.setattr(store, "emissions", broken)

        response = client.post("/deliveries", json={
            "order_id": "ORD-RB", "distance_km": 5, "vehicle_type": "van",
        })
        assert response.status_code == 500
        assert response.json()["success"] is False
        assert count_rows(orders) == 0
        assert count_rows(deliveries) == 0

    def test_eco_points_failure_keeps_delivery(self, client, count_rows, monkeypatch):
        def boom(vehicle_type):
            raise RuntimeError("points store down")

        monkeypatch.setattr(store, "evaluate_eco_points", boom)
        response = client.post("/deliveries", json={
            "order_id": "ORD-EP", "distance_km": 5, "vehicle_type": "bike",
        })
        assert response.status_code == 201
        assert response.json()["data"]["eco_points_awarded"] == 0
        assert count_rows(deliveries) == 1
        assert count_rows(emissions) == 1
        assert count_rows(eco_points) == 0


class TestGetDelivery:

    def test_not_found(self, client):
        response = client.get("/deliveries/9999")
        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Delivery not found"}

    def test_repeated_reads_are_identical(self, client, make_delivery):
        created = make_delivery("ev")
        first = client.get(f"/deliveries/{created['delivery_id']}").json()
        second = client.get(f"/deliveries/{created['delivery_id']}").json()
        assert first == second

    def test_record_converts_to_plain_dict(self, client, make_delivery):
        created = make_delivery("ev", distance_km=0.1)

        async def _fetch():
            row = await database.fetch_one(
                deliveries.select().where(deliveries.c.delivery_id == created["delivery_id"])
            )
            return row_to_dict(row)

        row = client.portal.call(_fetch)
        assert type(row) is dict
        assert row["shipment_id"] == created["shipment_id"]
        assert row["vehicle_type"] == "ev"
        assert row["distance_km"] == pytest.approx(0.1)
        assert row_to_dict(None) is None


class TestListDeliveries:

    def test_newest_first_with_filters(self, client, make_delivery):
        bike = make_delivery("bike")
        van = make_delivery("van")
        truck = make_delivery("truck")

        rows = client.get("/deliveries").json()["data"]
        assert [r["delivery_id"] for r in rows] == [truck["delivery_id"], van["delivery_id"], bike["delivery_id"]]

        body = client.get("/deliveries", params={"vehicle_type": "bike"}).json()
        assert body["count"] == 1
        assert body["data"][0]["co2_emissions_kg"] == 0.0

        client.put(f"/deliveries/{van['delivery_id']}", json={"status": "delivered"})
        delivered = client.get("/deliveries", params={"status": "delivered"}).json()["data"]
        assert [r["delivery_id"] for r in delivered] == [van["delivery_id"]]

    def test_pagination_boundaries(self, client, make_delivery):
        for _ in range(3):
            make_delivery("van")
        assert client.get("/deliveries", params={"limit": 0}).json()["data"] == []
        assert client.get("/deliveries", params={"offset": 10}).json()["data"] == []
        assert len(client.get("/deliveries", params={"limit": 2, "offset": 2}).json()["data"]) == 1

    def test_bad_filters(self, client):
        assert client.get("/deliveries", params={"status": "lost"}).status_code == 400
        assert client.get("/deliveries", params={"vehicle_type": "scooter"}).status_code == 400
        assert client.get("/deliveries", params={"limit": -1}).status_code == 400
        assert client.get("/deliveries", params={"limit": "many"}).status_code == 400


class TestUpdateDelivery:

    def test_delivered_stamps_completed_at(self, client, make_delivery):
        created = make_delivery("van")
        response = client.put(f"/deliveries/{created['delivery_id']}", json={"status": "delivered"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["status"] == "delivered"
        assert data["completed_at"] is not None
        assert data["failed_at"] is None

    def test_failed_then_in_transit_keeps_failed_at(self, client, make_delivery):
        created = make_delivery("van")
        url = f"/deliveries/{created['delivery_id']}"
        failed = client.put(url, json={"status": "failed", "delivery_attempts": 2}).json()["data"]
        assert failed["failed_at"] is not None
        assert failed["delivery_attempts"] == 2

        retried = client.put(url, json={"status": "in_transit"}).json()["data"]
        assert retried["status"] == "in_transit"
        assert retried["failed_at"] == failed["failed_at"]
        assert retried["completed_at"] is None

    def test_attempts_only(self, client, make_delivery):
        created = make_delivery("van")
        data = client.put(f"/deliveries/{created['delivery_id']}", json={"delivery_attempts": 3}).json()["data"]
        assert data["delivery_attempts"] == 3
        assert data["status"] == "pending"

    def test_no_fields(self, client, make_delivery):
        created = make_delivery("van")
        response = client.put(f"/deliveries/{created['delivery_id']}", json={})
        assert response.status_code == 400
        assert response.json()["error"] == "No fields to update"

    def test_not_found_changes_nothing(self, client, make_delivery):
        created = make_delivery("van")
        before = client.get("/deliveries").json()["data"]
        response = client.put("/deliveries/424242", json={"status": "delivered"})
        assert response.status_code == 404
        assert client.get("/deliveries").json()["data"] == before
        assert before[0]["delivery_id"] == created["delivery_id"]

    def test_invalid_status(self, client, make_delivery):
        created = make_delivery("van")
        assert client.put(f"/deliveries/{created['delivery_id']}", json={"status": "lost"}).status_code == 400

    def test_status_update_does_not_reaward_points(self, client, make_delivery, count_rows):
        created = make_delivery("bike")
        client.put(f"/deliveries/{created['delivery_id']}", json={"status": "delivered"})
        assert count_rows(eco_points) == 1
