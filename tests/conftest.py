import os
import tempfile

TEST_DB = os.path.join(tempfile.gettempdir(), "ecologix_emissions_test.db")
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB}"
os.environ["USE_AWS"] = "False"
os.environ.pop("GOOGLE_MAPS_API_KEY", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select, func

from emissions_service.database import engine
from emissions_service.main import app
from emissions_service.reset_db import reset_tables


@pytest.fixture
def client():
    """Test client on a freshly reset database."""
    reset_tables(engine)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def count_rows():
    def _count(table):
        with engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(table)).scalar()
    return _count


@pytest.fixture
def make_delivery(client):
    """POST /deliveries with sensible defaults; returns the created delivery."""
    counter = {"n": 0}

    def _make(vehicle_type="van", distance_km=10.0, order_id=None, **fields):
        counter["n"] += 1
        body = {
            "order_id": order_id or f"ORD-{counter['n']}",
            "origin_address": "1 Market St",
            "origin_city": "San Francisco, CA",
            "destination_address": "500 Castro St",
            "destination_city": "Mountain View, CA",
            "distance_km": distance_km,
            "vehicle_type": vehicle_type,
        }
        body.update(fields)
        response = client.post("/deliveries", json=body)
        assert response.status_code == 201, response.text
        return response.json()["data"]["delivery"]

    return _make
