# models.py
from datetime import datetime

from sqlalchemy import (
    Table, Column, String, Integer, Float, Text, JSON, DateTime, ForeignKey, UniqueConstraint
)

from emissions_service.database import metadata

# ------------------------
# Orders table
# ------------------------
orders = Table(
    "orders",
    metadata,
    Column("order_id", String, primary_key=True),
    Column("customer_name", String, nullable=False),
    Column("customer_phone", String, nullable=True),
    Column("status", String, nullable=False, default="pending"),
    Column("created_at", DateTime, default=datetime.utcnow, index=True),
)

# ------------------------
# Deliveries table
# ------------------------
deliveries = Table(
    "deliveries",
    metadata,
    Column("delivery_id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String, ForeignKey("orders.order_id"), nullable=False, index=True),
    Column("shipment_id", String, nullable=False, unique=True),
    Column("origin_address", String, nullable=True),
    Column("origin_city", String, nullable=True),
    Column("origin_lat", Float, nullable=True),
    Column("origin_lng", Float, nullable=True),
    Column("destination_address", String, nullable=True),
    Column("destination_city", String, nullable=True),
    Column("destination_lat", Float, nullable=True),
    Column("destination_lng", Float, nullable=True),
    Column("distance_km", Float, nullable=False),
    Column("vehicle_type", String, nullable=False),
    Column("status", String, nullable=False, default="pending"),
    Column("delivery_attempts", Integer, nullable=False, default=1),
    Column("created_at", DateTime, default=datetime.utcnow, index=True),
    Column("completed_at", DateTime, nullable=True),
    Column("failed_at", DateTime, nullable=True),
)

# ------------------------
# Emissions table (one row per delivery)
# ------------------------
emissions = Table(
    "emissions",
    metadata,
    Column("emission_id", String, primary_key=True),
    Column("delivery_id", Integer, ForeignKey("deliveries.delivery_id"), nullable=False, unique=True),
    Column("vehicle_type", String, nullable=False),
    Column("distance_km", Float, nullable=False),
    Column("co2_emissions_kg", Float, nullable=False),
    Column("emission_factor", Float, nullable=False),
    Column("created_at", DateTime, default=datetime.utcnow),
)

# ------------------------
# Eco points
# ------------------------
eco_points = Table(
    "eco_points",
    metadata,
    Column("point_id", String, primary_key=True),
    Column("user_identifier", String, nullable=False, index=True),
    Column("delivery_id", Integer, ForeignKey("deliveries.delivery_id"), nullable=True, index=True),
    Column("points_earned", Integer, nullable=False),
    Column("action_type", String, nullable=False),
    Column("description", Text, nullable=True),
    Column("created_at", DateTime, default=datetime.utcnow, index=True),
)

# ------------------------
# Recycling centers (reference data)
# ------------------------
recycling_centers = Table(
    "recycling_centers",
    metadata,
    Column("center_id", Integer, primary_key=True, autoincrement=True),
    Column("name", String, nullable=False),
    Column("address", String, nullable=True),
    Column("city", String, nullable=True),
    Column("phone", String, nullable=True),
    Column("hours", String, nullable=True),
    Column("accepted_materials", JSON, nullable=True),
    Column("lat", Float, nullable=True),
    Column("lng", Float, nullable=True),
    Column("created_at", DateTime, default=datetime.utcnow),
    UniqueConstraint("name", "address", name="uix_center_name_address"),
)

ALL_TABLES = [orders, deliveries, emissions, eco_points, recycling_centers]
