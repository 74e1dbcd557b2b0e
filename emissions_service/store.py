# store.py
"""
Delivery record store.

Owns the orders, deliveries, emissions and eco_points tables. A delivery and
its emission row are always written in the same transaction; the automatic
eco-points award runs after commit and is best effort.
"""
import logging
import random
import string
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, func, desc, and_
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from emissions_service.database import database, row_to_dict
from emissions_service.eco_points import evaluate_eco_points, validate_manual_award
from emissions_service.emissions import compute_emissions, normalize_vehicle_type
from emissions_service.errors import (
    EmissionsServiceError, DeliveryNotFound, MissingRequiredField, NoFieldsToUpdate,
    PersistenceError, ValidationError,
)
from emissions_service.geo import haversine_km, bounding_box
from emissions_service.models import orders, deliveries, emissions, eco_points, recycling_centers
from emissions_service.queries import (
    DeliveryFilters, clamp_limit, check_offset, delivery_detail_select, normalize_status,
)
from emissions_service.schemas import (
    DeliveryStatus, EcoPointAward, OrderCreate, OrderInfo, RecyclingCenter, RouteInfo, UserIdentifier,
)

logger = logging.getLogger("emissions-service.store")

UPSERT_INSERTS = {
    "postgresql": postgresql_insert,
    "sqlite": sqlite_insert,
}


def generate_shipment_id() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=6))
    return f"SHIP-{int(time.time() * 1000)}-{suffix}"


@asynccontextmanager
async def unit_of_work(operation: str, identifier=None):
    """One database transaction; store failures surface as PersistenceError."""
    try:
        async with database.transaction():
            yield
    except EmissionsServiceError:
        raise
    except Exception as e:
        logger.error(f"[{operation}] ❌ Rolled back ({identifier}): {e}")
        raise PersistenceError(f"{operation} failed") from e


# ------------------------- ORDERS -------------------------
async def _upsert_order(order: OrderInfo, now: datetime):
    values = {
        "order_id": order.order_id,
        "customer_name": order.customer_name or order.order_id,
        "customer_phone": order.customer_phone,
        "status": DeliveryStatus.pending.value,
        "created_at": now,
    }
    updates = {}
    if order.customer_name:
        updates["customer_name"] = order.customer_name
    if order.customer_phone is not None:
        updates["customer_phone"] = order.customer_phone

    insert_fn = UPSERT_INSERTS.get(database.url.dialect)
    if insert_fn is not None:
        stmt = insert_fn(orders).values(**values)
        if updates:
            stmt = stmt.on_conflict_do_update(
                index_elements=[orders.c.order_id],
                set_={key: stmt.excluded[key] for key in updates},
            )
        else:
            stmt = stmt.on_conflict_do_nothing(index_elements=[orders.c.order_id])
        await database.execute(stmt)
        return

    existing = await database.fetch_one(
        select(orders.c.order_id).where(orders.c.order_id == order.order_id)
    )
    if existing is None:
        await database.execute(orders.insert().values(**values))
    elif updates:
        await database.execute(
            orders.update().where(orders.c.order_id == order.order_id).values(**updates)
        )


async def create_order(body: OrderCreate) -> dict:
    missing = [name for name in ("order_id", "customer_name") if not getattr(body, name)]
    if missing:
        raise MissingRequiredField(*missing)
    status = normalize_status(body.status)

    existing = await database.fetch_one(
        select(orders.c.order_id).where(orders.c.order_id == body.order_id)
    )
    if existing:
        raise ValidationError(f"Order {body.order_id} already exists")

    async with unit_of_work("create_order", body.order_id):
        await database.execute(
            orders.insert().values(
                order_id=body.order_id,
                customer_name=body.customer_name,
                customer_phone=body.customer_phone,
                status=status,
                created_at=datetime.utcnow(),
            )
        )
    row = await database.fetch_one(orders.select().where(orders.c.order_id == body.order_id))
    return row_to_dict(row)


async def list_orders(limit: Optional[int] = None, offset: Optional[int] = None) -> List[dict]:
    limit = clamp_limit(limit)
    offset = check_offset(offset)
    if limit == 0:
        return []
    query = (
        select(
            orders,
            func.count(deliveries.c.delivery_id).label("delivery_count"),
            func.coalesce(func.sum(emissions.c.co2_emissions_kg), 0).label("total_emissions"),
        )
        .select_from(
            orders
            .outerjoin(deliveries, orders.c.order_id == deliveries.c.order_id)
            .outerjoin(emissions, deliveries.c.delivery_id == emissions.c.delivery_id)
        )
        .group_by(*orders.c)
        .order_by(desc(orders.c.created_at), desc(orders.c.order_id))
        .limit(limit)
        .offset(offset)
    )
    rows = await database.fetch_all(query)
    return [row_to_dict(row) for row in rows]


# ------------------------- DELIVERIES -------------------------
async def create_delivery(
    order: OrderInfo,
    route: RouteInfo,
    vehicle_type,
    shipment_id: Optional[str] = None,
) -> dict:
    """
    Upsert the order, insert the delivery (status pending) and its emission
    in one transaction, then award automatic eco-points.

    Validation happens before anything is written. Returns the delivery
    detail (see get_delivery) plus eco_points_awarded.
    """
    missing = []
    if not order.order_id:
        missing.append("order_id")
    if route.distance_km is None:
        missing.append("distance_km")
    if not vehicle_type:
        missing.append("vehicle_type")
    if missing:
        raise MissingRequiredField(*missing)

    vehicle = normalize_vehicle_type(vehicle_type)
    emission = compute_emissions(route.distance_km, vehicle)
    distance_km = float(route.distance_km)
    shipment_id = shipment_id or generate_shipment_id()

    duplicate = await database.fetch_one(
        select(deliveries.c.delivery_id).where(deliveries.c.shipment_id == shipment_id)
    )
    if duplicate:
        raise ValidationError(f"Shipment {shipment_id} already exists")

    now = datetime.utcnow()
    async with unit_of_work("create_delivery", shipment_id):
        await _upsert_order(order, now)
        await database.execute(
            deliveries.insert().values(
                order_id=order.order_id,
                shipment_id=shipment_id,
                origin_address=route.origin.address,
                origin_city=route.origin.city,
                origin_lat=route.origin.lat,
                origin_lng=route.origin.lng,
                destination_address=route.destination.address,
                destination_city=route.destination.city,
                destination_lat=route.destination.lat,
                destination_lng=route.destination.lng,
                distance_km=distance_km,
                vehicle_type=vehicle,
                status=DeliveryStatus.pending.value,
                delivery_attempts=1,
                created_at=now,
            )
        )
        row = await database.fetch_one(
            select(deliveries.c.delivery_id).where(deliveries.c.shipment_id == shipment_id)
        )
        delivery_id = row_to_dict(row)["delivery_id"]
        await database.execute(
            emissions.insert().values(
                emission_id=str(uuid.uuid4()),
                delivery_id=delivery_id,
                vehicle_type=vehicle,
                distance_km=distance_km,
                co2_emissions_kg=emission.co2_kg,
                emission_factor=emission.factor,
                created_at=now,
            )
        )

    logger.info(
        f"✅ Delivery {delivery_id} ({shipment_id}) created for order {order.order_id}: "
        f"{distance_km} km by {vehicle} = {emission.co2_kg} kg CO2"
    )

    user_identifier = order.customer_name or order.order_id
    awarded = await award_automatic_points(delivery_id, user_identifier, vehicle)

    detail = await get_delivery(delivery_id)
    detail["eco_points_awarded"] = awarded["points_earned"] if awarded else 0
    return detail


async def award_automatic_points(delivery_id: int, user_identifier: UserIdentifier, vehicle_type) -> Optional[dict]:
    """
    Best-effort award for a green vehicle choice. At most one award per
    (delivery, action_type); failures are logged and swallowed so the
    delivery and its emission stay committed.
    """
    try:
        rule = evaluate_eco_points(vehicle_type)
        if rule is None:
            return None
        existing = await database.fetch_one(
            eco_points.select().where(
                and_(
                    eco_points.c.delivery_id == delivery_id,
                    eco_points.c.action_type == rule.action_type,
                )
            )
        )
        if existing:
            logger.info(f"[EcoPoints] Skip duplicate {rule.action_type} for delivery {delivery_id}")
            return row_to_dict(existing)

        point_id = str(uuid.uuid4())
        await database.execute(
            eco_points.insert().values(
                point_id=point_id,
                user_identifier=user_identifier,
                delivery_id=delivery_id,
                points_earned=rule.points,
                action_type=rule.action_type,
                description=rule.description,
                created_at=datetime.utcnow(),
            )
        )
    except Exception as e:
        logger.warning(f"[EcoPoints] ⚠ Award failed for delivery {delivery_id}: {e}")
        return None

    logger.info(f"[EcoPoints] 🌱 {rule.points} points ({rule.action_type}) to {user_identifier}")
    return {
        "point_id": point_id,
        "user_identifier": user_identifier,
        "delivery_id": delivery_id,
        "points_earned": rule.points,
        "action_type": rule.action_type,
        "description": rule.description,
    }


async def get_delivery(delivery_id: int) -> dict:
    row = await database.fetch_one(
        delivery_detail_select().where(deliveries.c.delivery_id == delivery_id)
    )
    if row is None:
        raise DeliveryNotFound(delivery_id)

    points = await database.fetch_all(
        eco_points.select()
        .where(eco_points.c.delivery_id == delivery_id)
        .order_by(desc(eco_points.c.created_at), desc(eco_points.c.point_id))
    )
    delivery = row_to_dict(row)
    delivery["eco_points"] = [row_to_dict(p) for p in points]
    return delivery


async def list_deliveries(filters: DeliveryFilters) -> List[dict]:
    if filters.limit == 0:
        return []
    rows = await database.fetch_all(filters.build())
    return [row_to_dict(row) for row in rows]


async def update_delivery_status(
    delivery_id: int,
    status: Optional[str] = None,
    delivery_attempts: Optional[int] = None,
) -> dict:
    """
    Move a delivery to any status and/or set its attempt count.

    completed_at is stamped on delivered, failed_at on failed; other
    transitions leave both stamps alone.
    """
    if status is None and delivery_attempts is None:
        raise NoFieldsToUpdate()

    values = {}
    now = datetime.utcnow()
    if status is not None:
        status = normalize_status(status)
        values["status"] = status
        if status == DeliveryStatus.delivered.value:
            values["completed_at"] = now
        elif status == DeliveryStatus.failed.value:
            values["failed_at"] = now
    if delivery_attempts is not None:
        if isinstance(delivery_attempts, bool) or not isinstance(delivery_attempts, int) or delivery_attempts < 0:
            raise ValidationError("delivery_attempts must be a non-negative integer")
        values["delivery_attempts"] = delivery_attempts

    async with unit_of_work("update_delivery_status", delivery_id):
        existing = await database.fetch_one(
            select(deliveries.c.delivery_id).where(deliveries.c.delivery_id == delivery_id)
        )
        if existing is None:
            raise DeliveryNotFound(delivery_id)
        await database.execute(
            deliveries.update().where(deliveries.c.delivery_id == delivery_id).values(**values)
        )

    row = await database.fetch_one(deliveries.select().where(deliveries.c.delivery_id == delivery_id))
    logger.info(f"✏️ Delivery {delivery_id} updated: {sorted(values)}")
    return row_to_dict(row)


# ------------------------- ECO POINTS -------------------------
async def award_eco_points(body: EcoPointAward) -> dict:
    points = validate_manual_award(body.user_identifier, body.points_earned, body.action_type)

    if body.delivery_id is not None:
        exists = await database.fetch_one(
            select(deliveries.c.delivery_id).where(deliveries.c.delivery_id == body.delivery_id)
        )
        if exists is None:
            raise DeliveryNotFound(body.delivery_id)

    point_id = str(uuid.uuid4())
    async with unit_of_work("award_eco_points", body.user_identifier):
        await database.execute(
            eco_points.insert().values(
                point_id=point_id,
                user_identifier=body.user_identifier.strip(),
                delivery_id=body.delivery_id,
                points_earned=points,
                action_type=body.action_type.strip(),
                description=body.description,
                created_at=datetime.utcnow(),
            )
        )
    row = await database.fetch_one(eco_points.select().where(eco_points.c.point_id == point_id))
    return row_to_dict(row)


async def get_user_eco_points(user_identifier: UserIdentifier, limit: Optional[int] = 10) -> dict:
    limit = clamp_limit(limit, default=10)
    summary = await database.fetch_one(
        select(
            func.coalesce(func.sum(eco_points.c.points_earned), 0).label("total_points"),
            func.count(eco_points.c.point_id).label("total_actions"),
        ).where(eco_points.c.user_identifier == user_identifier)
    )
    recent = []
    if limit:
        rows = await database.fetch_all(
            eco_points.select()
            .where(eco_points.c.user_identifier == user_identifier)
            .order_by(desc(eco_points.c.created_at), desc(eco_points.c.point_id))
            .limit(limit)
        )
        recent = [row_to_dict(r) for r in rows]

    summary = row_to_dict(summary)
    return {
        "summary": {
            "user_identifier": user_identifier,
            "total_points": int(summary["total_points"] or 0),
            "total_actions": int(summary["total_actions"] or 0),
        },
        "recent_actions": recent,
    }


async def eco_points_leaderboard(limit: Optional[int] = 10) -> List[dict]:
    limit = clamp_limit(limit, default=10)
    if limit == 0:
        return []
    total = func.sum(eco_points.c.points_earned)
    rows = await database.fetch_all(
        select(
            eco_points.c.user_identifier,
            total.label("total_points"),
            func.count(eco_points.c.point_id).label("total_actions"),
            func.max(eco_points.c.created_at).label("last_action"),
        )
        .group_by(eco_points.c.user_identifier)
        .order_by(desc(total), eco_points.c.user_identifier)
        .limit(limit)
    )
    return [row_to_dict(r) for r in rows]


# ------------------------- RECYCLING CENTERS -------------------------
async def add_recycling_centers(centers: List[RecyclingCenter]) -> int:
    now = datetime.utcnow()
    async with unit_of_work("add_recycling_centers", len(centers)):
        for center in centers:
            await database.execute(
                recycling_centers.insert().values(created_at=now, **center.model_dump())
            )
    return len(centers)


async def find_recycling_centers(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius_km: float = 50.0,
    limit: Optional[int] = 20,
) -> List[dict]:
    """
    Centers within radius_km of (lat, lng), nearest first, each with a
    distance_km field. Without coordinates, the most recently added centers.
    """
    limit = clamp_limit(limit, default=20)
    if limit == 0:
        return []

    if lat is None or lng is None:
        rows = await database.fetch_all(
            recycling_centers.select()
            .order_by(desc(recycling_centers.c.created_at), desc(recycling_centers.c.center_id))
            .limit(limit)
        )
        return [row_to_dict(r) for r in rows]

    if radius_km < 0:
        raise ValidationError("radius must be >= 0")

    min_lat, max_lat, min_lng, max_lng = bounding_box(lat, lng, radius_km)
    query = recycling_centers.select().where(
        and_(
            recycling_centers.c.lat.isnot(None),
            recycling_centers.c.lng.isnot(None),
            recycling_centers.c.lat.between(min_lat, max_lat),
        )
    )
    # box wraps the antimeridian: keep every longitude
    if min_lng >= -180 and max_lng <= 180:
        query = query.where(recycling_centers.c.lng.between(min_lng, max_lng))

    nearby = []
    for row in await database.fetch_all(query):
        center = row_to_dict(row)
        distance = haversine_km(lat, lng, center["lat"], center["lng"])
        if distance <= radius_km:
            center["distance_km"] = round(distance, 3)
            nearby.append(center)

    nearby.sort(key=lambda c: c["distance_km"])
    return nearby[:limit]
