# reporting.py
"""
Read-only aggregation for the dashboard and the emissions report endpoint.

Windows with no rows report zeros and every average is guarded against an
empty denominator.
"""
import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, func, desc, distinct

from emissions_service.config import DEFAULT_REPORT_DAYS
from emissions_service.database import database, row_to_dict
from emissions_service.emissions import BASELINE_FACTOR, PRECISION
from emissions_service.errors import DeliveryNotFound, NotFoundError
from emissions_service.models import deliveries, emissions, eco_points
from emissions_service.queries import ReportFilters, delivery_detail_select, window_start
from emissions_service.schemas import DeliveryStatus

logger = logging.getLogger("emissions-service.reporting")

DELIVERY_EMISSIONS = deliveries.outerjoin(emissions, deliveries.c.delivery_id == emissions.c.delivery_id)


def _num(value) -> float:
    return round(float(value or 0), PRECISION)


def _avg(total, count) -> float:
    return round(float(total or 0) / count, PRECISION) if count else 0.0


# ------------------------- DASHBOARD -------------------------
async def overview(since: datetime) -> dict:
    row = row_to_dict(await database.fetch_one(
        select(
            func.count(distinct(deliveries.c.delivery_id)).label("total_deliveries"),
            func.sum(emissions.c.co2_emissions_kg).label("total_emissions"),
            func.sum(deliveries.c.distance_km).label("total_distance"),
        )
        .select_from(DELIVERY_EMISSIONS)
        .where(deliveries.c.created_at >= since)
    ))
    count = int(row["total_deliveries"] or 0)
    return {
        "total_deliveries": count,
        "total_emissions": _num(row["total_emissions"]),
        "avg_emissions_per_delivery": _avg(row["total_emissions"], count),
        "total_distance": _num(row["total_distance"]),
    }


async def by_vehicle_type(since: datetime) -> list:
    total = func.coalesce(func.sum(emissions.c.co2_emissions_kg), 0)
    rows = await database.fetch_all(
        select(
            deliveries.c.vehicle_type,
            func.count(deliveries.c.delivery_id).label("delivery_count"),
            total.label("total_emissions"),
            func.sum(deliveries.c.distance_km).label("total_distance"),
        )
        .select_from(DELIVERY_EMISSIONS)
        .where(deliveries.c.created_at >= since)
        .group_by(deliveries.c.vehicle_type)
        .order_by(desc(total), deliveries.c.vehicle_type)
    )
    result = []
    for row in map(row_to_dict, rows):
        count = int(row["delivery_count"] or 0)
        result.append({
            "vehicle_type": row["vehicle_type"],
            "delivery_count": count,
            "total_emissions": _num(row["total_emissions"]),
            "avg_emissions": _avg(row["total_emissions"], count),
            "total_distance": _num(row["total_distance"]),
        })
    return result


async def by_status(since: datetime) -> list:
    rows = await database.fetch_all(
        select(deliveries.c.status, func.count().label("count"))
        .where(deliveries.c.created_at >= since)
        .group_by(deliveries.c.status)
        .order_by(deliveries.c.status)
    )
    return [{"status": r["status"], "count": int(r["count"])} for r in map(row_to_dict, rows)]


async def emission_trends(since: datetime) -> list:
    """One point per calendar day, newest first."""
    day = func.date(deliveries.c.created_at)
    rows = await database.fetch_all(
        select(
            day.label("date"),
            func.count(deliveries.c.delivery_id).label("deliveries"),
            func.sum(emissions.c.co2_emissions_kg).label("total_emissions"),
        )
        .select_from(DELIVERY_EMISSIONS)
        .where(deliveries.c.created_at >= since)
        .group_by(day)
        .order_by(desc(day))
    )
    trends = []
    for row in map(row_to_dict, rows):
        count = int(row["deliveries"] or 0)
        trends.append({
            "date": str(row["date"]),
            "deliveries": count,
            "total_emissions": _num(row["total_emissions"]),
            "avg_emissions": _avg(row["total_emissions"], count),
        })
    return trends


async def carbon_savings(since: datetime) -> dict:
    row = row_to_dict(await database.fetch_one(
        select(
            func.sum(emissions.c.co2_emissions_kg).label("actual_emissions"),
            func.sum(deliveries.c.distance_km * BASELINE_FACTOR).label("potential_truck_emissions"),
        )
        .select_from(DELIVERY_EMISSIONS)
        .where(deliveries.c.created_at >= since)
    ))
    actual = _num(row["actual_emissions"])
    potential = _num(row["potential_truck_emissions"])
    return {
        "actual_emissions": actual,
        "potential_truck_emissions": potential,
        "carbon_saved": round(potential - actual, PRECISION),
    }


async def eco_points_summary(since: datetime) -> list:
    points = func.sum(eco_points.c.points_earned)
    rows = await database.fetch_all(
        select(
            eco_points.c.action_type,
            points.label("total_points"),
            func.count(distinct(eco_points.c.user_identifier)).label("unique_users"),
            func.count(eco_points.c.point_id).label("action_count"),
        )
        .where(eco_points.c.created_at >= since)
        .group_by(eco_points.c.action_type)
        .order_by(desc(points), eco_points.c.action_type)
    )
    return [
        {
            "action_type": r["action_type"],
            "total_points": int(r["total_points"] or 0),
            "unique_users": int(r["unique_users"] or 0),
            "action_count": int(r["action_count"] or 0),
        }
        for r in map(row_to_dict, rows)
    ]


async def failed_deliveries(since: datetime) -> dict:
    row = row_to_dict(await database.fetch_one(
        select(
            func.count(deliveries.c.delivery_id).label("failed_count"),
            func.sum(deliveries.c.delivery_attempts).label("total_attempts"),
        )
        .where(deliveries.c.status == DeliveryStatus.failed.value)
        .where(deliveries.c.created_at >= since)
    ))
    count = int(row["failed_count"] or 0)
    attempts = int(row["total_attempts"] or 0)
    return {
        "failed_count": count,
        "total_attempts": attempts,
        "avg_attempts": _avg(attempts, count),
    }


async def dashboard_stats(days: int = DEFAULT_REPORT_DAYS, now: Optional[datetime] = None) -> dict:
    since = window_start(days, now)
    logger.info(f"📊 Dashboard stats for the last {days} days (since {since.isoformat()})")
    return {
        "overview": await overview(since),
        "by_vehicle_type": await by_vehicle_type(since),
        "by_status": await by_status(since),
        "emission_trends": await emission_trends(since),
        "failed_deliveries": await failed_deliveries(since),
        "eco_points": await eco_points_summary(since),
        "carbon_savings": await carbon_savings(since),
        "period_days": days,
    }


# ------------------------- EMISSION REPORTS -------------------------
async def delivery_report(delivery_id: int) -> dict:
    row = await database.fetch_one(
        delivery_detail_select().where(deliveries.c.delivery_id == delivery_id)
    )
    if row is None:
        raise DeliveryNotFound(delivery_id)
    return row_to_dict(row)


async def shipment_report(shipment_id: str) -> dict:
    row = await database.fetch_one(
        delivery_detail_select().where(deliveries.c.shipment_id == shipment_id)
    )
    if row is None:
        raise NotFoundError("Shipment not found")
    return row_to_dict(row)


async def order_report(order_id: str) -> dict:
    rows = await database.fetch_all(
        delivery_detail_select()
        .where(deliveries.c.order_id == order_id)
        .order_by(desc(deliveries.c.created_at), desc(deliveries.c.delivery_id))
    )
    items = [row_to_dict(r) for r in rows]
    return {
        "order_id": order_id,
        "deliveries": items,
        "total_emissions": _num(sum(float(d["co2_emissions_kg"] or 0) for d in items)),
        "delivery_count": len(items),
    }


async def date_range_report(filters: ReportFilters) -> dict:
    rows = await database.fetch_all(filters.build())
    items = [row_to_dict(r) for r in rows]
    total = sum(float(d["co2_emissions_kg"] or 0) for d in items)
    return {
        "deliveries": items,
        "summary": {
            "total_deliveries": len(items),
            "total_emissions": _num(total),
            "avg_emissions_per_delivery": _avg(total, len(items)),
            "start_date": filters.start_date,
            "end_date": filters.end_date,
        },
    }
