# queries.py
"""
Typed filter objects for the list and report endpoints.

Every filter becomes a SQLAlchemy bound expression, so caller input never
reaches the SQL text.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select, and_, desc

from emissions_service.config import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from emissions_service.emissions import normalize_vehicle_type
from emissions_service.errors import ValidationError
from emissions_service.models import deliveries, emissions, orders
from emissions_service.schemas import DeliveryStatus

STATUSES = {s.value for s in DeliveryStatus}


def normalize_status(status) -> str:
    if isinstance(status, DeliveryStatus):
        return status.value
    if isinstance(status, str) and status.strip().lower() in STATUSES:
        return status.strip().lower()
    raise ValidationError(f"Invalid status: {status!r}")


def clamp_limit(limit: Optional[int], default: int = DEFAULT_PAGE_SIZE) -> int:
    if limit is None:
        return default
    if limit < 0:
        raise ValidationError("limit must be >= 0")
    return min(limit, MAX_PAGE_SIZE)


def check_offset(offset: Optional[int]) -> int:
    if offset is None:
        return 0
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return offset


def delivery_detail_select():
    """Delivery joined with its order customer fields and its emission."""
    return (
        select(
            deliveries,
            orders.c.customer_name,
            orders.c.customer_phone,
            orders.c.status.label("order_status"),
            emissions.c.emission_id,
            emissions.c.co2_emissions_kg,
            emissions.c.emission_factor,
            emissions.c.created_at.label("emission_calculated_at"),
        )
        .select_from(
            deliveries
            .outerjoin(orders, deliveries.c.order_id == orders.c.order_id)
            .outerjoin(emissions, deliveries.c.delivery_id == emissions.c.delivery_id)
        )
    )


@dataclass
class DeliveryFilters:
    status: Optional[str] = None
    vehicle_type: Optional[str] = None
    limit: Optional[int] = None
    offset: Optional[int] = None

    def __post_init__(self):
        if self.status:
            self.status = normalize_status(self.status)
        if self.vehicle_type:
            self.vehicle_type = normalize_vehicle_type(self.vehicle_type)
        self.limit = clamp_limit(self.limit)
        self.offset = check_offset(self.offset)

    def conditions(self):
        conds = []
        if self.status:
            conds.append(deliveries.c.status == self.status)
        if self.vehicle_type:
            conds.append(deliveries.c.vehicle_type == self.vehicle_type)
        return conds

    def build(self):
        query = delivery_detail_select()
        conds = self.conditions()
        if conds:
            query = query.where(and_(*conds))
        return (
            query
            .order_by(desc(deliveries.c.created_at), desc(deliveries.c.delivery_id))
            .limit(self.limit)
            .offset(self.offset)
        )


@dataclass
class ReportFilters:
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

    def __post_init__(self):
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError("start_date must not be after end_date")

    def build(self):
        query = delivery_detail_select()
        if self.start_date:
            query = query.where(deliveries.c.created_at >= self.start_date)
        if self.end_date:
            query = query.where(deliveries.c.created_at <= self.end_date)
        return query.order_by(desc(deliveries.c.created_at), desc(deliveries.c.delivery_id))


def window_start(days: int, now: Optional[datetime] = None) -> datetime:
    """Start of a trailing window of `days` days."""
    if isinstance(days, bool) or not isinstance(days, int) or days <= 0:
        raise ValidationError("days must be a positive integer")
    return (now or datetime.utcnow()) - timedelta(days=days)
