# schemas.py
from enum import Enum
from typing import List, Optional, Any
from datetime import datetime

from pydantic import BaseModel, Field

# No user/account entity yet: eco-points are keyed by an opaque string
UserIdentifier = str


class VehicleType(str, Enum):
    bike = "bike"
    ev = "ev"
    van = "van"
    truck = "truck"


class DeliveryStatus(str, Enum):
    pending = "pending"
    in_transit = "in_transit"
    delivered = "delivered"
    failed = "failed"


class RoutePoint(BaseModel):
    address: Optional[str] = None
    city: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None


class OrderInfo(BaseModel):
    order_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None


class RouteInfo(BaseModel):
    origin: RoutePoint = Field(default_factory=RoutePoint)
    destination: RoutePoint = Field(default_factory=RoutePoint)
    distance_km: Optional[float] = None
    duration_minutes: Optional[int] = None


class DeliveryCreate(BaseModel):
    order_id: Optional[str] = None
    shipment_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    origin_address: Optional[str] = None
    origin_city: Optional[str] = None
    origin_lat: Optional[float] = None
    origin_lng: Optional[float] = None
    destination_address: Optional[str] = None
    destination_city: Optional[str] = None
    destination_lat: Optional[float] = None
    destination_lng: Optional[float] = None
    distance_km: Optional[float] = None
    vehicle_type: Optional[str] = None

    def order_info(self) -> OrderInfo:
        return OrderInfo(
            order_id=self.order_id,
            customer_name=self.customer_name,
            customer_phone=self.customer_phone,
        )

    def route_info(self) -> RouteInfo:
        return RouteInfo(
            origin=RoutePoint(
                address=self.origin_address, city=self.origin_city,
                lat=self.origin_lat, lng=self.origin_lng,
            ),
            destination=RoutePoint(
                address=self.destination_address, city=self.destination_city,
                lat=self.destination_lat, lng=self.destination_lng,
            ),
            distance_km=self.distance_km,
        )


class DeliveryUpdate(BaseModel):
    status: Optional[str] = None
    delivery_attempts: Optional[int] = Field(default=None, ge=0)


class RouteRequest(BaseModel):
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    vehicle_type: Optional[str] = None


class CreateFromRoute(BaseModel):
    order_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    route_data: Optional[RouteInfo] = None
    vehicle_type: Optional[str] = None


class OrderCreate(BaseModel):
    order_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_phone: Optional[str] = None
    status: str = DeliveryStatus.pending.value


class EcoPointAward(BaseModel):
    user_identifier: Optional[UserIdentifier] = None
    delivery_id: Optional[int] = None
    points_earned: Optional[Any] = None
    action_type: Optional[str] = None
    description: Optional[str] = None


class EventLog(BaseModel):
    event_id: str
    type: str
    data: Any
    trace_id: Optional[str] = None
    timestamp: datetime


class RecyclingCenter(BaseModel):
    name: str
    address: Optional[str] = None
    city: Optional[str] = None
    phone: Optional[str] = None
    hours: Optional[str] = None
    accepted_materials: List[str] = Field(default_factory=list)
    lat: Optional[float] = None
    lng: Optional[float] = None
