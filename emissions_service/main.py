# main.py
import uuid
import logging
from datetime import datetime
from typing import Any, Callable, Optional

from fastapi import FastAPI, Request, Depends, Query, Response, WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from emissions_service import reporting, store
from emissions_service.config import CORS_ORIGINS, DEFAULT_PAGE_SIZE, DEFAULT_REPORT_DAYS
from emissions_service.database import database, metadata, engine
from emissions_service.emissions import (
    compute_carbon_saved, compute_emissions, normalize_vehicle_type, vehicle_alternatives,
)
from emissions_service.errors import EmissionsServiceError, MissingRequiredField
from emissions_service.events import publish_event
from emissions_service.metrics import (
    DELIVERIES_CREATED, CO2_EMITTED_KG, ECO_POINTS_AWARDED, DELIVERY_STATUS_UPDATES,
    ROUTE_LOOKUPS,
)
from emissions_service.queries import DeliveryFilters, ReportFilters
from emissions_service.route_lookup import RouteLookupClient, get_route_lookup
from emissions_service.schemas import (
    CreateFromRoute, DeliveryCreate, DeliveryUpdate, EcoPointAward, OrderCreate, OrderInfo, RouteRequest,
)
from emissions_service.ws_manager import manager

logger = logging.getLogger("emissions-service")
logger.setLevel(logging.INFO)
if not logger.handlers:
    handler = logging.StreamHandler()
    fmt = "[%(asctime)s] [%(levelname)s] %(message)s"
    handler.setFormatter(logging.Formatter(fmt))
    logger.addHandler(handler)

app = FastAPI(title="Ecologix Emissions Service", version="1.0.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=True,
)


# ------------------------- RESPONSES -------------------------
class APIResponse(JSONResponse):
    def __init__(
        self,
        success: bool = True,
        data: Optional[Any] = None,
        error: Optional[str] = None,
        status_code: int = 200,
        **extra,
    ):
        content = {"success": success}
        if success:
            content["data"] = data
        if error is not None:
            content["error"] = error
        content.update(extra)
        super().__init__(content=jsonable_encoder(content), status_code=status_code)


def get_trace_id(request: Request) -> str:
    trace_id = request.headers.get("x-trace-id") or str(uuid.uuid4())
    request.state.trace_id = trace_id
    return trace_id


# ------------------------- EXCEPTION HANDLING -------------------------
@app.exception_handler(EmissionsServiceError)
async def service_error_handler(request: Request, exc: EmissionsServiceError):
    trace_id = getattr(request.state, "trace_id", "N/A")
    log = logger.error if exc.status_code >= 500 else logger.warning
    log(f"[TRACE {trace_id}] {request.method} {request.url.path} → {exc.status_code} {type(exc).__name__}: {exc.message}")
    return APIResponse(success=False, error=exc.message, status_code=exc.status_code)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    trace_id = getattr(request.state, "trace_id", "N/A")
    problems = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', []) if p != 'body')}: {err.get('msg')}"
        for err in exc.errors()
    )
    logger.warning(f"[TRACE {trace_id}] {request.method} {request.url.path} → 400 {problems}")
    return APIResponse(success=False, error=f"Invalid request: {problems}", status_code=400)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    trace_id = getattr(request.state, "trace_id", "N/A")
    logger.exception(f"[TRACE {trace_id}] Unhandled error on {request.method} {request.url.path}: {exc}")
    return APIResponse(success=False, error="Internal server error", status_code=500)


# ------------------------- STARTUP / SHUTDOWN -------------------------
@app.on_event("startup")
async def startup():
    logger.info("Connecting database...")
    await database.connect()
    metadata.create_all(engine)
    logger.info("Startup complete.")


@app.on_event("shutdown")
async def shutdown():
    logger.info("Disconnecting database...")
    await database.disconnect()


# ------------------------- DELIVERIES -------------------------
@app.get("/deliveries")
async def list_deliveries(
    status: Optional[str] = None,
    vehicle_type: Optional[str] = None,
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    trace_id: str = Depends(get_trace_id),
):
    filters = DeliveryFilters(status=status, vehicle_type=vehicle_type, limit=limit, offset=offset)
    rows = await store.list_deliveries(filters)
    return APIResponse(data=rows, count=len(rows))


async def _after_create(delivery: dict, trace_id: str):
    vehicle = delivery["vehicle_type"]
    DELIVERIES_CREATED.labels(vehicle_type=vehicle).inc()
    CO2_EMITTED_KG.labels(vehicle_type=vehicle).inc(float(delivery["co2_emissions_kg"] or 0))
    for award in delivery["eco_points"]:
        ECO_POINTS_AWARDED.labels(action_type=award["action_type"]).inc(award["points_earned"])

    await publish_event(
        "delivery.created",
        {
            "delivery_id": delivery["delivery_id"],
            "order_id": delivery["order_id"],
            "shipment_id": delivery["shipment_id"],
            "vehicle_type": vehicle,
            "distance_km": delivery["distance_km"],
            "co2_emissions_kg": delivery["co2_emissions_kg"],
            "eco_points_awarded": delivery["eco_points_awarded"],
        },
        trace_id=trace_id,
    )
    logger.info(f"[TRACE {trace_id}] ✅ Delivery {delivery['delivery_id']} created ({delivery['shipment_id']})")


@app.post("/deliveries")
async def create_delivery(body: DeliveryCreate, trace_id: str = Depends(get_trace_id)):
    delivery = await store.create_delivery(
        body.order_info(), body.route_info(), body.vehicle_type, shipment_id=body.shipment_id
    )
    await _after_create(delivery, trace_id)
    return APIResponse(
        data={
            "delivery": delivery,
            "emission": {
                "emission_id": delivery["emission_id"],
                "co2_emissions_kg": delivery["co2_emissions_kg"],
                "emission_factor": delivery["emission_factor"],
            },
            "eco_points_awarded": delivery["eco_points_awarded"],
        },
        status_code=201,
    )


@app.post("/deliveries/calculate-route")
async def calculate_route(
    body: RouteRequest,
    trace_id: str = Depends(get_trace_id),
    route_lookup: Callable[[], RouteLookupClient] = Depends(get_route_lookup),
):
    missing = [name for name in ("origin_address", "destination_address") if not getattr(body, name)]
    if missing:
        raise MissingRequiredField(*missing)

    # reject an unknown vehicle before spending an upstream call
    vehicle = normalize_vehicle_type(body.vehicle_type) if body.vehicle_type else None

    client = route_lookup()
    try:
        route = await client.lookup(body.origin_address, body.destination_address)
    except EmissionsServiceError:
        ROUTE_LOOKUPS.labels(outcome="failed").inc()
        raise
    ROUTE_LOOKUPS.labels(outcome="ok").inc()

    selected_vehicle = None
    if vehicle is not None:
        result = compute_emissions(route.distance_km, vehicle)
        selected_vehicle = {
            "type": vehicle,
            "emission_factor": result.factor,
            "co2_emissions": result.co2_kg,
            "carbon_saved": compute_carbon_saved(route.distance_km, result.co2_kg),
        }

    logger.info(f"[TRACE {trace_id}] 🗺️ Route calculated: {route.distance_km} km")
    return APIResponse(data={
        "route": route.model_dump(),
        "selected_vehicle": selected_vehicle,
        "alternatives": vehicle_alternatives(route.distance_km),
    })


@app.post("/deliveries/create-from-route")
async def create_from_route(body: CreateFromRoute, trace_id: str = Depends(get_trace_id)):
    missing = [name for name in ("order_id", "customer_name", "route_data") if not getattr(body, name)]
    if missing:
        raise MissingRequiredField(*missing)

    order = OrderInfo(
        order_id=body.order_id,
        customer_name=body.customer_name,
        customer_phone=body.customer_phone,
    )
    delivery = await store.create_delivery(order, body.route_data, body.vehicle_type)
    await _after_create(delivery, trace_id)
    return APIResponse(
        data=delivery,
        message="Delivery created successfully",
        route_info={
            "distance_km": body.route_data.distance_km,
            "duration_minutes": body.route_data.duration_minutes,
            "co2_emissions": delivery["co2_emissions_kg"],
            "eco_points_earned": delivery["eco_points_awarded"],
        },
        status_code=201,
    )


@app.get("/deliveries/{delivery_id}")
async def get_delivery(delivery_id: int, trace_id: str = Depends(get_trace_id)):
    return APIResponse(data=await store.get_delivery(delivery_id))


@app.put("/deliveries/{delivery_id}")
async def update_delivery(delivery_id: int, body: DeliveryUpdate, trace_id: str = Depends(get_trace_id)):
    updated = await store.update_delivery_status(
        delivery_id, status=body.status, delivery_attempts=body.delivery_attempts
    )
    DELIVERY_STATUS_UPDATES.labels(status=updated["status"]).inc()
    await publish_event(
        "delivery.updated",
        {
            "delivery_id": delivery_id,
            "status": updated["status"],
            "delivery_attempts": updated["delivery_attempts"],
        },
        trace_id=trace_id,
    )
    logger.info(f"[TRACE {trace_id}] ✏️ Delivery {delivery_id} now {updated['status']}")
    return APIResponse(data=updated)


# ------------------------- ORDERS -------------------------
@app.get("/orders")
async def list_orders(
    limit: int = Query(DEFAULT_PAGE_SIZE),
    offset: int = Query(0),
    trace_id: str = Depends(get_trace_id),
):
    rows = await store.list_orders(limit=limit, offset=offset)
    return APIResponse(data=rows, count=len(rows))


@app.post("/orders")
async def create_order(body: OrderCreate, trace_id: str = Depends(get_trace_id)):
    order = await store.create_order(body)
    logger.info(f"[TRACE {trace_id}] Order {order['order_id']} created")
    return APIResponse(data=order, status_code=201)


# ------------------------- ECO POINTS -------------------------
@app.get("/eco-points")
async def get_eco_points(
    user: Optional[str] = None,
    limit: int = Query(10),
    trace_id: str = Depends(get_trace_id),
):
    if user:
        return APIResponse(data=await store.get_user_eco_points(user, limit=limit))
    return APIResponse(data=await store.eco_points_leaderboard(limit=limit))


@app.post("/eco-points")
async def award_eco_points(body: EcoPointAward, trace_id: str = Depends(get_trace_id)):
    award = await store.award_eco_points(body)
    ECO_POINTS_AWARDED.labels(action_type=award["action_type"]).inc(award["points_earned"])
    await publish_event("eco_points.awarded", award, trace_id=trace_id)
    return APIResponse(data=award, status_code=201)


# ------------------------- REPORTING -------------------------
@app.get("/dashboard/stats")
async def dashboard_stats(days: int = Query(DEFAULT_REPORT_DAYS), trace_id: str = Depends(get_trace_id)):
    return APIResponse(data=await reporting.dashboard_stats(days))


@app.get("/emissions/report")
async def emissions_report(
    delivery_id: Optional[int] = None,
    shipment_id: Optional[str] = None,
    order_id: Optional[str] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
    trace_id: str = Depends(get_trace_id),
):
    if delivery_id is not None:
        return APIResponse(data=await reporting.delivery_report(delivery_id))
    if shipment_id:
        return APIResponse(data=await reporting.shipment_report(shipment_id))
    if order_id:
        return APIResponse(data=await reporting.order_report(order_id))
    filters = ReportFilters(start_date=start_date, end_date=end_date)
    return APIResponse(data=await reporting.date_range_report(filters))


@app.get("/recycling-centers")
async def recycling_centers(
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    radius: float = Query(50.0),
    limit: int = Query(20),
    trace_id: str = Depends(get_trace_id),
):
    centers = await store.find_recycling_centers(lat=lat, lng=lng, radius_km=radius, limit=limit)
    return APIResponse(data=centers, count=len(centers))


# ------------------------- PUSH UPDATES -------------------------
@app.websocket("/ws/deliveries")
async def deliveries_ws(websocket: WebSocket):
    await manager.connect(websocket)
    try:
        while True:
            await websocket.receive_text()
            # Heartbeat
            await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket)


# ------------------------- HEALTH / METRICS -------------------------
@app.get("/health")
async def health():
    return APIResponse(data={"status": "emissions-service healthy"})


@app.get("/ready")
async def readiness():
    try:
        await database.fetch_one("SELECT 1")
        return APIResponse(data={"status": "ready"})
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return APIResponse(success=False, error="Database unavailable", status_code=503)


@app.get("/metrics")
async def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
