from prometheus_client import Counter, Gauge

DELIVERIES_CREATED = Counter(
    "deliveries_created_total",
    "Total deliveries created",
    ["vehicle_type"]
)

CO2_EMITTED_KG = Counter(
    "co2_emitted_kg_total",
    "Kilograms of CO2 recorded for created deliveries",
    ["vehicle_type"]
)

ECO_POINTS_AWARDED = Counter(
    "eco_points_awarded_total",
    "Eco-points awarded",
    ["action_type"]
)

DELIVERY_STATUS_UPDATES = Counter(
    "delivery_status_updates_total",
    "Delivery updates by resulting status",
    ["status"]
)

ROUTE_LOOKUPS = Counter(
    "route_lookups_total",
    "Route lookups against the mapping API",
    ["outcome"]
)

DASHBOARD_CLIENTS = Gauge(
    "dashboard_ws_clients",
    "Connected dashboard WebSocket clients"
)
