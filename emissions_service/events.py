# events.py
import json
import logging
import uuid
from datetime import datetime
from typing import Optional

import aioboto3
from fastapi.encoders import jsonable_encoder

from emissions_service.config import (
    SERVICE_NAME, USE_AWS, AWS_REGION, DELIVERY_EVENTS_QUEUE_URL, NOTIFICATION_QUEUE_URL,
)
from emissions_service.schemas import EventLog
from emissions_service.ws_manager import manager

logger = logging.getLogger("emissions-service.events")

session = aioboto3.Session()

# Explicit routing
EVENT_TARGETS = {
    "delivery.created": ["Delivery Events", "Notification Service"],
    "delivery.updated": ["Delivery Events", "Notification Service"],
    "eco_points.awarded": ["Notification Service"],
}

SERVICE_QUEUE_MAP = {
    "Delivery Events": DELIVERY_EVENTS_QUEUE_URL,
    "Notification Service": NOTIFICATION_QUEUE_URL,
}


def build_event(event_type: str, data: dict, trace_id: Optional[str] = None) -> dict:
    envelope = EventLog(
        event_id=str(data.get("event_id") or uuid.uuid4()),
        type=event_type,
        data=data,
        trace_id=trace_id,
        timestamp=datetime.utcnow(),
    )
    return jsonable_encoder(envelope)


async def publish_event(event_type: str, data: dict, trace_id: Optional[str] = None) -> dict:
    """
    Push an event to dashboard WebSocket clients and, with USE_AWS, to the
    SQS queues listed in EVENT_TARGETS. Delivery is best effort: failures
    are logged and never raised to the caller.
    """
    event_payload = build_event(event_type, data, trace_id)

    # WS
    try:
        await manager.broadcast(event_payload)
    except Exception as e:
        logger.warning(f"[WebSocket ERROR] {e}")

    if not USE_AWS:
        logger.info(f"[LOCAL EVENT] {event_type} event_id={event_payload['event_id']}")
        return event_payload

    # SQS
    try:
        async with session.client("sqs", region_name=AWS_REGION) as sqs:
            for service_name in EVENT_TARGETS.get(event_type, []):
                queue_url = SERVICE_QUEUE_MAP.get(service_name)
                if not queue_url:
                    logger.warning(f"[WARN] Missing queue for {service_name}")
                    continue
                try:
                    await sqs.send_message(
                        QueueUrl=queue_url,
                        MessageBody=json.dumps(event_payload),
                        MessageAttributes={"source": {"DataType": "String", "StringValue": SERVICE_NAME}},
                    )
                    logger.info(f"[SQS → {service_name}] {event_type} event_id={event_payload['event_id']}")
                except Exception as e:
                    logger.warning(f"[SQS ERROR → {service_name}] {e}")
    except Exception as e:
        logger.error(f"[EVENT ERROR] {e}")

    return event_payload
