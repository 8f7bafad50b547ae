import json
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

EVENT_VERSION = 1


def build_event(event_type: str, data: dict, source: str | None = None) -> dict:
    """Envelope published on the domain exchange; the routing key is the event type."""
    event = {
        "event_id": str(uuid.uuid4()),
        "event_type": event_type,
        "version": EVENT_VERSION,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "data": data,
    }
    if source:
        event["source"] = source
    return event


def _default(value):
    # dates, datetimes and prices show up in booking payloads
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_json(event: dict) -> str:
    return json.dumps(event, separators=(",", ":"), ensure_ascii=False, default=_default)
