"""
Envelope builder for published events.

Producers hand over whatever they have: datetimes, Decimals read back from
DynamoDB, sets of tags. Everything is converted to plain JSON types here so
the same tree can be signed, sent and rendered.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

from action_dispatch.domain.event import EventEnvelope, EventKind, parse_event_data, utc_now_iso


def sanitize_payload(obj: Any) -> Any:
    """
    Recursively convert a payload tree into JSON-safe values.

    - datetime/date -> ISO-8601 string (naive datetimes are taken as UTC)
    - Decimal -> int when integral, otherwise float
    - set/tuple -> list
    - objects exposing ``to_dict()`` -> their dict form
    """
    if obj is None or isinstance(obj, (str, bool, int, float)):
        return obj

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)

    if isinstance(obj, dict):
        return {str(key): sanitize_payload(value) for key, value in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [sanitize_payload(item) for item in obj]

    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return sanitize_payload(to_dict())

    return str(obj)


def build_envelope(
    tenant_id: str,
    event: EventKind,
    event_data: Optional[Dict[str, Any]] = None,
    client_data: Optional[Dict[str, Any]] = None,
    timestamp: Optional[str] = None,
) -> EventEnvelope:
    """
    Assemble the envelope for one event occurrence.

    Args:
        tenant_id: Owning tenant
        event: Event kind
        event_data: Producer payload
        client_data: Full client record; replaces ``clientData`` from the payload when given
        timestamp: Override for tests (defaults to now)

    Returns:
        EventEnvelope with a sanitized, typed payload
    """
    data = sanitize_payload(dict(event_data or {}))
    if client_data is not None:
        data["clientData"] = sanitize_payload(client_data)

    return EventEnvelope(
        event=event,
        tenant_id=tenant_id,
        data=parse_event_data(event, data),
        timestamp=timestamp or utc_now_iso(),
    )
