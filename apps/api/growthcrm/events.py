from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from growthcrm.context import get_cascade_depth, get_correlation_id
from growthcrm.core.events import event_bus

published_events: list[dict[str, Any]] = []


def publish(envelope: dict[str, Any]) -> dict[str, Any]:
    """Stamp an outgoing domain event and hand it to in-process subscribers.

    ``event_type`` is required. Tenant ids are normalised to strings so
    subscribers can compare them with ``AccessScope.tenant_id``.
    """

    event_type = envelope.get("event_type")
    if not isinstance(event_type, str) or not event_type:
        raise ValueError("event_type is required")

    envelope.setdefault("event_id", str(uuid.uuid4()))
    envelope.setdefault("occurred_at", datetime.now(timezone.utc).isoformat())
    if envelope.get("correlation_id") is None:
        envelope["correlation_id"] = get_correlation_id()
    if isinstance(envelope.get("tenant_id"), uuid.UUID):
        envelope["tenant_id"] = str(envelope["tenant_id"])

    depth = get_cascade_depth()
    if depth:
        meta = dict(envelope.get("meta") or {})
        meta.setdefault("cascade_depth", depth)
        envelope["meta"] = meta

    published_events.append(envelope)
    event_bus.publish(event_type, envelope)
    return envelope
