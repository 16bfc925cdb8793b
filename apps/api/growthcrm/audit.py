from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, TypedDict

from growthcrm.context import get_cascade_depth, get_correlation_id

logger = logging.getLogger("growthcrm.audit")

# never written into the trail even when a snapshot carries them
SECRET_FIELDS = frozenset({"password", "password_hash", "token", "token_hash"})
REDACTED = "[redacted]"


class AuditEntry(TypedDict):
    id: str
    actor_user_id: str
    tenant_id: str | None
    entity_type: str
    entity_id: str
    action: str
    before: dict[str, Any] | None
    after: dict[str, Any] | None
    correlation_id: str | None
    cascade_depth: int
    occurred_at: str


audit_entries: list[AuditEntry] = []


def _scrub(snapshot: dict[str, Any] | None) -> dict[str, Any] | None:
    if snapshot is None:
        return None
    return {key: REDACTED if key in SECRET_FIELDS else value for key, value in snapshot.items()}


def record(
    actor_user_id: str,
    entity_type: str,
    entity_id: str,
    action: str,
    before: dict[str, Any] | None,
    after: dict[str, Any] | None,
    correlation_id: str | None = None,
    tenant_id: str | None = None,
) -> AuditEntry:
    """Append one change to the audit trail and return it.

    Actions taken by the automation engine carry the cascade depth they ran at
    so a reader can tell user edits from follow-on writes.
    """

    entry: AuditEntry = {
        "id": str(uuid.uuid4()),
        "actor_user_id": actor_user_id,
        "tenant_id": tenant_id,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "action": action,
        "before": _scrub(before),
        "after": _scrub(after),
        "correlation_id": correlation_id or get_correlation_id(),
        "cascade_depth": get_cascade_depth(),
        "occurred_at": datetime.now(timezone.utc).isoformat(),
    }
    audit_entries.append(entry)
    logger.debug(
        "audit.recorded",
        extra={"user_id": actor_user_id, "tenant_id": tenant_id, "entity_type": entity_type, "action": action},
    )
    return entry
