from __future__ import annotations

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.orm import Session

from growthcrm.automation.engine import AutomationEngine, CascadeOutcome
from growthcrm.automation.models import CascadeIncident, utcnow
from growthcrm.automation.rules import build_default_rules
from growthcrm.automation.stores import SqlIncidentRecorder, sql_store_factory
from growthcrm.core.config import Settings, get_settings
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.repository import TenantScopedRepository


logger = logging.getLogger("growthcrm.automation")

_UNRESOLVED = {CascadeOutcome.PARTIAL_FAILURE, CascadeOutcome.TARGET_FAILED, CascadeOutcome.SUPPRESSED}


class CascadeIncidentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    tenant_id: UUID | None
    rule_name: str
    source_type: str
    source_id: UUID
    target_id: UUID | None
    error: str | None
    status: str
    created_at: datetime
    resolved_at: datetime | None


class IncidentRepository(TenantScopedRepository):
    model = CascadeIncident
    resource = "automation.incident"


incident_repository = IncidentRepository()


def build_engine(session: Session, settings: Settings | None = None) -> AutomationEngine:
    return AutomationEngine(sql_store_factory(session), SqlIncidentRecorder(session), settings)


def list_open_incidents(session: Session, scope: AccessScope) -> list[CascadeIncidentRead]:
    query = incident_repository.scoped_select(scope).where(CascadeIncident.status == "open")
    rows = session.scalars(query.order_by(CascadeIncident.created_at.desc()))
    return [CascadeIncidentRead.model_validate(row) for row in rows]


def reconcile_open_incidents(session: Session, settings: Settings | None = None) -> dict[str, Any]:
    """Re-drive every open partial failure until its source flag matches the target that exists."""

    resolved_settings = settings or get_settings()
    rules = build_default_rules(resolved_settings)
    engine = build_engine(session, resolved_settings)
    summary = {"checked": 0, "resolved": 0, "open": 0}

    incidents = list(session.scalars(select(CascadeIncident).where(CascadeIncident.status == "open")))
    for incident in incidents:
        summary["checked"] += 1
        incident_id = incident.id
        rule = rules.get(incident.rule_name)
        if rule is None:
            logger.warning(
                "cascade.incident_unknown_rule",
                extra={"incident_id": str(incident_id), "rule": incident.rule_name},
            )
            summary["open"] += 1
            continue

        source = engine.store_for(rule.source_type).get(incident.source_id)
        if source is None:
            _close(session, incident_id, "source deleted")
            summary["resolved"] += 1
            continue

        result = engine.reconcile(source, rule)
        if result.outcome in _UNRESOLVED:
            summary["open"] += 1
            continue
        _close(session, incident_id, None)
        summary["resolved"] += 1
        logger.info(
            "cascade.incident_resolved",
            extra={
                "incident_id": str(incident_id),
                "rule": rule.name,
                "outcome": str(result.outcome),
                "source_id": result.source_id,
                "target_id": result.target_id,
            },
        )
    return summary


def _close(session: Session, incident_id: UUID, note: str | None) -> None:
    incident = session.scalar(select(CascadeIncident).where(CascadeIncident.id == incident_id))
    if incident is None or incident.status != "open":
        return
    incident.status = "resolved"
    incident.resolved_at = utcnow()
    if note:
        incident.error = f"{incident.error or ''} ({note})".strip()
    session.add(incident)
    session.commit()
