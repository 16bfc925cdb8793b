from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from pydantic import BaseModel
from sqlalchemy import inspect
from sqlalchemy.orm import Session

from growthcrm import audit, events
from growthcrm.automation.rules import rules_for_source
from growthcrm.automation.service import build_engine
from growthcrm.crm.models import DiscoveryCall, PodcastInterview, SalesCall, utcnow
from growthcrm.crm.schemas import DiscoveryCallRead, PodcastInterviewRead, SalesCallRead
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.repository import TenantScopedRepository


def _percent(part: int, whole: int) -> int:
    return round(part * 100 / whole) if whole else 0


class CallRecordService(TenantScopedRepository):
    """CRUD for one kind of call record. Updates feed the cascade rules for that kind."""

    read_schema: type[BaseModel]
    label = "record"

    def __init__(self) -> None:
        self.entity_type = self.resource.split(".", 1)[1]

    def list_records(self, session: Session, scope: AccessScope) -> tuple[list[BaseModel], dict[str, Any]]:
        query = self.scoped_select(scope).order_by(self.model.created_at.desc())
        rows = list(session.scalars(query))
        return [self.read_schema.model_validate(row) for row in rows], self.stats(rows)

    def stats(self, rows: list[Any]) -> dict[str, Any]:
        return {"total": len(rows)}

    def get_record(self, session: Session, scope: AccessScope, record_id: uuid.UUID) -> BaseModel:
        return self.read_schema.model_validate(self._get_or_404(session, scope, record_id))

    def create_record(self, session: Session, scope: AccessScope, dto: BaseModel) -> BaseModel:
        row = self.model(**self.stamp_tenant(dto.model_dump(), scope))
        session.add(row)
        session.commit()
        session.refresh(row)

        created = self.read_schema.model_validate(row)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.resource,
            entity_id=str(row.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": f"{self.resource}.created",
                "entity_id": str(row.id),
                "tenant_id": scope.tenant_id,
            }
        )
        return created

    def update_record(
        self,
        session: Session,
        scope: AccessScope,
        record_id: uuid.UUID,
        dto: BaseModel,
    ) -> tuple[BaseModel, dict[str, Any] | None]:
        row = self._get_or_404(session, scope, record_id)
        self.validate_write(row, scope)
        columns = inspect(self.model).columns
        submitted = dto.model_dump(exclude_unset=True)
        changes = self.prepare_changes(
            {key: value for key, value in submitted.items() if value is not None or columns[key].nullable}
        )
        before = self._snapshot(row)

        for key, value in changes.items():
            setattr(row, key, value)
        row.updated_at = utcnow()
        session.add(row)
        session.commit()
        session.refresh(row)
        after = self._snapshot(row)

        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.resource,
            entity_id=str(row.id),
            action="update",
            before=self.read_schema.model_validate(before).model_dump(mode="json"),
            after=self.read_schema.model_validate(after).model_dump(mode="json"),
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": f"{self.resource}.updated",
                "entity_id": str(row.id),
                "tenant_id": scope.tenant_id,
                "changed": sorted(changes),
            }
        )

        # the update above is already committed, a cascade outcome never undoes it
        automation = self._run_cascades(session, scope, before, after)
        session.refresh(row)
        return self.read_schema.model_validate(row), automation

    def delete_record(self, session: Session, scope: AccessScope, record_id: uuid.UUID) -> None:
        row = self._get_or_404(session, scope, record_id)
        self.validate_write(row, scope)
        snapshot = self.read_schema.model_validate(row).model_dump(mode="json")
        session.delete(row)
        session.commit()

        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.resource,
            entity_id=str(record_id),
            action="delete",
            before=snapshot,
            after=None,
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": f"{self.resource}.deleted",
                "entity_id": str(record_id),
                "tenant_id": scope.tenant_id,
            }
        )

    def prepare_changes(self, changes: dict[str, Any]) -> dict[str, Any]:
        return changes

    def _run_cascades(
        self,
        session: Session,
        scope: AccessScope,
        before: dict[str, Any],
        after: dict[str, Any],
    ) -> dict[str, Any] | None:
        rules = rules_for_source(self.entity_type)
        if not rules:
            return None
        engine = build_engine(session)
        results = [engine.maybe_cascade(before, after, rule, actor_user_id=scope.actor_user_id) for rule in rules]
        return results[0].to_dict() if len(results) == 1 else {"results": [result.to_dict() for result in results]}

    def _snapshot(self, row: Any) -> dict[str, Any]:
        return {attr.key: getattr(row, attr.key) for attr in inspect(self.model).column_attrs}

    def _get_or_404(self, session: Session, scope: AccessScope, record_id: uuid.UUID) -> Any:
        row = self.get_scoped(session, scope, record_id)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.label.capitalize()} not found")
        return row


class PodcastInterviewService(CallRecordService):
    model = PodcastInterview
    resource = "crm.podcast_interview"
    read_schema = PodcastInterviewRead
    label = "interview"

    def prepare_changes(self, changes: dict[str, Any]) -> dict[str, Any]:
        if "overall_score" in changes:
            changes["analyzed_at"] = utcnow()
        return changes

    def stats(self, rows: list[Any]) -> dict[str, Any]:
        analyzed = [row for row in rows if row.overall_score is not None]
        qualified = sum(1 for row in rows if row.qualified_for_discovery)
        average = round(sum(row.overall_score for row in analyzed) / len(analyzed), 2) if analyzed else 0
        return {
            "total": len(rows),
            "scheduled": sum(1 for row in rows if row.interview_status == "scheduled"),
            "completed": sum(1 for row in rows if row.interview_status in {"completed", "analyzed"}),
            "analyzed": len(analyzed),
            "qualified": qualified,
            "average_score": average,
            "conversion_rate": _percent(qualified, len(rows)),
            "auto_progressed": sum(1 for row in rows if row.cascade_fired),
        }


class DiscoveryCallService(CallRecordService):
    model = DiscoveryCall
    resource = "crm.discovery_call"
    read_schema = DiscoveryCallRead
    label = "discovery call"

    def stats(self, rows: list[Any]) -> dict[str, Any]:
        qualified = sum(1 for row in rows if row.call_status == "qualified")
        return {
            "total": len(rows),
            "scheduled": sum(1 for row in rows if row.call_status == "scheduled"),
            "completed": sum(1 for row in rows if row.call_status == "completed"),
            "qualified": qualified,
            "qualification_rate": _percent(qualified, len(rows)),
            "auto_progressed": sum(1 for row in rows if row.cascade_fired),
        }


class SalesCallService(CallRecordService):
    model = SalesCall
    resource = "crm.sales_call"
    read_schema = SalesCallRead
    label = "sales call"

    def stats(self, rows: list[Any]) -> dict[str, Any]:
        return {
            "total": len(rows),
            "scheduled": sum(1 for row in rows if row.call_status == "scheduled"),
            "won": sum(1 for row in rows if row.call_status == "won"),
            "pipeline_value": sum((Decimal(row.deal_value or 0) for row in rows), Decimal("0")),
        }
