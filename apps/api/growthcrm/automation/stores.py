from __future__ import annotations

import uuid
from collections.abc import Callable
from typing import Any, Protocol

from sqlalchemy import inspect, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from growthcrm.automation.models import CascadeIncident, utcnow
from growthcrm.crm.models import DiscoveryCall, PodcastInterview, SalesCall


Record = dict[str, Any]


class StoreError(Exception):
    """A write against an entity store did not complete."""


class DuplicateSource(StoreError):
    """A target already exists for the source record."""


class RecordNotFound(StoreError):
    pass


class EntityStore(Protocol):
    entity_type: str

    def get(self, record_id: Any) -> Record | None: ...

    def insert(self, values: Record) -> Record: ...

    def update(self, record_id: Any, values: Record) -> Record: ...

    def find_by_source(self, source_id: Any) -> Record | None: ...

    def mark_cascade_fired(self, record_id: Any, target_id: Any) -> bool: ...

    def delete(self, record_id: Any) -> None: ...


class IncidentRecorder(Protocol):
    def record_partial_failure(
        self,
        *,
        rule_name: str,
        source_type: str,
        source_id: Any,
        target_id: Any,
        error: str,
        tenant_id: Any = None,
    ) -> str | None: ...

    def resolve(self, *, rule_name: str, source_id: Any) -> int: ...


StoreFactory = Callable[[str], EntityStore]


def _as_uuid(value: Any) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    return uuid.UUID(str(value))


class SqlEntityStore:
    """Dict-shaped access to one CRM table.

    Every write commits on its own so the cascade steps are observable independently.
    The primary mutation is always committed before a cascade starts.
    """

    def __init__(self, session: Session, model: Any, entity_type: str) -> None:
        self.session = session
        self.model = model
        self.entity_type = entity_type

    def _to_record(self, row: Any) -> Record:
        return {attr.key: getattr(row, attr.key) for attr in inspect(self.model).column_attrs}

    def get(self, record_id: Any) -> Record | None:
        row = self.session.scalar(select(self.model).where(self.model.id == _as_uuid(record_id)))
        return self._to_record(row) if row is not None else None

    def insert(self, values: Record) -> Record:
        row = self.model(**values)
        try:
            self.session.add(row)
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateSource(str(exc.orig)) from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        self.session.refresh(row)
        return self._to_record(row)

    def update(self, record_id: Any, values: Record) -> Record:
        row = self.session.scalar(select(self.model).where(self.model.id == _as_uuid(record_id)))
        if row is None:
            raise RecordNotFound(f"{self.entity_type} {record_id} not found")
        for key, value in values.items():
            setattr(row, key, value)
        try:
            self.session.add(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        self.session.refresh(row)
        return self._to_record(row)

    def find_by_source(self, source_id: Any) -> Record | None:
        if not hasattr(self.model, "source_record_id"):
            return None
        row = self.session.scalar(select(self.model).where(self.model.source_record_id == _as_uuid(source_id)))
        return self._to_record(row) if row is not None else None

    def mark_cascade_fired(self, record_id: Any, target_id: Any) -> bool:
        """Set the fired flag only if nobody has set it yet. False means the claim was lost."""
        statement = (
            update(self.model.__table__)
            .where(self.model.id == _as_uuid(record_id), self.model.cascade_fired.is_(False))
            .values(cascade_fired=True, dependent_record_id=_as_uuid(target_id), updated_at=utcnow())
        )
        try:
            result = self.session.execute(statement)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        return result.rowcount == 1

    def delete(self, record_id: Any) -> None:
        row = self.session.scalar(select(self.model).where(self.model.id == _as_uuid(record_id)))
        if row is None:
            return
        try:
            self.session.delete(row)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc


class SqlIncidentRecorder:
    def __init__(self, session: Session) -> None:
        self.session = session

    def record_partial_failure(
        self,
        *,
        rule_name: str,
        source_type: str,
        source_id: Any,
        target_id: Any,
        error: str,
        tenant_id: Any = None,
    ) -> str | None:
        try:
            return self._upsert_open(rule_name, source_type, source_id, target_id, error, tenant_id)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc

    def _upsert_open(
        self,
        rule_name: str,
        source_type: str,
        source_id: Any,
        target_id: Any,
        error: str,
        tenant_id: Any,
    ) -> str:
        existing = self.session.scalar(
            select(CascadeIncident).where(
                CascadeIncident.rule_name == rule_name,
                CascadeIncident.source_id == _as_uuid(source_id),
                CascadeIncident.status == "open",
            )
        )
        if existing is not None:
            existing.error = error
            existing.target_id = _as_uuid(target_id) if target_id is not None else existing.target_id
            incident = existing
        else:
            incident = CascadeIncident(
                rule_name=rule_name,
                source_type=source_type,
                source_id=_as_uuid(source_id),
                target_id=_as_uuid(target_id) if target_id is not None else None,
                error=error,
                tenant_id=_as_uuid(tenant_id) if tenant_id is not None else None,
            )
        self.session.add(incident)
        self.session.commit()
        return str(incident.id)

    def resolve(self, *, rule_name: str, source_id: Any) -> int:
        statement = (
            update(CascadeIncident.__table__)
            .where(
                CascadeIncident.rule_name == rule_name,
                CascadeIncident.source_id == _as_uuid(source_id),
                CascadeIncident.status == "open",
            )
            .values(status="resolved", resolved_at=utcnow())
        )
        try:
            result = self.session.execute(statement)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc
        return int(result.rowcount or 0)


ENTITY_MODELS: dict[str, Any] = {
    "podcast_interview": PodcastInterview,
    "discovery_call": DiscoveryCall,
    "sales_call": SalesCall,
}


def sql_store_factory(session: Session) -> StoreFactory:
    stores: dict[str, SqlEntityStore] = {}

    def store_for(entity_type: str) -> EntityStore:
        if entity_type not in stores:
            stores[entity_type] = SqlEntityStore(session, ENTITY_MODELS[entity_type], entity_type)
        return stores[entity_type]

    return store_for
