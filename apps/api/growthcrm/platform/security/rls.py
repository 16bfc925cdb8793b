from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy.sql import Select

from growthcrm import audit
from growthcrm.metrics import observe_authz_decision
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.errors import TenantMismatch


def scope_tenant_uuid(scope: AccessScope) -> uuid.UUID | None:
    tenant_id = scope.tenant_id
    if tenant_id is None:
        return None
    return uuid.UUID(tenant_id)


def apply_tenant_filter(query: Select[Any], scope: AccessScope) -> Select[Any]:
    """Restrict every tenant-owned entity in the query to the scope's tenant."""

    tenant_uuid = scope_tenant_uuid(scope)
    for description in query.column_descriptions:
        model = description.get("entity")
        if model is None or not hasattr(model, "tenant_id"):
            continue
        column = getattr(model, "tenant_id")
        query = query.where(column.is_(None) if tenant_uuid is None else column == tenant_uuid)
    return query


def validate_tenant_write(resource: str, record_tenant_id: uuid.UUID | None, scope: AccessScope) -> None:
    """Reject writes to a record that belongs to another tenant."""

    tenant_uuid = scope_tenant_uuid(scope)
    if record_tenant_id == tenant_uuid:
        return

    observe_authz_decision("deny_tenant_mismatch")
    audit.record(
        actor_user_id=scope.actor_user_id,
        entity_type="security.tenant",
        entity_id=resource,
        action="tenant_write.denied",
        before=None,
        after={
            "resource": resource,
            "record_tenant_id": str(record_tenant_id) if record_tenant_id else None,
            "scope_tenant_id": scope.tenant_id,
        },
        correlation_id=scope.principal.correlation_id,
        tenant_id=scope.tenant_id,
    )
    raise TenantMismatch()
