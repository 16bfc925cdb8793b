from __future__ import annotations

import uuid
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select

from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.rls import apply_tenant_filter, scope_tenant_uuid, validate_tenant_write


class TenantScopedRepository:
    model: Any = None
    resource = ""

    def scoped_select(self, scope: AccessScope) -> Select[Any]:
        return apply_tenant_filter(select(self.model), scope)

    def get_scoped(self, session: Session, scope: AccessScope, record_id: uuid.UUID) -> Any | None:
        return session.scalar(self.scoped_select(scope).where(self.model.id == record_id))

    def stamp_tenant(self, values: dict[str, Any], scope: AccessScope) -> dict[str, Any]:
        stamped = dict(values)
        stamped["tenant_id"] = scope_tenant_uuid(scope)
        return stamped

    def validate_write(self, record: Any, scope: AccessScope) -> None:
        validate_tenant_write(self.resource, getattr(record, "tenant_id", None), scope)
