from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from growthcrm.authz.registry import PermissionSet, permissions_for
from growthcrm.context import get_correlation_id
from growthcrm.core.auth import InvalidSessionToken, decode_session_token
from growthcrm.core.config import Settings
from growthcrm.platform.security.context import Principal
from growthcrm.platform.security.errors import Unauthenticated
from growthcrm.users.models import User


logger = logging.getLogger("growthcrm.identity")

ACTIVE_STATUS = "active"


@dataclass(frozen=True, slots=True)
class IdentityRecord:
    user_id: str
    email: str
    role: str
    tenant_id: str | None
    permission_set: PermissionSet
    status: str


def permission_set_for_user(role: str, stored_permissions: Any) -> PermissionSet:
    if stored_permissions is None:
        return permissions_for(role)
    return PermissionSet.from_raw(stored_permissions)


class IdentityLookup(Protocol):
    def get_principal_by_credential(self, credential: str) -> IdentityRecord | None:
        ...


class SqlIdentityLookup:
    """Resolve a session token against the user table."""

    def __init__(self, session: Session, settings: Settings | None = None) -> None:
        self.session = session
        self.settings = settings

    def get_principal_by_credential(self, credential: str) -> IdentityRecord | None:
        try:
            claims = decode_session_token(credential, self.settings)
            user_id = uuid.UUID(claims.user_id)
        except (InvalidSessionToken, ValueError):
            return None

        user = self.session.scalar(select(User).where(User.id == user_id))
        if user is None or user.session_version != claims.session_version:
            return None
        return IdentityRecord(
            user_id=str(user.id),
            email=user.email,
            role=user.role,
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
            permission_set=permission_set_for_user(user.role, user.permissions),
            status=user.status,
        )


class IdentityResolver:
    def __init__(self, lookup: IdentityLookup) -> None:
        self.lookup = lookup

    def resolve_identity(self, credential: str | None) -> Principal:
        if not credential or not credential.strip():
            raise Unauthenticated()

        record = self.lookup.get_principal_by_credential(credential.strip())
        if record is None:
            logger.info("identity.rejected", extra={"reason": "unknown_credential"})
            raise Unauthenticated()
        if record.status != ACTIVE_STATUS:
            logger.info("identity.rejected", extra={"reason": "inactive_user", "user_id": record.user_id})
            raise Unauthenticated()

        return Principal(
            user_id=record.user_id,
            role=record.role,
            tenant_id=record.tenant_id,
            permission_set=record.permission_set,
            email=record.email,
            correlation_id=get_correlation_id(),
        )
