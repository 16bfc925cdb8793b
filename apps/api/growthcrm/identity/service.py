from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from growthcrm import audit, events
from growthcrm.authz.guard import authorize
from growthcrm.authz.pages import get_page_permissions
from growthcrm.authz.registry import landing_page_for
from growthcrm.core.auth import issue_session_token, verify_password
from growthcrm.core.config import get_settings
from growthcrm.identity.resolver import ACTIVE_STATUS
from growthcrm.identity.schemas import LoginRequest, PrincipalRead
from growthcrm.platform.security.context import Principal
from growthcrm.platform.security.errors import TenantInactive, TenantNotFound
from growthcrm.tenancy.resolver import ResolvedTenant, SqlTenantStore, TenantRecord, TenantResolver
from growthcrm.users.models import User, utcnow


logger = logging.getLogger("growthcrm.identity")

_INVALID_LOGIN = "Invalid email or password"


class AuthService:
    entity_type = "identity.session"

    def login(self, session: Session, dto: LoginRequest, tenant: ResolvedTenant) -> tuple[User, str]:
        email = str(dto.email).lower()
        user = session.scalar(select(User).where(User.email == email))
        if user is None or not verify_password(dto.password, user.password_hash):
            logger.info("auth.login_failed", extra={"reason": "bad_credentials"})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_LOGIN)
        if user.status != ACTIVE_STATUS:
            logger.info("auth.login_failed", extra={"reason": "inactive_user", "user_id": str(user.id)})
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_LOGIN)
        # a login on a tenant host only admits that tenant's members
        if isinstance(tenant, TenantRecord) and user.tenant_id is not None and str(user.tenant_id) != tenant.id:
            logger.info(
                "auth.login_failed",
                extra={"reason": "tenant_mismatch", "user_id": str(user.id), "subdomain": tenant.subdomain},
            )
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=_INVALID_LOGIN)
        if not isinstance(tenant, TenantRecord) and user.tenant_id is not None:
            self._require_home_tenant_active(session, user)

        token = issue_session_token(
            user_id=str(user.id),
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
            session_version=user.session_version,
        )
        audit.record(
            actor_user_id=str(user.id),
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="login",
            before=None,
            after={"role": user.role},
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
        )
        logger.info("auth.login", extra={"user_id": str(user.id), "role": user.role})
        return user, token

    def _require_home_tenant_active(self, session: Session, user: User) -> None:
        try:
            TenantResolver(SqlTenantStore(session)).resolve_home_tenant(str(user.tenant_id))
        except TenantInactive as exc:
            logger.info("auth.login_failed", extra={"reason": "tenant_inactive", "user_id": str(user.id)})
            raise TenantInactive(redirect_to=get_settings().tenant_inactive_page) from exc
        except TenantNotFound as exc:
            logger.info("auth.login_failed", extra={"reason": "tenant_missing", "user_id": str(user.id)})
            raise TenantNotFound(redirect_to=get_settings().signup_page) from exc

    def logout(self, session: Session, principal: Principal) -> None:
        invalidate_sessions(session, uuid.UUID(principal.user_id))
        session.commit()
        audit.record(
            actor_user_id=principal.user_id,
            entity_type=self.entity_type,
            entity_id=principal.user_id,
            action="logout",
            before=None,
            after=None,
            correlation_id=principal.correlation_id,
            tenant_id=principal.tenant_id,
        )
        events.publish({"event_type": "identity.logged_out", "user_id": principal.user_id})

    def describe(self, principal: Principal, tenant: ResolvedTenant) -> PrincipalRead:
        pages = [
            page
            for page, permission in sorted(get_page_permissions().items())
            if authorize(principal, tenant, permission).allowed
        ]
        return PrincipalRead(
            user_id=principal.user_id,
            email=principal.email,
            role=principal.role,
            tenant_id=principal.tenant_id,
            permissions=principal.permission_set.to_raw(),
            landing_page=landing_page_for(principal.role),
            pages=pages,
        )


def invalidate_sessions(session: Session, user_id: uuid.UUID) -> None:
    """Revoke every outstanding token for the user by moving its session version on."""

    user = session.scalar(select(User).where(User.id == user_id))
    if user is None:
        return
    user.session_version = user.session_version + 1
    user.updated_at = utcnow()
    session.add(user)
