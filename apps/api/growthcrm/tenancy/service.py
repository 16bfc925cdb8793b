from __future__ import annotations

import logging
import uuid

from fastapi import HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from growthcrm import audit, events
from growthcrm.authz.registry import owner_role
from growthcrm.core.auth import hash_password
from growthcrm.core.events import InProcessEventBus, InternalEvent
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.rls import scope_tenant_uuid
from growthcrm.tenancy.models import Tenant, utcnow
from growthcrm.tenancy.records import TenantLimits
from growthcrm.tenancy.resolver import (
    SqlTenantStore,
    TenantCache,
    TenantResolver,
    is_dns_label,
    tenant_cache,
)
from growthcrm.tenancy.schemas import TenantRead, TenantSignupRequest, TenantStatusChangeRequest
from growthcrm.users.models import User


logger = logging.getLogger("growthcrm.tenancy")

TIER_LIMITS: dict[str, TenantLimits] = {
    "starter": TenantLimits(max_contacts=500, max_users=5, max_advisors=2),
    "growth": TenantLimits(max_contacts=5000, max_users=25, max_advisors=10),
    "enterprise": TenantLimits(max_contacts=100000, max_users=250, max_advisors=100),
}

# subscription status -> tenant status
_STATUS_BY_SUBSCRIPTION = {
    "active": "active",
    "trial": "active",
    "suspended": "inactive",
    "cancelled": "inactive",
}

TENANT_STATUS_CHANGED = "tenant.status_changed"


class TenantService:
    entity_type = "tenancy.tenant"

    def signup(self, session: Session, dto: TenantSignupRequest) -> tuple[TenantRead, User]:
        subdomain = dto.subdomain.strip().lower()
        if not is_dns_label(subdomain):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="subdomain must be a DNS label")
        if TenantResolver(SqlTenantStore(session)).is_untenanted(subdomain):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="subdomain is not available")

        owner_email = str(dto.owner_email).lower()
        if session.scalar(select(User.id).where(User.email == owner_email)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")

        limits = TIER_LIMITS[dto.subscription_tier]
        tenant = Tenant(
            subdomain=subdomain,
            business_name=dto.business_name.strip(),
            subscription_tier=dto.subscription_tier,
            subscription_status="trial",
            status="active",
            max_contacts=limits.max_contacts,
            max_users=limits.max_users,
            max_advisors=limits.max_advisors,
        )
        session.add(tenant)
        try:
            session.flush()
            owner = User(
                tenant_id=tenant.id,
                email=owner_email,
                name=dto.owner_name,
                role=owner_role(),
                password_hash=hash_password(dto.owner_password),
            )
            session.add(owner)
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="subdomain already taken") from exc

        session.refresh(tenant)
        session.refresh(owner)
        created = TenantRead.model_validate(tenant)
        audit.record(
            actor_user_id=str(owner.id),
            entity_type=self.entity_type,
            entity_id=str(tenant.id),
            action="signup",
            before=None,
            after=created.model_dump(mode="json"),
            tenant_id=str(tenant.id),
        )
        events.publish(
            {
                "event_type": "tenant.created",
                "tenant_id": str(tenant.id),
                "subdomain": tenant.subdomain,
                "subscription_tier": tenant.subscription_tier,
            }
        )
        logger.info("tenant.created", extra={"tenant_id": str(tenant.id), "subdomain": tenant.subdomain})
        return created, owner

    def _get_scoped_tenant(self, session: Session, scope: AccessScope) -> Tenant:
        tenant_uuid = scope_tenant_uuid(scope)
        if tenant_uuid is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="no tenant in scope")
        tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_uuid))
        if tenant is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tenant not found")
        return tenant

    def change_subscription_status(
        self,
        session: Session,
        scope: AccessScope,
        dto: TenantStatusChangeRequest,
    ) -> TenantRead:
        tenant = self._get_scoped_tenant(session, scope)
        return self._apply_status(session, scope, tenant, dto.subscription_status, action="status_change", reason=dto.reason)

    def reactivate(self, session: Session, scope: AccessScope) -> TenantRead:
        tenant = self._get_scoped_tenant(session, scope)
        return self._apply_status(session, scope, tenant, "active", action="reactivate", reason=None)

    def _apply_status(
        self,
        session: Session,
        scope: AccessScope,
        tenant: Tenant,
        subscription_status: str,
        *,
        action: str,
        reason: str | None,
    ) -> TenantRead:
        before = TenantRead.model_validate(tenant).model_dump(mode="json")
        tenant.subscription_status = subscription_status
        tenant.status = _STATUS_BY_SUBSCRIPTION[subscription_status]
        tenant.updated_at = utcnow()
        session.add(tenant)
        session.commit()
        session.refresh(tenant)

        updated = TenantRead.model_validate(tenant)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(tenant.id),
            action=action,
            before=before,
            after={**updated.model_dump(mode="json"), "reason": reason},
            correlation_id=scope.principal.correlation_id,
            tenant_id=str(tenant.id),
        )
        events.publish(
            {
                "event_type": TENANT_STATUS_CHANGED,
                "tenant_id": str(tenant.id),
                "subdomain": tenant.subdomain,
                "status": tenant.status,
                "subscription_status": tenant.subscription_status,
            }
        )
        logger.info(
            "tenant.status_changed",
            extra={"tenant_id": str(tenant.id), "subdomain": tenant.subdomain, "status": tenant.status},
        )
        return updated


def count_tenant_users(session: Session, tenant_id: uuid.UUID | None, *, roles: frozenset[str] | None = None) -> int:
    query = select(func.count()).select_from(User)
    query = query.where(User.tenant_id.is_(None) if tenant_id is None else User.tenant_id == tenant_id)
    if roles is not None:
        query = query.where(User.role.in_(sorted(roles)))
    return int(session.scalar(query) or 0)


def invalidate_cached_tenant(event: InternalEvent, cache: TenantCache | None = None) -> None:
    subdomain = event.payload.get("subdomain")
    if isinstance(subdomain, str) and subdomain:
        (cache or tenant_cache).invalidate(subdomain)


def register_tenancy_listeners(bus: InProcessEventBus) -> None:
    bus.subscribe(TENANT_STATUS_CHANGED, invalidate_cached_tenant)

