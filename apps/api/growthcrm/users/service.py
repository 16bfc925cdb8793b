from __future__ import annotations

import hashlib
import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone

from fastapi import HTTPException, status
from sqlalchemy import Select, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from growthcrm import audit, events
from growthcrm.authz.registry import (
    PermissionSet,
    advisor_roles,
    can_advise,
    client_roles,
    is_client_role,
    is_invitable_role,
    is_known_permission,
    is_known_role,
    permissions_for,
)
from growthcrm.core.auth import hash_password
from growthcrm.core.config import get_settings
from growthcrm.identity.resolver import permission_set_for_user
from growthcrm.identity.service import invalidate_sessions
from growthcrm.metrics import observe_invitation_event
from growthcrm.platform.security.context import AccessScope
from growthcrm.platform.security.repository import TenantScopedRepository
from growthcrm.platform.security.rls import scope_tenant_uuid
from growthcrm.tenancy.models import Tenant
from growthcrm.tenancy.service import count_tenant_users
from growthcrm.users.models import Invitation, User, utcnow
from growthcrm.users.schemas import (
    InvitationCreate,
    InvitationCreated,
    InvitationRead,
    InvitationRedeem,
    UserPermissionsUpdate,
    UserRead,
    UserUpdate,
)


logger = logging.getLogger("growthcrm.users")

PENDING = "pending"
PENDING_EXISTS_MESSAGE = "There is already a pending invitation for this email"


def as_utc(value: datetime) -> datetime:
    # sqlite hands timestamps back naive
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def hash_invitation_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class UserRepository(TenantScopedRepository):
    model = User
    resource = "users.user"


class InvitationRepository(TenantScopedRepository):
    model = Invitation
    resource = "users.invitation"


user_repository = UserRepository()
invitation_repository = InvitationRepository()


def _get_user_or_404(session: Session, scope: AccessScope, user_id: uuid.UUID) -> User:
    user = user_repository.get_scoped(session, scope, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


def _can_manage_users(scope: AccessScope) -> bool:
    return scope.principal.permission_set.allows("users.edit")


def require_grantable(scope: AccessScope, granted: PermissionSet) -> None:
    """Nobody hands out a permission they do not hold themselves."""
    if not scope.principal.permission_set.covers(granted):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized to grant these permissions")


def require_manageable(scope: AccessScope, user: User) -> None:
    """Role and permission changes need an actor other than the target who outranks the target."""
    if str(user.id) == scope.actor_user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You cannot change your own access")
    if not is_invitable_role(user.role):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="The account owner's access cannot be changed"
        )
    require_grantable(scope, permission_set_for_user(user.role, user.permissions))


class InvitationService:
    entity_type = "users.invitation"

    def create_invitation(self, session: Session, scope: AccessScope, dto: InvitationCreate) -> InvitationCreated:
        if not is_known_role(dto.role) or not is_invitable_role(dto.role):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid role")
        require_grantable(scope, permissions_for(dto.role))

        email = str(dto.email).lower()
        if session.scalar(select(User.id).where(User.email == email)) is not None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="User already exists")

        self._expire_stale(session, email)
        if self._pending_for_email(session, email) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=PENDING_EXISTS_MESSAGE)

        tenant_uuid = scope_tenant_uuid(scope)
        self._enforce_limits(session, tenant_uuid, dto.role)

        token = secrets.token_hex(32)
        invitation = Invitation(
            tenant_id=tenant_uuid,
            email=email,
            role=dto.role,
            token_hash=hash_invitation_token(token),
            status=PENDING,
            invited_by=uuid.UUID(scope.actor_user_id),
            expires_at=utcnow() + timedelta(days=get_settings().invitation_ttl_days),
        )
        session.add(invitation)
        try:
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=PENDING_EXISTS_MESSAGE) from exc
        session.refresh(invitation)

        created = InvitationRead.model_validate(invitation)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(invitation.id),
            action="create",
            before=None,
            after=created.model_dump(mode="json"),
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": "invitation.created",
                "invitation_id": str(invitation.id),
                "tenant_id": scope.tenant_id,
                "email": email,
                "role": dto.role,
            }
        )
        observe_invitation_event("created")
        return InvitationCreated(**created.model_dump(), token=token)

    def redeem_invitation(self, session: Session, dto: InvitationRedeem) -> User:
        invitation = session.scalar(select(Invitation).where(Invitation.token_hash == hash_invitation_token(dto.token)))
        if invitation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
        if invitation.status != PENDING:
            observe_invitation_event("redeem_rejected")
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Invitation is {invitation.status}")
        if as_utc(invitation.expires_at) <= utcnow():
            invitation.status = "expired"
            session.add(invitation)
            session.commit()
            observe_invitation_event("expired")
            raise HTTPException(status_code=status.HTTP_410_GONE, detail="Invitation has expired")
        if session.scalar(select(User.id).where(User.email == invitation.email)) is not None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")

        user = User(
            tenant_id=invitation.tenant_id,
            email=invitation.email,
            name=dto.name,
            role=invitation.role,
            password_hash=hash_password(dto.password),
            invited_by=invitation.invited_by,
        )
        invitation_id = invitation.id
        try:
            session.add(user)
            session.flush()
            # the status guard makes acceptance single-use across concurrent redeemers
            result = session.execute(
                update(Invitation)
                .where(Invitation.id == invitation_id, Invitation.status == PENDING)
                .values(status="accepted", accepted_at=utcnow(), accepted_user_id=user.id)
            )
            if result.rowcount != 1:
                session.rollback()
                observe_invitation_event("redeem_rejected")
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Invitation is accepted")
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists") from exc
        session.refresh(user)

        audit.record(
            actor_user_id=str(user.id),
            entity_type=self.entity_type,
            entity_id=str(invitation_id),
            action="redeem",
            before={"status": PENDING},
            after={"status": "accepted", "user_id": str(user.id)},
            tenant_id=str(user.tenant_id) if user.tenant_id else None,
        )
        events.publish(
            {
                "event_type": "invitation.accepted",
                "invitation_id": str(invitation_id),
                "user_id": str(user.id),
                "tenant_id": str(user.tenant_id) if user.tenant_id else None,
            }
        )
        observe_invitation_event("accepted")
        logger.info("invitation.accepted", extra={"user_id": str(user.id), "role": user.role})
        return user

    def revoke_invitation(self, session: Session, scope: AccessScope, invitation_id: uuid.UUID) -> InvitationRead:
        invitation = invitation_repository.get_scoped(session, scope, invitation_id)
        if invitation is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invitation not found")
        if invitation.status != PENDING:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=f"Invitation is {invitation.status}")

        invitation.status = "revoked"
        session.add(invitation)
        session.commit()
        session.refresh(invitation)
        revoked = InvitationRead.model_validate(invitation)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(invitation.id),
            action="revoke",
            before={"status": PENDING},
            after={"status": "revoked"},
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        observe_invitation_event("revoked")
        return revoked

    def list_invitations(
        self,
        session: Session,
        scope: AccessScope,
        *,
        status_filter: str | None = None,
    ) -> list[InvitationRead]:
        query: Select = invitation_repository.scoped_select(scope)
        if status_filter:
            query = query.where(Invitation.status == status_filter)
        rows = session.scalars(query.order_by(Invitation.created_at.desc()))
        return [InvitationRead.model_validate(row) for row in rows]

    def _pending_for_email(self, session: Session, email: str) -> Invitation | None:
        return session.scalar(select(Invitation).where(Invitation.email == email, Invitation.status == PENDING))

    def _expire_stale(self, session: Session, email: str) -> None:
        pending = self._pending_for_email(session, email)
        if pending is not None and as_utc(pending.expires_at) <= utcnow():
            pending.status = "expired"
            session.add(pending)
            session.commit()
            observe_invitation_event("expired")

    def _enforce_limits(self, session: Session, tenant_uuid: uuid.UUID | None, role: str) -> None:
        if tenant_uuid is None:
            return
        tenant = session.scalar(select(Tenant).where(Tenant.id == tenant_uuid))
        if tenant is None:
            return

        pending_query = select(func.count()).select_from(Invitation).where(
            Invitation.tenant_id == tenant_uuid,
            Invitation.status == PENDING,
        )
        seats = count_tenant_users(session, tenant_uuid) + int(session.scalar(pending_query) or 0)
        if seats >= tenant.max_users:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User limit reached for this account")

        if can_advise(role):
            advisor_set = advisor_roles()
            pending_advisors = int(
                session.scalar(pending_query.where(Invitation.role.in_(sorted(advisor_set)))) or 0
            )
            advisors = count_tenant_users(session, tenant_uuid, roles=advisor_set) + pending_advisors
            if advisors >= tenant.max_advisors:
                raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Advisor limit reached for this account")


class UserService:
    entity_type = "users.user"

    def list_users(self, session: Session, scope: AccessScope, *, role: str | None = None) -> list[UserRead]:
        query = user_repository.scoped_select(scope)
        if role:
            query = query.where(User.role == role)
        return [UserRead.model_validate(row) for row in session.scalars(query.order_by(User.created_at))]

    def get_user(self, session: Session, scope: AccessScope, user_id: uuid.UUID) -> UserRead:
        return UserRead.model_validate(_get_user_or_404(session, scope, user_id))

    def update_user(self, session: Session, scope: AccessScope, user_id: uuid.UUID, dto: UserUpdate) -> UserRead:
        user = _get_user_or_404(session, scope, user_id)
        before = UserRead.model_validate(user).model_dump(mode="json")
        revoke_sessions = False
        role_changed = dto.role is not None and dto.role != user.role
        if role_changed or (dto.status is not None and dto.status != user.status):
            require_manageable(scope, user)

        if role_changed:
            if not is_known_role(dto.role) or not is_invitable_role(dto.role):
                raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid role")
            require_grantable(scope, permissions_for(dto.role))
            if can_advise(user.role) and not can_advise(dto.role) and self._has_clients(session, user.id):
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Reassign this user's clients before changing the role",
                )
            user.role = dto.role
            if not is_client_role(dto.role):
                user.advisor_id = None
            revoke_sessions = True
        if dto.status is not None and dto.status != user.status:
            user.status = dto.status
            revoke_sessions = True
        if dto.name is not None:
            user.name = dto.name

        user.updated_at = utcnow()
        session.add(user)
        if revoke_sessions:
            invalidate_sessions(session, user.id)
        session.commit()
        session.refresh(user)

        updated = UserRead.model_validate(user)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="update",
            before=before,
            after=updated.model_dump(mode="json"),
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        return updated

    def set_permissions(
        self,
        session: Session,
        scope: AccessScope,
        user_id: uuid.UUID,
        dto: UserPermissionsUpdate,
    ) -> UserRead:
        user = _get_user_or_404(session, scope, user_id)
        require_manageable(scope, user)
        if isinstance(dto.permissions, list):
            unknown = sorted({key for key in dto.permissions if not is_known_permission(key)})
            if unknown:
                raise HTTPException(
                    status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                    detail={"message": "Unknown permission keys", "keys": unknown},
                )
            stored: str | list[str] | None = PermissionSet.of(dto.permissions).to_raw()
        else:
            stored = dto.permissions
        require_grantable(scope, permission_set_for_user(user.role, stored))

        before = UserRead.model_validate(user).model_dump(mode="json")
        user.permissions = stored
        user.updated_at = utcnow()
        session.add(user)
        session.commit()
        session.refresh(user)

        updated = UserRead.model_validate(user)
        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(user.id),
            action="set_permissions",
            before=before,
            after=updated.model_dump(mode="json"),
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        return updated

    def _has_clients(self, session: Session, advisor_id: uuid.UUID) -> bool:
        return session.scalar(select(User.id).where(User.advisor_id == advisor_id).limit(1)) is not None


class AdvisorClientService:
    entity_type = "users.advisor_client"

    def list_clients(
        self,
        session: Session,
        scope: AccessScope,
        advisor_id: uuid.UUID | None = None,
    ) -> list[UserRead]:
        target_advisor = advisor_id or uuid.UUID(scope.actor_user_id)
        if str(target_advisor) != scope.actor_user_id and not scope.principal.permission_set.allows("users.view"):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")

        query = user_repository.scoped_select(scope).where(
            User.advisor_id == target_advisor,
            User.role.in_(sorted(client_roles())),
        )
        return [UserRead.model_validate(row) for row in session.scalars(query.order_by(User.created_at))]

    def assign_client(
        self,
        session: Session,
        scope: AccessScope,
        client_id: uuid.UUID,
        advisor_id: uuid.UUID | None,
    ) -> UserRead:
        target_advisor_id = advisor_id or uuid.UUID(scope.actor_user_id)
        if str(target_advisor_id) != scope.actor_user_id and not _can_manage_users(scope):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")

        client = _get_user_or_404(session, scope, client_id)
        if not is_client_role(client.role):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="User is not a client")
        advisor = _get_user_or_404(session, scope, target_advisor_id)
        if not can_advise(advisor.role):
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="Advisor must have an advisor role",
            )

        before = {"advisor_id": str(client.advisor_id) if client.advisor_id else None}
        client.advisor_id = advisor.id
        client.updated_at = utcnow()
        session.add(client)
        session.commit()
        session.refresh(client)

        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(client.id),
            action="assign",
            before=before,
            after={"advisor_id": str(advisor.id)},
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": "advisor.client_assigned",
                "client_id": str(client.id),
                "advisor_id": str(advisor.id),
                "tenant_id": scope.tenant_id,
            }
        )
        return UserRead.model_validate(client)

    def disconnect_client(self, session: Session, scope: AccessScope, client_id: uuid.UUID) -> UserRead:
        client = _get_user_or_404(session, scope, client_id)
        if not is_client_role(client.role):
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="User is not a client")
        if client.advisor_id is None:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Client is not connected to an advisor")
        if str(client.advisor_id) != scope.actor_user_id and not _can_manage_users(scope):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Client is not connected to this advisor")

        previous_advisor_id = str(client.advisor_id)
        client.advisor_id = None
        client.updated_at = utcnow()
        session.add(client)
        session.commit()
        session.refresh(client)

        audit.record(
            actor_user_id=scope.actor_user_id,
            entity_type=self.entity_type,
            entity_id=str(client.id),
            action="disconnect",
            before={"advisor_id": previous_advisor_id},
            after={"advisor_id": None},
            correlation_id=scope.principal.correlation_id,
            tenant_id=scope.tenant_id,
        )
        events.publish(
            {
                "event_type": "advisor.client_disconnected",
                "client_id": str(client.id),
                "advisor_id": previous_advisor_id,
                "tenant_id": scope.tenant_id,
            }
        )
        logger.info("advisor.client_disconnected", extra={"user_id": scope.actor_user_id, "target_id": str(client.id)})
        return UserRead.model_validate(client)
