from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from growthcrm.api.responses import error_response, success_response
from growthcrm.authz.dependencies import require_permission
from growthcrm.authz.registry import landing_page_for
from growthcrm.core.auth import issue_session_token
from growthcrm.core.database import get_db
from growthcrm.platform.security.context import AccessScope
from growthcrm.users.schemas import (
    ClientAssignRequest,
    InvitationCreate,
    InvitationRedeem,
    UserPermissionsUpdate,
    UserRead,
    UserUpdate,
)
from growthcrm.users.service import AdvisorClientService, InvitationService, UserService


invitations_router = APIRouter(prefix="/api/invitations", tags=["invitations"])
users_router = APIRouter(prefix="/api/users", tags=["users"])
advisor_router = APIRouter(prefix="/api/advisor", tags=["advisor"])

invitation_service = InvitationService()
user_service = UserService()
advisor_client_service = AdvisorClientService()


def _failed(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    detail = exc.detail
    message = detail.get("message", code) if isinstance(detail, dict) else str(detail)
    return error_response(request, status_code=exc.status_code, code=code, message=message, details=detail)


@invitations_router.post("", status_code=status.HTTP_201_CREATED)
def create_invitation(
    request: Request,
    dto: InvitationCreate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.create")),
) -> JSONResponse:
    try:
        invitation = invitation_service.create_invitation(db, scope, dto)
    except HTTPException as exc:
        return _failed(request, exc, "invitation_create_failed")
    return success_response(invitation.model_dump(mode="json"), status_code=status.HTTP_201_CREATED)


@invitations_router.get("")
def list_invitations(
    status_filter: str | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.view")),
) -> JSONResponse:
    invitations = invitation_service.list_invitations(db, scope, status_filter=status_filter)
    return success_response([item.model_dump(mode="json") for item in invitations])


@invitations_router.post("/redeem", status_code=status.HTTP_201_CREATED)
def redeem_invitation(
    request: Request,
    dto: InvitationRedeem,
    db: Session = Depends(get_db),
) -> JSONResponse:
    try:
        user = invitation_service.redeem_invitation(db, dto)
    except HTTPException as exc:
        return _failed(request, exc, "invitation_redeem_failed")
    token = issue_session_token(
        user_id=str(user.id),
        tenant_id=str(user.tenant_id) if user.tenant_id else None,
        session_version=user.session_version,
    )
    return success_response(
        {
            "user": UserRead.model_validate(user).model_dump(mode="json"),
            "token": token,
            "redirect_to": landing_page_for(user.role),
        },
        status_code=status.HTTP_201_CREATED,
    )


@invitations_router.post("/{invitation_id}/revoke")
def revoke_invitation(
    request: Request,
    invitation_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.create")),
) -> JSONResponse:
    try:
        invitation = invitation_service.revoke_invitation(db, scope, invitation_id)
    except HTTPException as exc:
        return _failed(request, exc, "invitation_revoke_failed")
    return success_response(invitation.model_dump(mode="json"))


@users_router.get("")
def list_users(
    role: str | None = Query(default=None),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.view")),
) -> JSONResponse:
    return success_response([user.model_dump(mode="json") for user in user_service.list_users(db, scope, role=role)])


@users_router.get("/{user_id}")
def get_user(
    request: Request,
    user_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.view")),
) -> JSONResponse:
    try:
        return success_response(user_service.get_user(db, scope, user_id).model_dump(mode="json"))
    except HTTPException as exc:
        return _failed(request, exc, "user_get_failed")


@users_router.patch("/{user_id}")
def update_user(
    request: Request,
    user_id: uuid.UUID,
    dto: UserUpdate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.edit")),
) -> JSONResponse:
    try:
        return success_response(user_service.update_user(db, scope, user_id, dto).model_dump(mode="json"))
    except HTTPException as exc:
        return _failed(request, exc, "user_update_failed")


@users_router.put("/{user_id}/permissions")
def set_user_permissions(
    request: Request,
    user_id: uuid.UUID,
    dto: UserPermissionsUpdate,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.permissions")),
) -> JSONResponse:
    try:
        return success_response(user_service.set_permissions(db, scope, user_id, dto).model_dump(mode="json"))
    except HTTPException as exc:
        return _failed(request, exc, "user_permissions_failed")


@advisor_router.get("/clients")
def list_advisor_clients(
    request: Request,
    advisor_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("clients.view")),
) -> JSONResponse:
    try:
        clients = advisor_client_service.list_clients(db, scope, advisor_id)
    except HTTPException as exc:
        return _failed(request, exc, "advisor_clients_list_failed")
    return success_response([client.model_dump(mode="json") for client in clients])


@advisor_router.post("/clients/{client_id}/assign")
def assign_advisor_client(
    request: Request,
    client_id: uuid.UUID,
    dto: ClientAssignRequest,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("clients.manage")),
) -> JSONResponse:
    try:
        client = advisor_client_service.assign_client(db, scope, client_id, dto.advisor_id)
    except HTTPException as exc:
        return _failed(request, exc, "advisor_client_assign_failed")
    return success_response(client.model_dump(mode="json"))


@advisor_router.post("/clients/{client_id}/disconnect")
def disconnect_advisor_client(
    request: Request,
    client_id: uuid.UUID,
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("clients.manage")),
) -> JSONResponse:
    try:
        client = advisor_client_service.disconnect_client(db, scope, client_id)
    except HTTPException as exc:
        return _failed(request, exc, "advisor_client_disconnect_failed")
    return success_response(client.model_dump(mode="json"))
