import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from growthcrm.api.responses import error_response, success_response
from growthcrm.authz.dependencies import require_permission
from growthcrm.core.database import get_db
from growthcrm.crm.schemas import (
    DiscoveryCallCreate,
    DiscoveryCallUpdate,
    PodcastInterviewCreate,
    PodcastInterviewUpdate,
    SalesCallCreate,
    SalesCallUpdate,
)
from growthcrm.crm.service import (
    CallRecordService,
    DiscoveryCallService,
    PodcastInterviewService,
    SalesCallService,
)
from growthcrm.platform.security.context import AccessScope


podcast_interview_service = PodcastInterviewService()
discovery_call_service = DiscoveryCallService()
sales_call_service = SalesCallService()


def build_call_router(
    path: str,
    service: CallRecordService,
    create_schema: type[BaseModel],
    update_schema: type[BaseModel],
    code: str,
) -> APIRouter:
    """Routes for one call record collection; bodies are typed per collection."""

    router = APIRouter(prefix=f"/api/{path}", tags=[f"crm.{path}"])
    label = service.label.capitalize()

    @router.get("")
    def list_records(
        db: Session = Depends(get_db),
        scope: AccessScope = Depends(require_permission("calls.view")),
    ) -> JSONResponse:
        items, stats = service.list_records(db, scope)
        return success_response({"items": [item.model_dump(mode="json") for item in items], "stats": stats})

    @router.post("", status_code=status.HTTP_201_CREATED)
    def create_record(
        dto: create_schema,
        db: Session = Depends(get_db),
        scope: AccessScope = Depends(require_permission("calls.create")),
    ) -> JSONResponse:
        created = service.create_record(db, scope, dto)
        return success_response(
            created.model_dump(mode="json"),
            status_code=status.HTTP_201_CREATED,
            message=f"{label} created successfully",
        )

    @router.get("/{record_id}")
    def get_record(
        request: Request,
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        scope: AccessScope = Depends(require_permission("calls.view")),
    ) -> JSONResponse:
        try:
            return success_response(service.get_record(db, scope, record_id).model_dump(mode="json"))
        except HTTPException as exc:
            return error_response(
                request,
                status_code=exc.status_code,
                code=f"{code}_get_failed",
                message=str(exc.detail),
            )

    @router.put("/{record_id}")
    def update_record(
        request: Request,
        record_id: uuid.UUID,
        dto: update_schema,
        db: Session = Depends(get_db),
        scope: AccessScope = Depends(require_permission("calls.edit")),
    ) -> JSONResponse:
        try:
            updated, automation = service.update_record(db, scope, record_id, dto)
        except HTTPException as exc:
            return error_response(
                request,
                status_code=exc.status_code,
                code=f"{code}_update_failed",
                message=str(exc.detail),
            )
        return success_response(
            updated.model_dump(mode="json"),
            message=f"{label} updated successfully",
            automation=automation,
        )

    @router.delete("/{record_id}")
    def delete_record(
        request: Request,
        record_id: uuid.UUID,
        db: Session = Depends(get_db),
        scope: AccessScope = Depends(require_permission("calls.delete")),
    ) -> JSONResponse:
        try:
            service.delete_record(db, scope, record_id)
        except HTTPException as exc:
            return error_response(
                request,
                status_code=exc.status_code,
                code=f"{code}_delete_failed",
                message=str(exc.detail),
            )
        return success_response({"id": str(record_id)}, message=f"{label} deleted successfully")

    return router


podcast_interviews_router = build_call_router(
    "podcast-interviews",
    podcast_interview_service,
    PodcastInterviewCreate,
    PodcastInterviewUpdate,
    "podcast_interview",
)
discovery_calls_router = build_call_router(
    "discovery-calls",
    discovery_call_service,
    DiscoveryCallCreate,
    DiscoveryCallUpdate,
    "discovery_call",
)
sales_calls_router = build_call_router(
    "sales-calls",
    sales_call_service,
    SalesCallCreate,
    SalesCallUpdate,
    "sales_call",
)
