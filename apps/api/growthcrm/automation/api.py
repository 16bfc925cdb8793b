from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from growthcrm.api.responses import success_response
from growthcrm.authz.dependencies import require_permission
from growthcrm.automation.service import list_open_incidents
from growthcrm.core.database import get_db
from growthcrm.platform.security.context import AccessScope


router = APIRouter(prefix="/api/automation", tags=["automation"])


@router.get("/incidents")
def list_cascade_incidents(
    db: Session = Depends(get_db),
    scope: AccessScope = Depends(require_permission("users.permissions")),
) -> JSONResponse:
    return success_response([incident.model_dump(mode="json") for incident in list_open_incidents(db, scope)])
