from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from growthcrm.context import get_correlation_id


@dataclass
class ErrorBody:
    code: str
    message: str
    details: Any = None


def _correlation_id(request: Request) -> str | None:
    return get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)


def success_response(data: Any, *, status_code: int = 200, **extra: Any) -> JSONResponse:
    content: dict[str, Any] = {"success": True, "data": data}
    content.update(extra)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
    redirect_to: str | None = None,
) -> JSONResponse:
    content: dict[str, Any] = {
        "success": False,
        "error": asdict(ErrorBody(code=code, message=message, details=details)),
        "correlation_id": _correlation_id(request),
    }
    if redirect_to is not None:
        content["redirect_to"] = redirect_to
    return JSONResponse(status_code=status_code, content=jsonable_encoder(content))
