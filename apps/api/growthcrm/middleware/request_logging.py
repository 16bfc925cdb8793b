from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from growthcrm.metrics import observe_http_request, resolve_http_path_label


logger = logging.getLogger("growthcrm.request")


def _request_fields(request: Request, path: str, status_code: int, duration_ms: float) -> dict[str, object]:
    context = getattr(request.state, "context", None)
    principal = getattr(context, "principal", None)
    return {
        "method": request.method,
        "path": path,
        "status_code": status_code,
        "duration_ms": duration_ms,
        "user_id": getattr(principal, "user_id", None),
        "subdomain": getattr(context, "tenant_subdomain", None),
    }


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception:
            path = resolve_http_path_label(request)
            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            observe_http_request(method=request.method, path=path, status=500, duration=duration_ms / 1000)
            logger.error("http.error", exc_info=True, extra=_request_fields(request, path, 500, duration_ms))
            raise

        path = resolve_http_path_label(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 2)
        observe_http_request(
            method=request.method,
            path=path,
            status=response.status_code,
            duration=duration_ms / 1000,
        )
        logger.info("http.request", extra=_request_fields(request, path, response.status_code, duration_ms))
        return response
