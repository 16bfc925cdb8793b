from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

if TYPE_CHECKING:
    from growthcrm.platform.security.context import Principal
    from growthcrm.tenancy.resolver import ResolvedTenant


@dataclass
class RequestContext:
    """Per-request resolution cache.

    Tenant and principal are resolved at most once per request and dropped with it, so a
    role change is visible to the very next request.
    """

    request_id: str
    correlation_id: str
    host: str
    tenant_subdomain: str | None = None
    tenant: ResolvedTenant | None = None
    principal: Principal | None = None


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = getattr(request.state, "correlation_id", None)
        request.state.context = RequestContext(
            request_id=correlation_id or "",
            correlation_id=correlation_id or "",
            host=request.headers.get("x-forwarded-host") or request.headers.get("host", ""),
        )
        response = await call_next(request)
        response.headers["x-request-id"] = request.state.context.request_id
        return response
