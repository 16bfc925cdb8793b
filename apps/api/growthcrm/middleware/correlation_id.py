from __future__ import annotations

import re
import uuid

from opentelemetry import trace
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from growthcrm.context import reset_correlation_id, set_correlation_id


CORRELATION_HEADER = "x-correlation-id"
# proxies in front of the api usually stamp this one instead
UPSTREAM_REQUEST_HEADER = "x-request-id"

_SAFE_ID = re.compile(r"^[A-Za-z0-9._:-]{1,128}$")


def correlation_id_from(headers: Headers) -> str:
    """First well-formed inbound id, otherwise a fresh uuid4."""

    for name in (CORRELATION_HEADER, UPSTREAM_REQUEST_HEADER):
        candidate = headers.get(name)
        if candidate and _SAFE_ID.match(candidate):
            return candidate
    return str(uuid.uuid4())


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[no-untyped-def]
        correlation_id = correlation_id_from(request.headers)
        request.state.correlation_id = correlation_id
        current_span = trace.get_current_span()
        if current_span.is_recording():
            current_span.set_attribute("correlation_id", correlation_id)

        token = set_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            reset_correlation_id(token)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response
