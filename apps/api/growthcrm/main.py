from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from starlette.exceptions import HTTPException as StarletteHTTPException

from growthcrm.api.responses import error_response
from growthcrm.api.routes import router as api_router
from growthcrm.core.config import get_settings
from growthcrm.core.context import RequestContextMiddleware
from growthcrm.core.events import InternalEvent, event_bus
from growthcrm.logging import configure_logging
from growthcrm.middleware.correlation_id import CorrelationIdMiddleware
from growthcrm.middleware.request_logging import RequestLoggingMiddleware
from growthcrm.otel import get_fastapi_server_request_hook, setup_otel
from growthcrm.platform.security.errors import AccessError
from growthcrm.tenancy.service import register_tenancy_listeners


configure_logging()
logger = logging.getLogger("growthcrm.lifecycle")

_STATUS_CODES = {
    400: "bad_request",
    401: "unauthenticated",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
}


def _on_system_started(event: InternalEvent) -> None:
    logger.info("system.started", extra={"event_name": event.name})


@asynccontextmanager
async def lifespan(app: FastAPI):
    event_bus.subscribe("system.started", _on_system_started)
    register_tenancy_listeners(event_bus)
    event_bus.publish("system.started", {"service": "api"})
    yield


settings = get_settings()
app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
app.add_middleware(RequestContextMiddleware)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allow_origins,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
    expose_headers=["x-correlation-id", "x-request-id"],
)
app.include_router(api_router)


@app.exception_handler(AccessError)
async def access_error_handler(request: Request, exc: AccessError) -> JSONResponse:
    response = error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        redirect_to=exc.redirect_to,
    )
    if exc.clear_session:
        response.delete_cookie(get_settings().session_cookie_name)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = error_response(
        request,
        status_code=exc.status_code,
        code=_STATUS_CODES.get(exc.status_code, "error"),
        message=str(exc.detail),
    )
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="validation_error",
        message="Request validation failed",
        details=exc.errors(),
    )


setup_otel(settings)

if not getattr(app, "_is_instrumented_by_opentelemetry", False):
    FastAPIInstrumentor().instrument_app(app, server_request_hook=get_fastapi_server_request_hook())
