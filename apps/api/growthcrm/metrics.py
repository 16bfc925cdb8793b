from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

authz_decisions_total = Counter(
    "authz_decisions_total",
    "Authorization guard decisions by outcome",
    ["outcome"],
)

tenant_resolutions_total = Counter(
    "tenant_resolutions_total",
    "Tenant resolutions by outcome",
    ["outcome"],
)

tenant_cache_hit_total = Counter(
    "tenant_cache_hit_total",
    "Tenant cache hits",
)

tenant_cache_miss_total = Counter(
    "tenant_cache_miss_total",
    "Tenant cache misses",
)

automation_cascades_total = Counter(
    "automation_cascades_total",
    "Automation cascade evaluations by rule and outcome",
    ["rule", "outcome"],
)

automation_cascade_duration_seconds = Histogram(
    "automation_cascade_duration_seconds",
    "Automation cascade duration in seconds",
    ["rule"],
)

automation_cascade_partial_failures_total = Counter(
    "automation_cascade_partial_failures_total",
    "Cascades that created a target but failed to mark the source",
    ["rule"],
)

invitation_events_total = Counter(
    "invitation_events_total",
    "Invitation lifecycle events by action",
    ["action"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        path_format = getattr(route, "path_format", None)
        if isinstance(path_format, str) and path_format:
            return _PATH_PARAM_RE.sub("{id}", path_format)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_authz_decision(outcome: str) -> None:
    authz_decisions_total.labels(outcome=outcome).inc()


def observe_tenant_resolution(outcome: str) -> None:
    tenant_resolutions_total.labels(outcome=outcome).inc()


def observe_tenant_cache_hit() -> None:
    tenant_cache_hit_total.inc()


def observe_tenant_cache_miss() -> None:
    tenant_cache_miss_total.inc()


def observe_cascade(rule: str, outcome: str, duration: float) -> None:
    automation_cascades_total.labels(rule=rule, outcome=outcome).inc()
    automation_cascade_duration_seconds.labels(rule=rule).observe(duration)


def observe_cascade_partial_failure(rule: str) -> None:
    automation_cascade_partial_failures_total.labels(rule=rule).inc()


def observe_invitation_event(action: str) -> None:
    invitation_events_total.labels(action=action).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
