from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from growthcrm.context import get_cascade_depth, get_correlation_id


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())

# structured extras copied into "fields"; anything else passed via extra= is dropped
_FIELD_GROUPS = {
    "http": ("method", "path", "status_code", "duration_ms"),
    "identity": ("user_id", "role", "tenant_id", "subdomain", "permission", "reason"),
    "automation": ("outcome", "rule", "source_id", "target_id", "incident_id", "cascade_depth"),
    "audit": ("entity_type", "action", "event_name", "status", "error"),
}
_KNOWN_FIELDS = frozenset(name for group in _FIELD_GROUPS.values() for name in group)
_MAX_ERROR_LENGTH = 500


def _stamp_request_context(record: logging.LogRecord) -> logging.LogRecord:
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    if getattr(record, "cascade_depth", None) is None:
        depth = get_cascade_depth()
        if depth:
            record.cascade_depth = depth
    return record


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        _stamp_request_context(record)
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    return _stamp_request_context(_DEFAULT_RECORD_FACTORY(*args, **kwargs))


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line: level, logger, message and the known extras."""

    def format(self, record: logging.LogRecord) -> str:
        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging() -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_growthcrm_configured", False):
        return

    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    root_logger._growthcrm_configured = True  # type: ignore[attr-defined]
