from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from leadtables.context import get_correlation_id
from leadtables.core.config import get_settings


MAX_ERROR_LENGTH = 500

_BASE_RECORD_KEYS = frozenset(logging.makeLogRecord({}).__dict__)
_HTTP_FIELDS = frozenset({"method", "path", "status_code", "duration_ms"})
_LEAD_FIELDS = frozenset(
    {
        "table_id",
        "batch_id",
        "action",
        "affected_count",
        "imported_count",
        "invalid_rows",
        "duplicate_count",
        "user_id",
    }
)
_ERROR_FIELDS = frozenset({"error_code", "error"})
_EXPORTED_FIELDS = _HTTP_FIELDS | _LEAD_FIELDS | _ERROR_FIELDS

_default_record_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_record_factory(*args, **kwargs)
    record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only whitelisted ``extra=`` keys land under ``fields``."""

    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {
            key: value
            for key, value in record.__dict__.items()
            if key in _EXPORTED_FIELDS and key not in _BASE_RECORD_KEYS
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level_name: str | None = None) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_leadtables_configured", False):
        return

    level_name = (level_name or get_settings().log_level).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonLogFormatter())

    logging.setLogRecordFactory(_record_factory)
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    root_logger._leadtables_configured = True  # type: ignore[attr-defined]
