from __future__ import annotations

import json
import logging
import os
from datetime import UTC, datetime
from typing import Any

from orderwatch.logging_context import get_logging_context
from orderwatch.security.redaction import redact_data


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        extras = getattr(record, "extra", None)
        if isinstance(extras, dict):
            payload.update(extras)
        # explicit extras win over the ambient order/tx context
        for key, value in get_logging_context().items():
            payload.setdefault(key, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            payload["error_type"] = exc_type.__name__ if exc_type else "Exception"
            payload["error_message"] = str(exc_value) if exc_value is not None else ""
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(redact_data(payload), default=str)


def _level(raw: str | None, default: int) -> int:
    if raw is None or not raw.strip():
        return default
    resolved = logging.getLevelName(raw.strip().upper())
    return resolved if isinstance(resolved, int) else default


def setup_logging(level: str | int | None = None) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    if isinstance(level, int):
        resolved_level = level
    else:
        resolved_level = _level(level or os.getenv("LOG_LEVEL"), logging.INFO)
    root.setLevel(resolved_level)

    # Receipt polling hits the RPC endpoint every second; keep httpx quiet unless debugging.
    http_default = logging.DEBUG if resolved_level <= logging.DEBUG else logging.WARNING
    logging.getLogger("httpx").setLevel(_level(os.getenv("HTTPX_LOG_LEVEL"), http_default))
    logging.getLogger("httpcore").setLevel(_level(os.getenv("HTTPCORE_LOG_LEVEL"), http_default))
