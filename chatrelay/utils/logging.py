"""Structured logging for the service."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from chatrelay.settings import settings

_SENSITIVE_KEYWORDS = ("token", "secret", "authorization", "password", "content", "body")
_MAX_STRING_LENGTH = 256

_RESERVED = {
    "args",
    "msg",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "process",
    "processName",
    "message",
    "name",
    "taskName",
}


def _sanitize_field(key: str, value: Any) -> Any:
    lowered = key.lower()
    if any(keyword in lowered for keyword in _SENSITIVE_KEYWORDS):
        return "[redacted]"
    if isinstance(value, str) and len(value) > _MAX_STRING_LENGTH:
        return f"{value[:_MAX_STRING_LENGTH]}…"
    if isinstance(value, (list, tuple, set)):
        return [_sanitize_field(key, item) for item in list(value)[:10]]
    return value


class JSONLogFormatter(logging.Formatter):
    """Emit one JSON object per record, extras included."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "msg": record.getMessage(),
            "logger": record.name,
            "service": settings.service_name,
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_"):
                continue
            payload[key] = _sanitize_field(key, value)
        return json.dumps(payload, separators=(",", ":"), default=str)


def configure_logging() -> logging.Logger:
    root = logging.getLogger()
    root.handlers.clear()
    handler = logging.StreamHandler()
    if settings.log_json:
        handler.setFormatter(JSONLogFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
    return logging.getLogger("chatrelay")
