import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any, Optional

from resto.core.context import get_request_id, get_user_id
from resto.core.settings import settings

AUDIT_LOGGER = "resto.audit"


class RequestContextFilter(logging.Filter):
    """Stamp each record with the request id and authenticated user id."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        record.user_id = get_user_id()
        return True


class JsonFormatter(logging.Formatter):
    def __init__(self, channel: str = "app") -> None:
        super().__init__()
        self.channel = channel

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "channel": self.channel,
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "user_id": getattr(record, "user_id", "-"),
        }
        if getattr(record, "event", None):
            entry["event"] = record.event
            entry["fields"] = getattr(record, "fields", {})
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _stdout_handler(formatter: str, level: str) -> dict[str, Any]:
    return {
        "class": "logging.StreamHandler",
        "stream": "ext://sys.stdout",
        "formatter": formatter,
        "filters": ["request_context"],
        "level": level,
    }


def configure_logging(level: Optional[str] = None) -> None:
    """Route app and uvicorn logs to one JSON stream and audit events to another."""
    log_level = (level or settings.log_level).upper()
    quiet = {"handlers": ["app"], "level": log_level, "propagate": False}
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "app": {"()": JsonFormatter, "channel": "app"},
                "audit": {"()": JsonFormatter, "channel": "audit"},
            },
            "handlers": {
                "app": _stdout_handler("app", log_level),
                "audit": _stdout_handler("audit", log_level),
            },
            "root": {"handlers": ["app"], "level": log_level},
            "loggers": {
                AUDIT_LOGGER: {"handlers": ["audit"], "level": "INFO", "propagate": False},
                **{name: dict(quiet) for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
            },
        }
    )
    logging.getLogger(__name__).debug("Logging configured at %s", log_level)


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)


def audit_event(event: str, **fields: Any) -> None:
    """Emit a security event on the audit stream. Never pass codes or secrets."""
    get_audit_logger().info(event, extra={"event": event, "fields": fields})
