"""
JSON logging: one object per line on stdout (and optionally a rotating file).
request_id is taken from a context variable set by the HTTP middleware, so
service code never has to pass it around.
"""
import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from eacon.core.config import settings

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)


class RequestContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_var.get()
        return True


class JsonFormatter(logging.Formatter):
    """JSON log formatter with support for extra fields."""

    # Whitelist of `extra` keys; anything else is dropped.
    EXTRA_FIELDS = (
        "user_id", "request_id", "path", "method", "status_code", "latency_ms",
        "order_code", "payment_id", "action", "client_ip", "trigger", "status",
        "tokens", "amount_vnd", "error", "error_code", "payload",
        "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name in self.EXTRA_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging() -> None:
    formatter = JsonFormatter()
    context_filter = RequestContextFilter()
    stream = logging.StreamHandler()
    stream.setFormatter(formatter)
    stream.addFilter(context_filter)
    handlers: list[logging.Handler] = [stream]
    if settings.log_file:
        file_handler = RotatingFileHandler(
            settings.log_file,
            maxBytes=settings.log_max_bytes,
            backupCount=settings.log_backup_count,
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(context_filter)
        handlers.append(file_handler)
    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    # httpx logs every request at INFO; the gateway client logs its own outcomes.
    logging.getLogger("httpx").setLevel(logging.WARNING)
