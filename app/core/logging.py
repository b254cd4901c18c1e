"""
JSON logging for the API and the Celery workers.

Messages are snake_case event names; context travels in `extra=` and only the
whitelisted keys below end up in the output line.
"""
import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler

from app.core.config import settings

# Loggers that are chatty at INFO and carry no settlement context
QUIET_LOGGERS = ("httpx", "httpcore", "stripe", "urllib3")


class JsonFormatter(logging.Formatter):
    EXTRA_FIELDS = (
        "request_id", "path", "method", "status_code", "error",
        "event_id", "event_type", "session_id", "transaction_id",
        "product_id", "buyer_id", "seller_id", "affiliate_id",
        "amount", "seller_amount", "platform_fee", "affiliate_commission",
        "old_level", "new_level", "errors", "warnings",
        "invoice_id", "invoice_number", "token_id", "module_id", "reason",
        "commission_id", "processed", "purged", "count",
        "breaker_name", "old_state", "new_state",
    )

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "env": settings.app_env,
            "logger": record.name,
            "event": record.getMessage(),
        }
        entry.update(
            (key, getattr(record, key))
            for key in self.EXTRA_FIELDS
            if getattr(record, key, None) is not None
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging() -> None:
    """Replace root handlers with JSON stdout (plus a rotating file when LOG_FILE is set)."""
    formatter = JsonFormatter()
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.log_file:
        handlers.append(
            RotatingFileHandler(
                settings.log_file,
                maxBytes=settings.log_max_bytes,
                backupCount=settings.log_backup_count,
            )
        )
    for handler in handlers:
        handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(settings.log_level.upper())
    root.handlers = handlers
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
