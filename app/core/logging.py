import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Optional

from app.core import context
from app.core.settings import settings

CONTEXT_FIELDS = ("request_id", "actor_id", "actor_roles", "loan_id")
AUDIT_LOGGER = "app.audit"


class RequestContextFilter(logging.Filter):
    """Copy the request, actor and loan bound to the current task onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in context.snapshot().items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line. An ``event`` dict passed via ``extra`` is nested as-is."""

    def __init__(self, stream_label: str = "app") -> None:
        super().__init__()
        self.stream_label = stream_label

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "stream": self.stream_label,
            "message": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            payload[field] = getattr(record, field, context.UNBOUND)
        event = getattr(record, "event", None)
        if isinstance(event, dict):
            payload["event"] = event
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _stdout_handler(formatter: str, level: str) -> dict:
    return {
        "class": "logging.StreamHandler",
        "level": level,
        "formatter": formatter,
        "filters": ["request_context"],
        "stream": "ext://sys.stdout",
    }


def _app_logger(level: str) -> dict:
    return {"handlers": ["default"], "level": level, "propagate": False}


def configure_logging(level: Optional[str] = None) -> None:
    log_level = (level or settings.log_level).upper()
    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"request_context": {"()": RequestContextFilter}},
            "formatters": {
                "json": {"()": JsonFormatter, "stream_label": "app"},
                "audit_json": {"()": JsonFormatter, "stream_label": "audit"},
            },
            "handlers": {
                "default": _stdout_handler("json", log_level),
                "audit": _stdout_handler("audit_json", "INFO"),
            },
            "loggers": {
                "": _app_logger(log_level),
                AUDIT_LOGGER: {"handlers": ["audit"], "level": "INFO", "propagate": False},
                # SQL echo goes through the same JSON stream when DATABASE_ECHO is on.
                "sqlalchemy.engine": _app_logger("INFO" if settings.database_echo else "WARNING"),
                "httpx": _app_logger("WARNING"),
                **{name: _app_logger(log_level) for name in ("uvicorn", "uvicorn.error", "uvicorn.access")},
            },
        }
    )
    logging.getLogger(__name__).info(
        "Logging configured for environment=%s level=%s", settings.environment, log_level
    )


def get_audit_logger() -> logging.Logger:
    return logging.getLogger(AUDIT_LOGGER)
