"""
Logging setup for the authcore service.

Modules obtain their logger with ``get_logger(__name__)``; the process entry
point calls ``setup_logging()`` once.
"""
import json
import logging
import logging.config
from datetime import datetime, timezone

from authcore.core.config import settings

SERVICE_NAME = "authcore"


class JSONFormatter(logging.Formatter):
    """Render a log record as a single JSON line."""

    def format(self, record):
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line_number": record.lineno,
            "service": SERVICE_NAME,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry, ensure_ascii=False, default=str)


def setup_logging(level: str | None = None, json_output: bool | None = None) -> None:
    level = (level or settings.LOG_LEVEL).upper()
    json_output = settings.LOG_JSON if json_output is None else json_output

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "plain": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
            "json": {"()": JSONFormatter},
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "formatter": "json" if json_output else "plain",
            },
        },
        "loggers": {
            SERVICE_NAME: {"handlers": ["console"], "level": level, "propagate": False},
            # SQL echo goes through the engine's own logger
            "sqlalchemy.engine": {"level": "INFO" if settings.DATABASE_ECHO else "WARNING"},
        },
    })


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name or SERVICE_NAME)
