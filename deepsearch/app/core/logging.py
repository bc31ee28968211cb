"""Logging setup for the DeepSearch service.

Three console formats are available through ``LOG_FORMAT``:

- ``text``: one human-readable line per record
- ``structured``: the same line followed by the turn identifiers
- ``json``: one JSON object per record, for log shippers

Turn identifiers travel on records through ``extra=get_log_context(...)``.
"""

import json
import logging
import logging.config
import sys
import traceback
from datetime import datetime
from typing import Any, Dict, Optional

from deepsearch.app.core.config import settings

CONTEXT_FIELDS = ("request_id", "user_id", "chat_id", "step", "tool", "duration_ms")

# Populated by the logging machinery or by JSONFormatter itself
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName", "timestamp", "logger", "level", "source"}

_TEXT_LINE = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class JSONFormatter(logging.Formatter):
    CONTEXT_FIELDS = CONTEXT_FIELDS

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()
        payload: Dict[str, Any] = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
            "source": {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            },
        }

        extra: Dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in self.CONTEXT_FIELDS:
                if value is not None:
                    payload[key] = value
            elif key not in _RECORD_ATTRS:
                extra[key] = value
        if extra:
            payload["extra"] = extra

        if record.exc_info and record.exc_info[0] is not None:
            payload["exception"] = traceback.format_exception(*record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class ContextFilter(logging.Filter):
    """Give every record the turn identifier attributes, ``None`` when unset.

    The structured line format references them by name and would otherwise
    fail on records logged without context.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for name in CONTEXT_FIELDS:
            if not hasattr(record, name):
                setattr(record, name, None)
        return True


def get_logging_config() -> Dict[str, Any]:
    """Build the ``dictConfig`` mapping for the current settings."""
    level = settings.log_level.upper()
    chosen = settings.log_format.lower()
    formatter = {"json": "json", "structured": "structured"}.get(chosen, "standard")

    formatters: Dict[str, Any] = {
        "standard": {"format": _TEXT_LINE},
        "structured": {
            "format": _TEXT_LINE
            + " - request_id=%(request_id)s - user_id=%(user_id)s"
            " - chat_id=%(chat_id)s - step=%(step)s"
        },
        "json": {"()": JSONFormatter},
    }

    def console_logger() -> Dict[str, Any]:
        return {"level": level, "handlers": ["console"], "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": formatters,
        "filters": {"context": {"()": ContextFilter}},
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": level,
                "formatter": formatter,
                "stream": sys.stdout,
                "filters": ["context"],
            },
        },
        "loggers": {"deepsearch": console_logger(), "uvicorn": console_logger()},
        "root": {"level": level, "handlers": ["console"]},
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())
    for noisy in ("uvicorn.access", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str = "deepsearch") -> logging.Logger:
    return logging.getLogger(name)


def get_log_context(
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    chat_id: Optional[str] = None,
    step: Optional[int] = None,
    tool: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """Collect the non-empty identifiers of a turn for ``extra=``.

    Example:
        >>> logger.info("Tool done", extra=get_log_context(chat_id="c1", tool="searchWeb"))
    """
    context = dict(request_id=request_id, user_id=user_id, chat_id=chat_id, step=step, tool=tool)
    context.update(extra)
    return {key: value for key, value in context.items() if value is not None}
