"""Logging setup for livecache.

Plain text by default; JSON lines when structured output is requested. Scope
loggers (get_logger with context) stamp every record with the scope they belong
to, so interleaved request scopes can be told apart.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from livecache.core.config.models import LoggingConfig

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord has; anything else came in through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message"}

# Transport chatter that would drown out subscription events at DEBUG
_QUIET_LOGGERS = ("httpx", "httpcore", "asyncio")


class StructuredJSONFormatter(logging.Formatter):
    """One JSON object per record.

    {"level": ..., "message": ..., "timestamp": ..., "context": {...}}

    context holds the logger, function and line plus any extras such as
    scope_id and scope_kind. Exceptions add error_type, error_message and
    stack_trace.
    """

    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, Any] = {
            "logger_name": record.name,
            "function": record.funcName,
            "line": record.lineno,
        }
        context.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        )
        if record.exc_info:
            exc_type, exc, _ = record.exc_info
            context["error_type"] = exc_type.__name__ if exc_type else None
            context["error_message"] = str(exc) if exc else None
            context["stack_trace"] = record.exc_text or self.formatException(record.exc_info)

        return json.dumps(
            {
                "level": record.levelname,
                "message": record.getMessage(),
                "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
                "context": context,
            },
            default=str,
        )


def configure_logging(
    level: str = "INFO",
    format_string: str | None = None,
    filename: str | None = None,
    structured: bool = False,
) -> None:
    """Configure root logging. Safe to call again; later calls replace earlier ones.

    Args:
        level: Level name, case-insensitive
        format_string: Text format (ignored when structured)
        filename: Log file; stdout when None
        structured: Emit JSON lines
    """
    handler: logging.Handler = (
        logging.FileHandler(filename) if filename else logging.StreamHandler(sys.stdout)
    )
    handler.setFormatter(
        StructuredJSONFormatter()
        if structured
        else logging.Formatter(format_string or DEFAULT_FORMAT)
    )
    logging.basicConfig(level=getattr(logging, level.upper()), handlers=[handler], force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.ERROR)


def configure_logging_from_config(config: LoggingConfig, filename: str | None = None) -> None:
    configure_logging(
        level=config.level,
        format_string=config.format,
        filename=filename,
        structured=config.structured,
    )


def get_logger(name: str, **context: Any) -> logging.Logger | logging.LoggerAdapter:
    """Return the module logger, or an adapter adding context (scope_id, ...) to each record."""
    base = logging.getLogger(name)
    return logging.LoggerAdapter(base, context) if context else base
