"""
Structured JSON Logging Module.

One JSON object per line, to stdout and optionally to a rotating file.
Services receive a ``StructuredLogger`` through their constructor and
attach audit context with ``extra={"event": ...}``.

Credential material must never reach a log sink: any ``extra`` field
whose name looks like a secret is masked before formatting.
"""

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO, Union

REDACTED: str = "***"

_SECRET_FIELD_RE: re.Pattern[str] = re.compile(
    r"(token|pin|password|secret|authorization)", re.IGNORECASE,
)

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.makeLogRecord({})).keys()
) | {"message", "asctime", "taskName"}


def _context_of(record: logging.LogRecord) -> dict[str, str]:
    context: dict[str, str] = {}
    for key, value in vars(record).items():
        if key in _RECORD_ATTRS:
            continue
        context[key] = REDACTED if _SECRET_FIELD_RE.search(key) else str(value)
    return context


class JSONFormatter(logging.Formatter):
    """Render a record as ``{timestamp, level, logger_name, message, ...}``.

    ``extra`` holds caller context (secret-looking keys masked) and
    ``exception`` the formatted traceback, each only when present.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        context = _context_of(record)
        if context:
            entry["extra"] = context

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable wrapper around a named ``logging.Logger``.

    Handlers are attached once per logger name, so constructing several
    instances with the same name does not duplicate output.  Omitted file
    settings fall back to ``AppConfig``; an empty ``LOG_FILE`` means
    console only.

    Usage::

        log = StructuredLogger(name="tokens")
        log.info("Access token refreshed.", extra={"event": "TOKEN_REFRESHED"})
    """

    def __init__(
        self,
        name: str = "storefront",
        level: int = logging.INFO,
        stream: Union[TextIO, None] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)

        if self._logger.handlers:
            return

        # Imported here: config itself logs through the stdlib at import time.
        from storefront.config import get_config
        cfg = get_config()

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target: str = cfg.LOG_FILE if log_file is None else log_file
        if target:
            self._attach_file_handler(
                target,
                level,
                formatter,
                max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )

    def _attach_file_handler(
        self,
        target: str,
        level: int,
        formatter: logging.Formatter,
        max_bytes: int,
        backup_count: int,
    ) -> None:
        try:
            path = Path(target)
            path.parent.mkdir(parents=True, exist_ok=True)
            handler = RotatingFileHandler(
                filename=str(path),
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", target, exc,
            )
            return
        handler.setLevel(level)
        handler.setFormatter(formatter)
        self._logger.addHandler(handler)

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    # -- Convenience delegates ------------------------------------------------

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "storefront") -> StructuredLogger:
    """Shorthand for ``StructuredLogger(name=name)``."""
    return StructuredLogger(name=name)
