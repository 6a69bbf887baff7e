"""
Logging setup for the uploader service.

Loggers are obtained through ``get_logger``; the first call configures the
root logger from ``LoggerConfig.from_env``. Request-scoped values such as the
request id and organization id are kept in a ``contextvars`` store and copied
onto every record by ``ContextFilter``, so they survive across ``await``.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.config
import os
from contextlib import contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FORMAT = (
    "%(asctime)s | %(levelname)-8s | %(name)s | %(request_id)s | %(org_id)s | %(message)s"
)
DEFAULT_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Attributes owned by LogRecord itself; context keys must never shadow them.
_RESERVED_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime"}

ENV_LEVEL = "UPLOADER_LOG_LEVEL"
ENV_FORMAT = "UPLOADER_LOG_FORMAT"
ENV_DATEFMT = "UPLOADER_LOG_DATEFMT"
ENV_FILE = "UPLOADER_LOG_FILE"
ENV_JSON = "UPLOADER_LOG_JSON"
ENV_DISABLE_CONSOLE = "UPLOADER_LOG_DISABLE_CONSOLE"

_TRUTHY = {"1", "true", "True", "yes"}

_log_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar(
    "uploader_log_context", default={}
)
_configured = False


class ContextFilter(logging.Filter):
    """Copy the bound context onto each record passing through a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_context().items():
            setattr(record, key, value)
        for placeholder in ("request_id", "org_id"):
            if not hasattr(record, placeholder):
                setattr(record, placeholder, "-")
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with context and ``extra`` fields inlined."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "time": self.formatTime(record, self.datefmt),
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        for key, value in vars(record).items():
            if key not in _RESERVED_RECORD_ATTRS:
                payload[key] = value

        return json.dumps(payload, default=repr, separators=(",", ":"))


@dataclass
class LoggerConfig:
    """Logging options, overridable through ``UPLOADER_LOG_*`` variables."""

    level: str = field(default=DEFAULT_LOG_LEVEL)
    fmt: str = field(default=DEFAULT_LOG_FORMAT)
    datefmt: str = field(default=DEFAULT_DATE_FORMAT)
    log_file: Optional[Path] = field(default=None)
    max_bytes: int = field(default=10 * 1024 * 1024)
    backup_count: int = field(default=5)
    json_logs: bool = field(default=False)
    console: bool = field(default=True)

    @classmethod
    def from_env(cls) -> "LoggerConfig":
        config = cls()
        if os.getenv(ENV_LEVEL):
            config.level = os.environ[ENV_LEVEL].upper()
        if os.getenv(ENV_FORMAT):
            config.fmt = os.environ[ENV_FORMAT]
        if os.getenv(ENV_DATEFMT):
            config.datefmt = os.environ[ENV_DATEFMT]
        if os.getenv(ENV_FILE):
            config.log_file = Path(os.environ[ENV_FILE])
        config.json_logs = os.getenv(ENV_JSON, "") in _TRUTHY
        config.console = os.getenv(ENV_DISABLE_CONSOLE, "") not in _TRUTHY
        return config

    def to_dict(self) -> Dict[str, Any]:
        """Build the ``logging.config.dictConfig`` payload."""
        if self.json_logs:
            formatter: Dict[str, Any] = {
                "()": "uploader.logger.custom_logger.JsonFormatter",
                "datefmt": self.datefmt,
            }
        else:
            formatter = {"format": self.fmt, "datefmt": self.datefmt}

        console = {
            "class": "logging.StreamHandler",
            "level": self.level,
            "formatter": "default",
            "filters": ["context"],
        }
        handlers: Dict[str, Dict[str, Any]] = {"console": console} if self.console else {}
        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            handlers["file"] = {
                "class": "logging.handlers.RotatingFileHandler",
                "level": self.level,
                "formatter": "default",
                "filename": str(self.log_file),
                "maxBytes": self.max_bytes,
                "backupCount": self.backup_count,
                "encoding": "utf-8",
                "filters": ["context"],
            }
        if not handlers:
            # Never configure the root logger without any handler.
            handlers["console"] = console

        return {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {"context": {"()": "uploader.logger.custom_logger.ContextFilter"}},
            "formatters": {"default": formatter},
            "handlers": handlers,
            "root": {"level": self.level, "handlers": list(handlers)},
        }


def configure_logging(config: Optional[LoggerConfig] = None, force: bool = False) -> None:
    """Apply ``config`` (or the environment defaults) to the root logger once."""
    global _configured

    if _configured and not force:
        return

    logging.config.dictConfig((config or LoggerConfig.from_env()).to_dict())
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def get_context() -> Dict[str, Any]:
    """Return a copy of the values currently bound to the log context."""
    return dict(_log_context.get())


def bind_context(**kwargs: Any) -> None:
    """Bind values to the log context for the rest of the current task."""
    _log_context.set({**_log_context.get(), **_clean(kwargs)})


@contextmanager
def log_context(**kwargs: Any):
    """
    Bind values to the log context for the duration of a ``with`` block.

    Example:

        with log_context(request_id="abc123", org_id=org_id):
            logger.info("Upload started")
    """
    token = _log_context.set({**_log_context.get(), **_clean(kwargs)})
    try:
        yield
    finally:
        _log_context.reset(token)


def _clean(values: Dict[str, Any]) -> Dict[str, Any]:
    return {
        key: value
        for key, value in values.items()
        if value is not None and key not in _RESERVED_RECORD_ATTRS
    }
