"""Public logging helpers for the uploader."""

from .custom_logger import (
    LoggerConfig,
    bind_context,
    configure_logging,
    get_context,
    get_logger,
    log_context,
)

__all__ = [
    "LoggerConfig",
    "bind_context",
    "configure_logging",
    "get_context",
    "get_logger",
    "log_context",
]
