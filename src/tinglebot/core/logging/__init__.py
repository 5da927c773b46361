"""Structured logging for Tinglebot."""

from tinglebot.core.logging.logger import (
    LogContext,
    get_logger,
    safe_extra,
    setup_logging,
    shutdown_logging,
)

__all__ = ["LogContext", "get_logger", "safe_extra", "setup_logging", "shutdown_logging"]
