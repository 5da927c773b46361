"""
Exception base and infrastructure errors.

``TinglebotError`` carries the structured fields every handler and log line
relies on. Infrastructure failures (database, Redis, configuration) derive
from ``TinglebotInfrastructureException`` here; game rule violations derive
from ``TinglebotDomainException`` in ``tinglebot.modules.shared.exceptions``.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorSeverity(Enum):
    DEBUG = "debug"  # expected, e.g. cooldowns
    INFO = "info"  # player mistakes
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class TinglebotError(Exception):
    """
    ``message`` is shown to players; ``details`` goes to the logs;
    ``error_code`` is stable and defaults to the class name.
    """

    DEFAULT_SEVERITY: ErrorSeverity = ErrorSeverity.ERROR
    DEFAULT_RETRYABLE: bool = False

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[ErrorSeverity] = None,
        is_retryable: Optional[bool] = None,
        error_code: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = details or {}
        self.severity = severity or self.DEFAULT_SEVERITY
        self.is_retryable = self.DEFAULT_RETRYABLE if is_retryable is None else is_retryable
        self.error_code = error_code or type(self).__name__

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error_type": type(self).__name__,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "severity": self.severity.value,
            "is_retryable": self.is_retryable,
        }

    def __str__(self) -> str:
        if self.details:
            return f"[{self.error_code}] {self.message} | Details: {self.details}"
        return f"[{self.error_code}] {self.message}"


class TinglebotInfrastructureException(TinglebotError):
    pass


class ConfigurationError(TinglebotInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self, config_key: str, message: str) -> None:
        self.config_key = config_key
        super().__init__(
            f"Configuration error for {config_key}: {message}",
            details={"config_key": config_key},
            error_code="CONFIG_ERROR",
        )


class DatabaseInitializationError(TinglebotInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL


class DatabaseNotInitializedError(TinglebotInfrastructureException):
    DEFAULT_SEVERITY = ErrorSeverity.CRITICAL

    def __init__(self) -> None:
        super().__init__(
            "Database used before DatabaseService.initialize()",
            error_code="DATABASE_NOT_INITIALIZED",
        )


class RedisNotInitializedError(TinglebotInfrastructureException):
    DEFAULT_RETRYABLE = True

    def __init__(self) -> None:
        super().__init__(
            "Redis used before RedisService.initialize()",
            error_code="REDIS_NOT_INITIALIZED",
        )
