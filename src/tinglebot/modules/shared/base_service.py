"""
Base Service Foundation

Purpose
-------
Foundation class for all Tinglebot domain services. Services implement pure
business logic, manage transactions, enforce game rules and emit domain
events.

Design Notes
------------
This base class provides:
- Structured logging with operation context
- Safe config access patterns
- Event emission helpers
- The optimistic-concurrency retry wrapper used by every write that touches
  a versioned row (raids, quests, table rolls)

What this class does NOT do:
- Manage database transactions (that's DatabaseService's job)
- Talk to Discord

Usage
-----
    class RelicService(BaseService):
        def __init__(self, config_manager, event_bus, logger):
            super().__init__(config_manager, event_bus, logger)

        async def appraise(self, relic_id: str, appraiser: str, outcome: str):
            # Service logic here, using self.log, self.get_config, self.emit_event
            ...
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Optional, TypeVar

from sqlalchemy.orm.exc import StaleDataError

from tinglebot.core.database.retry_policy import DatabaseRetryPolicy
from tinglebot.core.logging.logger import safe_extra
from tinglebot.modules.shared.exceptions import ConcurrencyConflictError, ValidationError

if TYPE_CHECKING:
    from logging import Logger

    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus

T = TypeVar("T")


class BaseService:
    """
    Base class for all domain services.

    Args:
        config_manager: Application configuration manager
        event_bus: Event bus for cross-module communication
        logger: Structured logger instance
    """

    def __init__(
        self,
        config_manager: ConfigManager,
        event_bus: EventBus,
        logger: Logger,
    ) -> None:
        self._config = config_manager
        self._events = event_bus
        self.log = logger

    def get_config(
        self, key: str, default: Optional[Any] = None, required: bool = False
    ) -> Any:
        """
        Safely retrieve a configuration value.

        Args:
            key: Dotted configuration key
            default: Default value if key not found
            required: If True, raise exception if key missing

        Raises:
            ConfigurationError: If required=True and key is missing
        """
        from tinglebot.core.exceptions import ConfigurationError

        value = self._config.get(key, default)
        if required and value is None:
            raise ConfigurationError(
                key, f"Required configuration key '{key}' is missing"
            )
        return value

    async def emit_event(
        self,
        event_type: str,
        data: Dict[str, Any],
        context: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Emit a domain event for cross-module communication.

        Args:
            event_type: Type/name of the event
            data: Event payload data
            context: Optional additional context (user_id, guild_id, etc.)
        """
        await self._events.publish(event_type, {**data, **(context or {})})

    async def publish_domain_events(self, aggregate: Any) -> int:
        """
        Publish and clear the events recorded on a domain aggregate.

        Call after the transaction commits so listeners never observe state
        that was rolled back.
        """
        events = aggregate.clear_domain_events()
        for event in events:
            await self.emit_event(event.event_name, event.payload)
        return len(events)

    def log_operation(self, operation: str, **context: Any) -> None:
        self.log.info(
            f"Service operation: {operation}",
            extra=safe_extra({"operation": operation, **context}),
        )

    def log_error(self, operation: str, error: Exception, **context: Any) -> None:
        self.log.error(
            f"Service error during {operation}: {error}",
            extra=safe_extra(
                {
                    "operation": operation,
                    "error_type": type(error).__name__,
                    "error_message": str(error),
                    **context,
                }
            ),
        )

    async def run_with_version_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        resource_type: str,
        identifier: Any,
        max_attempts: Optional[int] = None,
    ) -> T:
        """
        Run a read-modify-write operation, retrying on version conflicts.

        ``operation`` must open its own transaction so each attempt reloads
        the row. Domain exceptions raised by the operation propagate on the
        first attempt.

        Raises:
            ConcurrencyConflictError: If every attempt lost the version race
        """
        policy = DatabaseRetryPolicy.from_config(max_attempts=max_attempts)
        try:
            return await policy.execute(
                operation,
                operation_name=operation_name,
                context={"resource_type": resource_type, "identifier": identifier},
            )
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                resource_type, identifier, policy.max_attempts
            ) from exc

    def validate_positive_int(self, value: int, name: str) -> None:
        """
        Validate that a value is a positive integer.

        Raises:
            ValidationError: If value is not positive
        """
        if not isinstance(value, int) or value <= 0:
            raise ValidationError(name, f"{name} must be a positive integer, got {value}")

    def validate_range(self, value: int, name: str, min_val: int, max_val: int) -> None:
        if not (min_val <= value <= max_val):
            raise ValidationError(
                name,
                f"{name} must be between {min_val} and {max_val}, got {value}",
            )

    def validate_non_empty(self, value: Optional[str], name: str) -> str:
        """Strip `value` and reject blanks; returns the stripped string."""
        if value is None or not str(value).strip():
            raise ValidationError(name, f"{name} is required")
        return str(value).strip()
