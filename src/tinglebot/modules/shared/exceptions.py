"""
Player-facing errors raised by services and domain models.

Cogs catch ``TinglebotDomainException`` and render ``message`` in an error
embed; nothing here should ever reach the global "unexpected error" path.
"""

from __future__ import annotations

from typing import Any, Optional

from tinglebot.core.exceptions import ErrorSeverity, TinglebotError


class TinglebotDomainException(TinglebotError):
    pass


class NotFoundError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource_type: str, identifier: Optional[Any] = None) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        suffix = f": {identifier}" if identifier is not None else ""
        super().__init__(
            f"{resource_type} not found{suffix}",
            details={"resource_type": resource_type, "identifier": identifier},
            error_code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
        )


class ValidationError(TinglebotDomainException):
    """Bad input; ``field`` names what was wrong."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        self.validation_message = message
        super().__init__(
            f"Validation error for {field}: {message}",
            details={"field": field},
            error_code=f"VALIDATION_{field.upper()}",
        )


class DomainValidationError(ValidationError):
    """An invariant of a domain model would be broken."""


class InvalidOperationError(TinglebotDomainException):
    """The action is not allowed in the current state (raid over, wrong village, ...)."""

    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, action: str, reason: str) -> None:
        self.action = action
        self.reason = reason
        super().__init__(
            f"Invalid operation '{action}': {reason}",
            details={"action": action, "reason": reason},
            error_code=f"INVALID_{action.upper()}",
        )


class CooldownActiveError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.DEBUG
    DEFAULT_RETRYABLE = True

    def __init__(self, action: str, remaining_seconds: float) -> None:
        self.action = action
        self.remaining_seconds = remaining_seconds
        super().__init__(
            f"{action} is on cooldown: {remaining_seconds:.1f}s remaining",
            details={"action": action, "retry_after": remaining_seconds},
            error_code="COOLDOWN_ACTIVE",
        )


class InsufficientResourcesError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, resource: str, required: int, current: int) -> None:
        self.resource = resource
        self.required = required
        self.current = current
        super().__init__(
            f"Insufficient {resource}: need {required:,}, have {current:,}",
            details={"resource": resource, "deficit": required - current},
            error_code=f"INSUFFICIENT_{resource.upper()}",
        )


class ConcurrencyConflictError(TinglebotDomainException):
    """Another writer won every optimistic-lock attempt; the player should retry."""

    DEFAULT_SEVERITY = ErrorSeverity.WARNING
    DEFAULT_RETRYABLE = True

    def __init__(self, resource_type: str, identifier: Any, attempts: int) -> None:
        self.resource_type = resource_type
        self.identifier = identifier
        self.attempts = attempts
        super().__init__(
            f"{resource_type} {identifier} changed concurrently; gave up after {attempts} attempts",
            details={"resource_type": resource_type, "identifier": identifier, "attempts": attempts},
            error_code="CONCURRENCY_CONFLICT",
        )


# Raids


class RaidParticipantExistsError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, user_id: str) -> None:
        self.user_id = user_id
        super().__init__(
            "You already have a character in this raid",
            details={"user_id": user_id},
            error_code="RAID_PARTICIPANT_EXISTS",
        )


class RaidParticipantNotFoundError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, character_id: Any) -> None:
        self.character_id = character_id
        super().__init__(
            "That character is not in this raid",
            details={"character_id": character_id},
            error_code="RAID_PARTICIPANT_NOT_FOUND",
        )


class RaidFullError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, max_participants: int) -> None:
        self.max_participants = max_participants
        super().__init__(
            f"Raid is full ({max_participants} participants maximum)",
            details={"max_participants": max_participants},
            error_code="RAID_FULL",
        )


class NotYourTurnError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, character_id: Any, current_character_id: Any = None) -> None:
        self.character_id = character_id
        self.current_character_id = current_character_id
        super().__init__(
            "Your turn was already processed or the turn has advanced. "
            "Please wait for your next turn.",
            details={"character_id": character_id, "current_character_id": current_character_id},
            error_code="NOT_YOUR_TURN",
        )


# Quests


class QuestTypeMismatchError(TinglebotDomainException):
    DEFAULT_SEVERITY = ErrorSeverity.INFO

    def __init__(self, quest_id: str, expected: str, actual: str) -> None:
        self.quest_id = quest_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Quest {quest_id} is a {actual} quest, not {expected}",
            details={"quest_id": quest_id, "expected": expected, "actual": actual},
            error_code="QUEST_TYPE_MISMATCH",
        )
