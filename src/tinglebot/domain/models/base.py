"""
Base domain model classes for Tinglebot.

Purpose
-------
Foundational abstractions for rich domain models that encapsulate game rules,
validation and state transitions. Raids, quests, table rolls and relics are
loaded from their database rows, mutated through these models and written
back by services.

Non-Responsibilities
--------------------
- Persistence (handled by repositories)
- Database schema (handled by SQLAlchemy models)
- Service orchestration (handled by the service layer)

Design Patterns
---------------
- **Entity**: Objects with identity that persist over time
- **Aggregate Root**: Consistency boundary for domain operations
- **Domain Events**: Communicate state changes to other parts of the system

Usage Example
-------------
>>> raid = Raid.from_db(raid_row)
>>> raid.add_participant(participant)
>>> for event in raid.clear_domain_events():
...     await event_bus.publish(event.event_name, event.payload)
"""

from __future__ import annotations

from abc import ABC
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List

from tinglebot.modules.shared.exceptions import DomainValidationError

__all__ = [
    "AggregateRoot",
    "DomainEvent",
    "DomainValidationError",
    "Entity",
    "ensure_aware",
    "utc_now",
    "validate_not_empty",
    "validate_positive",
    "validate_range",
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime | None) -> datetime | None:
    """Treat naive datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ============================================================================
# DOMAIN EVENTS
# ============================================================================


@dataclass
class DomainEvent:
    """
    Represents a domain event that has occurred.

    Attributes
    ----------
    event_name : str
        Event name (e.g., "raid.completed")
    payload : Dict[str, Any]
        Event payload with relevant data
    occurred_at : datetime
        When the event occurred (UTC)
    """

    event_name: str
    payload: Dict[str, Any]
    occurred_at: datetime = field(default_factory=utc_now)


# ============================================================================
# ENTITY
# ============================================================================


class Entity(ABC):
    """
    Base class for entities with identity.

    Two entities with the same ID are the same entity, even if their
    attributes differ.
    """

    def __init__(self, entity_id: Any) -> None:
        self._id = entity_id
        self._domain_events: List[DomainEvent] = []

    @property
    def id(self) -> Any:
        return self._id

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Entity):
            return False
        return type(self) is type(other) and self.id == other.id

    def __hash__(self) -> int:
        return hash((type(self).__name__, self.id))

    def add_domain_event(self, event_name: str, payload: Dict[str, Any]) -> None:
        """
        Add a domain event to be published.

        Examples
        --------
        >>> self.add_domain_event("raid.participant_joined", {
        ...     "raid_id": self.raid_id,
        ...     "character_id": participant.character_id,
        ... })
        """
        self._domain_events.append(DomainEvent(event_name=event_name, payload=payload))

    def clear_domain_events(self) -> List[DomainEvent]:
        """Clear and return all domain events recorded since the last clear."""
        events = self._domain_events.copy()
        self._domain_events.clear()
        return events

    def get_pending_events(self) -> List[DomainEvent]:
        return self._domain_events.copy()


# ============================================================================
# AGGREGATE ROOT
# ============================================================================


class AggregateRoot(Entity):
    """
    Base class for aggregate roots.

    An aggregate is a cluster of domain objects treated as a single unit for
    data changes. Raids own their participants and quests own theirs; callers
    change them only through the aggregate's methods.
    """


# ============================================================================
# DOMAIN MODEL VALIDATION
# ============================================================================


def validate_positive(value: float, field_name: str) -> None:
    """
    Raises
    ------
    DomainValidationError
        If value is not positive
    """
    if value <= 0:
        raise DomainValidationError(field_name, f"{field_name} must be positive, got {value}")


def validate_range(value: float, min_val: float, max_val: float, field_name: str) -> None:
    if not (min_val <= value <= max_val):
        raise DomainValidationError(
            field_name,
            f"{field_name} must be between {min_val} and {max_val}, got {value}",
        )


def validate_not_empty(value: str | None, field_name: str) -> None:
    if not value or not value.strip():
        raise DomainValidationError(field_name, f"{field_name} cannot be empty")
