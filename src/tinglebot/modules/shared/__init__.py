"""
Tinglebot Shared Module

Purpose
-------
Domain-level foundations for every feature module:

- Domain exceptions
- Base service and repository patterns
- Version-conflict retry for optimistic locking

Architecture
------------
- BaseService: Foundation for service classes (logging, config, events, retries)
- BaseRepository: Type-safe database access patterns
- Domain exceptions: Player-facing errors and business rule violations

Usage
-----
    from tinglebot.modules.shared import (
        BaseService,
        BaseRepository,
        NotFoundError,
        InvalidOperationError,
    )
"""

from __future__ import annotations

from .base_repository import BaseRepository
from .base_service import BaseService
from .exceptions import (
    ConcurrencyConflictError,
    CooldownActiveError,
    DomainValidationError,
    InsufficientResourcesError,
    InvalidOperationError,
    NotFoundError,
    NotYourTurnError,
    QuestTypeMismatchError,
    RaidFullError,
    RaidParticipantExistsError,
    RaidParticipantNotFoundError,
    TinglebotDomainException,
    ValidationError,
)

__all__ = [
    "BaseRepository",
    "BaseService",
    "ConcurrencyConflictError",
    "CooldownActiveError",
    "DomainValidationError",
    "InsufficientResourcesError",
    "InvalidOperationError",
    "NotFoundError",
    "NotYourTurnError",
    "QuestTypeMismatchError",
    "RaidFullError",
    "RaidParticipantExistsError",
    "RaidParticipantNotFoundError",
    "TinglebotDomainException",
    "ValidationError",
]
