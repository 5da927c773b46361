"""
Domain models package for Tinglebot.

Purpose
-------
Rich domain models that encapsulate game rules, validation and state
transitions for raids, quests, table rolls, relics and user progression.

Design Notes
------------
Domain models are separate from database models:

- Database models (``tinglebot.database.models``): anemic SQLAlchemy schemas
- Domain models (``tinglebot.domain.models``): rich objects with behaviour

Services convert rows with ``from_db`` and write back ``to_db_updates()``.
"""

from .base import (
    AggregateRoot,
    DomainEvent,
    DomainValidationError,
    Entity,
    validate_not_empty,
    validate_positive,
    validate_range,
)
from .leveling import UserProfile, level_for_xp, xp_for_level
from .quest import (
    CompletionReason,
    ParticipantProgress,
    Quest,
    QuestParticipant,
    QuestStatus,
    QuestType,
    SubmissionKind,
)
from .raid import (
    BattleOutcome,
    MonsterState,
    Raid,
    RaidParticipant,
    RaidResult,
    RaidStatus,
)
from .relic import Relic
from .rp_validation import RPPostValidation, validate_rp_post
from .table_roll import TableEntry, TableRoll

__all__ = [
    "AggregateRoot",
    "BattleOutcome",
    "CompletionReason",
    "DomainEvent",
    "DomainValidationError",
    "Entity",
    "MonsterState",
    "ParticipantProgress",
    "Quest",
    "QuestParticipant",
    "QuestStatus",
    "QuestType",
    "RPPostValidation",
    "Raid",
    "RaidParticipant",
    "RaidResult",
    "RaidStatus",
    "Relic",
    "SubmissionKind",
    "TableEntry",
    "TableRoll",
    "UserProfile",
    "level_for_xp",
    "validate_not_empty",
    "validate_positive",
    "validate_range",
    "validate_rp_post",
    "xp_for_level",
]
