"""
Database Models Package
=======================

All SQLAlchemy ORM models for Tinglebot, organized by domain.

Conventions:
- Schema only, no business logic (rules live in ``tinglebot.domain.models``)
- ``Mapped[]`` syntax with ``mapped_column()``
- ``IdMixin`` and ``TimestampMixin`` on every table
- Optimistic locking via ``version`` columns on rows edited concurrently
- JSON columns (JSONB on PostgreSQL) for embedded lists and maps

Domain Organization:
--------------------
- core: Users and characters
- combat: Raids
- progression: Quests
- exploration: Relics and table rolls
"""

from tinglebot.core.database.base import Base

from .combat import Raid
from .core import Character, User
from .exploration import Relic, TableRoll
from .progression import Quest

__all__ = [
    "Base",
    "Character",
    "Quest",
    "Raid",
    "Relic",
    "TableRoll",
    "User",
]
