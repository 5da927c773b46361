"""
User — one row per Discord member.
Schema only. Leveling, birthday and boost rules live in
``tinglebot.domain.models.leveling``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, JSONType, TimestampMixin, UTCDateTime


class User(Base, IdMixin, TimestampMixin):
    """
    Discord member with token balance and progression.

    Indexes:
        - discord_id (unique)
        - level + xp composite for the leaderboard
    """

    __tablename__ = "users"
    __table_args__ = (Index("ix_users_level_xp", "level", "xp"),)

    discord_id: Mapped[str] = mapped_column(String(32), unique=True, nullable=False, index=True)
    tokens: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # ========================================================================
    # LEVELING
    # ========================================================================

    xp: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    level: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    last_message_at: Mapped[Optional[datetime]] = mapped_column(UTCDateTime(), nullable=True)
    total_messages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    xp_history: Mapped[List[Dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    last_exchanged_level: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_levels_exchanged: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    exchange_history: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    # ========================================================================
    # BIRTHDAY
    # ========================================================================

    birthday_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    birthday_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    last_birthday_reward: Mapped[Optional[str]] = mapped_column(String(4), nullable=True)
    birthday_discount_expires_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
    birthday_rewards: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )

    # ========================================================================
    # SERVER BOOST
    # ========================================================================

    last_boost_reward_month: Mapped[Optional[str]] = mapped_column(String(7), nullable=True)
    total_boost_rewards: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    boost_reward_history: Mapped[List[Dict[str, Any]]] = mapped_column(
        JSONType, nullable=False, default=list
    )
