"""
Character — a roleplay character owned by a Discord user.
Schema only.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from tinglebot.core.database.base import Base, IdMixin, TimestampMixin, UTCDateTime


class Character(Base, IdMixin, TimestampMixin):
    """
    Roleplay character.

    ``current_village`` drives raid joins and RP quest village checks.
    ``steal_protection_expires_at`` is set after the character is stolen from.
    """

    __tablename__ = "characters"
    __table_args__ = (
        Index("ix_characters_user_name", "user_id", "name", unique=True),
        Index("ix_characters_steal_protection", "steal_protection_expires_at"),
    )

    user_id: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    job: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    home_village: Mapped[str] = mapped_column(String(20), nullable=False)
    current_village: Mapped[str] = mapped_column(String(20), nullable=False)

    current_hearts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    max_hearts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    current_stamina: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    max_stamina: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    ko: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    blighted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    blight_stage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    is_mod_character: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    steal_protection_expires_at: Mapped[Optional[datetime]] = mapped_column(
        UTCDateTime(), nullable=True
    )
