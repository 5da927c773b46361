"""Steal protection windows: a character that was stolen from cannot be targeted again until expiry."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from tinglebot.domain.models.base import ensure_aware, utc_now

DEFAULT_PROTECTION_SECONDS = 30 * 60


def protection_expiry(now: Optional[datetime] = None, seconds: int = DEFAULT_PROTECTION_SECONDS) -> datetime:
    return (now or utc_now()) + timedelta(seconds=seconds)


def is_protected(expires_at: Optional[datetime], now: Optional[datetime] = None) -> bool:
    expires_at = ensure_aware(expires_at)
    if expires_at is None:
        return False
    return (now or utc_now()) < expires_at


def time_left(expires_at: Optional[datetime], now: Optional[datetime] = None) -> float:
    """Seconds until the window closes, 0 when unprotected."""
    expires_at = ensure_aware(expires_at)
    if expires_at is None:
        return 0.0
    return max(0.0, (expires_at - (now or utc_now())).total_seconds())
