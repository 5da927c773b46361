"""Async database infrastructure: engine, sessions, declarative base and retries."""

from tinglebot.core.database.base import Base, IdMixin, TimestampMixin
from tinglebot.core.database.retry_policy import DatabaseRetryConfig, DatabaseRetryPolicy
from tinglebot.core.database.service import DatabaseService

__all__ = [
    "Base",
    "IdMixin",
    "TimestampMixin",
    "DatabaseRetryConfig",
    "DatabaseRetryPolicy",
    "DatabaseService",
]
