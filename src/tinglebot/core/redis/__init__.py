"""Redis infrastructure."""

from tinglebot.core.redis.service import RedisService

__all__ = ["RedisService"]
