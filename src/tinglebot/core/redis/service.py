"""
RedisService: async Redis infrastructure for Tinglebot.

Purpose
-------
Provide a small, observable Redis abstraction with:
- Singleton async client with connection pooling
- Distributed locking with token-based safety
- KV and JSON operations with TTL support

Responsibilities
----------------
- Initialize and manage a singleton Redis connection pool
- Provide atomic distributed locking via SET NX + Lua unlock
- Expose simple KV and JSON operations (get/set/delete/ttl/exists)

Non-Responsibilities
--------------------
- Business logic of any kind (cooldown rules live in services)
- Database transactions

Configuration Keys
------------------
- Config.REDIS_URL, Config.REDIS_PASSWORD
- Config.REDIS_SOCKET_TIMEOUT, Config.REDIS_MAX_CONNECTIONS
- Config.REDIS_LOCK_TIMEOUT_SECONDS, Config.REDIS_LOCK_WAIT_SECONDS
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

from redis.asyncio.client import Redis as AsyncRedis
from redis.exceptions import RedisError

from tinglebot.core.config.config import Config
from tinglebot.core.exceptions import RedisNotInitializedError
from tinglebot.core.logging.logger import get_logger

logger = get_logger(__name__)


class RedisService:
    """Async Redis infrastructure service (class-level singleton)."""

    _client: Optional[AsyncRedis] = None
    _init_lock: asyncio.Lock = asyncio.Lock()

    _LUA_UNLOCK_SCRIPT = """
    if redis.call("GET", KEYS[1]) == ARGV[1] then
        return redis.call("DEL", KEYS[1])
    else
        return 0
    end
    """

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @classmethod
    async def initialize(cls, url: Optional[str] = None) -> None:
        """
        Initialize the singleton Redis client. Idempotent.

        Raises
        ------
        RuntimeError
            If the Redis server cannot be reached.
        """
        if cls._client is not None:
            logger.debug("RedisService already initialized, skipping")
            return

        async with cls._init_lock:
            if cls._client is not None:
                return

            url = url or Config.REDIS_URL
            start_time = time.monotonic()
            client: AsyncRedis = AsyncRedis.from_url(
                url,
                password=Config.REDIS_PASSWORD,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                decode_responses=True,
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                health_check_interval=30,
            )

            try:
                await client.ping()
            except RedisError as exc:
                await client.aclose()
                logger.critical(
                    "Failed to initialize RedisService",
                    extra={
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                        "url_scheme": url.split("://")[0] if "://" in url else "unknown",
                    },
                    exc_info=True,
                )
                raise RuntimeError(f"Failed to initialize RedisService: {exc}") from exc

            cls._client = client
            logger.info(
                "RedisService initialized successfully",
                extra={
                    "url_scheme": url.split("://")[0] if "://" in url else "unknown",
                    "initialization_time_ms": round((time.monotonic() - start_time) * 1000, 2),
                },
            )

    @classmethod
    async def shutdown(cls) -> None:
        """Close the Redis client. Safe to call even if not initialized."""
        client = cls._client
        cls._client = None
        if client is None:
            logger.debug("RedisService not initialized, nothing to shutdown")
            return

        await client.aclose()
        logger.info("RedisService shutdown complete")

    @classmethod
    async def health_check(cls) -> bool:
        if cls._client is None:
            return False
        try:
            return bool(await cls._client.ping())
        except RedisError as exc:
            logger.error(
                "Redis health check failed",
                extra={"error": str(exc), "error_type": type(exc).__name__},
            )
            return False

    @classmethod
    def client(cls) -> AsyncRedis:
        if cls._client is None:
            raise RedisNotInitializedError()
        return cls._client

    @classmethod
    def use_client(cls, client: AsyncRedis) -> None:
        """Install an already-connected client (used by tests and embedders)."""
        cls._client = client

    # =========================================================================
    # Key/Value Operations
    # =========================================================================

    @classmethod
    async def get(cls, key: str) -> Optional[str]:
        return await cls.client().get(key)

    @classmethod
    async def set(
        cls,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        """Set `key`; with ``nx=True`` only when it does not already exist."""
        result = await cls.client().set(key, value, ex=ttl if ttl else None, nx=nx)
        logger.debug(
            "Redis key set",
            extra={"key": key, "ttl_seconds": ttl, "nx": nx, "stored": bool(result)},
        )
        return bool(result)

    @classmethod
    async def delete(cls, key: str) -> int:
        return int(await cls.client().delete(key))

    @classmethod
    async def ttl(cls, key: str) -> int:
        """Remaining seconds for `key`; -2 if missing, -1 if it has no expiry."""
        return int(await cls.client().ttl(key))

    @classmethod
    async def exists(cls, key: str) -> bool:
        return bool(await cls.client().exists(key))

    @classmethod
    async def get_json(cls, key: str) -> Optional[Any]:
        raw = await cls.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    @classmethod
    async def set_json(cls, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await cls.set(key, json.dumps(value, default=str), ttl=ttl)

    # =========================================================================
    # Distributed Locking
    # =========================================================================

    @classmethod
    @asynccontextmanager
    async def acquire_lock(
        cls,
        key: str,
        timeout: Optional[int] = None,
        wait_timeout: Optional[int] = None,
        retry_interval: float = 0.1,
        operation: Optional[str] = None,
    ) -> AsyncGenerator[None, None]:
        """
        Acquire a distributed lock using Redis SET NX with a unique token.

        The lock expires after `timeout` seconds if never released.

        Raises
        ------
        TimeoutError
            If the lock cannot be acquired within `wait_timeout`.

        Example
        -------
        >>> async with RedisService.acquire_lock(f"raid:{raid_id}", operation="raid.turn"):
        >>>     await raid_service.process_turn(raid_id, character_id)
        """
        client = cls.client()
        timeout = timeout if timeout is not None else Config.REDIS_LOCK_TIMEOUT_SECONDS
        wait_timeout = wait_timeout if wait_timeout is not None else Config.REDIS_LOCK_WAIT_SECONDS

        token = str(uuid.uuid4())
        lock_start = time.monotonic()
        deadline = lock_start + max(0, wait_timeout)

        while True:
            if await client.set(name=key, value=token, nx=True, ex=timeout):
                logger.debug(
                    "Redis lock acquired",
                    extra={
                        "lock_key": key,
                        "operation": operation,
                        "wait_ms": round((time.monotonic() - lock_start) * 1000, 2),
                    },
                )
                break

            if time.monotonic() >= deadline:
                logger.warning(
                    "Redis lock acquisition timed out",
                    extra={"lock_key": key, "operation": operation, "wait_timeout": wait_timeout},
                )
                raise TimeoutError(f"Could not acquire lock '{key}' within {wait_timeout}s")

            await asyncio.sleep(retry_interval)

        try:
            yield
        finally:
            released = await client.eval(cls._LUA_UNLOCK_SCRIPT, 1, key, token)
            if not released:
                logger.warning(
                    "Redis lock expired before release",
                    extra={"lock_key": key, "operation": operation},
                )
