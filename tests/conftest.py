"""
Shared test fixtures for Tinglebot test suite.

Purpose
-------
Provides reusable pytest fixtures for unit, domain and integration tests.

Responsibilities
----------------
- Force the ``testing`` environment before any tinglebot import
- Mock infrastructure dependencies (event bus, config, Discord objects)
- Provide a throwaway SQLite database and an in-memory Redis client
- Build a real ServiceContainer over that infrastructure
- Domain event assertion helpers

Architecture Notes
------------------
- Domain tests: pure model tests, no fixtures required
- Unit tests: mocked infrastructure
- Integration tests: real services over SQLite (aiosqlite) and the
  in-memory Redis client below
"""

import os

os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("DISCORD_TOKEN", "test-token")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("DATABASE_RETRY_INITIAL_BACKOFF_MS", "0")
os.environ.setdefault("DATABASE_RETRY_MAX_BACKOFF_MS", "0")
os.environ.setdefault("DATABASE_RETRY_JITTER_MS", "0")

from datetime import datetime, timezone  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any, Dict, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from tinglebot.core.config.manager import ConfigManager  # noqa: E402
from tinglebot.core.database.service import DatabaseService  # noqa: E402
from tinglebot.core.logging.logger import get_logger  # noqa: E402
from tinglebot.core.redis.service import RedisService  # noqa: E402
from tinglebot.core.services.container import ServiceContainer  # noqa: E402

CONFIG_DIR = Path(__file__).resolve().parent.parent / "config"

FIXED_NOW = datetime(2026, 4, 21, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# REDIS
# ============================================================================


class FakeRedis:
    """
    In-memory double for the redis.asyncio client calls RedisService makes.

    TTLs are recorded but never expire on their own; tests move time by
    deleting keys.
    """

    def __init__(self) -> None:
        self.store: Dict[str, str] = {}
        self.expiry: Dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def aclose(self) -> None:
        return None

    async def get(self, name: str) -> Optional[str]:
        return self.store.get(name)

    async def set(self, name: str, value: Any, ex: Optional[int] = None, nx: bool = False):
        if nx and name in self.store:
            return None
        self.store[name] = str(value)
        if ex:
            self.expiry[name] = int(ex)
        else:
            self.expiry.pop(name, None)
        return True

    async def delete(self, *names: str) -> int:
        removed = 0
        for name in names:
            if self.store.pop(name, None) is not None:
                removed += 1
            self.expiry.pop(name, None)
        return removed

    async def ttl(self, name: str) -> int:
        if name not in self.store:
            return -2
        return self.expiry.get(name, -1)

    async def exists(self, *names: str) -> int:
        return sum(1 for name in names if name in self.store)

    async def eval(self, script: str, numkeys: int, key: str, token: str) -> int:
        # Only the compare-and-delete unlock script is ever evaluated.
        if self.store.get(key) == token:
            await self.delete(key)
            return 1
        return 0


@pytest.fixture
def fake_redis():
    """
    In-memory Redis installed into RedisService.

    Scope: function
    """
    client = FakeRedis()
    RedisService.use_client(client)
    yield client
    RedisService.use_client(None)


# ============================================================================
# DATABASE
# ============================================================================


@pytest_asyncio.fixture
async def database(tmp_path):
    """
    Fresh SQLite database file with the full schema.

    Scope: function
    Uses: aiosqlite. A file (not ``:memory:``) so concurrent sessions get
    separate connections and version conflicts behave like Postgres.
    """
    await DatabaseService.initialize(f"sqlite+aiosqlite:///{tmp_path / 'tinglebot.db'}")
    await DatabaseService.create_all()
    yield DatabaseService
    await DatabaseService.shutdown()


# ============================================================================
# CONFIG
# ============================================================================


@pytest_asyncio.fixture
async def config_manager():
    """
    ConfigManager loaded from the repository's YAML files.

    Scope: function
    Overrides via ``config_manager.set(key, value)`` vanish after the test.
    """
    ConfigManager.reset()
    await ConfigManager.initialize(CONFIG_DIR)
    yield ConfigManager
    ConfigManager.reset()


@pytest.fixture
def mock_config_manager(mocker):
    """
    Mock ConfigManager returning the default for every key.

    Scope: function
    """
    config = mocker.MagicMock()
    config.get = mocker.MagicMock(side_effect=lambda key, default=None: default)
    return config


# ============================================================================
# EVENT BUS
# ============================================================================


@pytest.fixture
def mock_event_bus(mocker):
    """
    Mock EventBus for testing services.

    Scope: function
    Use ``published_event_names(bus)`` to inspect what was emitted.
    """
    bus = mocker.MagicMock()
    bus.publish = mocker.AsyncMock(return_value=[])
    bus.drain = mocker.AsyncMock()
    bus.subscribe = mocker.MagicMock()
    return bus


def published_event_names(bus) -> list:
    return [c.args[0] for c in bus.publish.await_args_list]


def published_payloads(bus, event_name: str) -> list:
    return [c.args[1] for c in bus.publish.await_args_list if c.args[0] == event_name]


# ============================================================================
# SERVICES
# ============================================================================


@pytest_asyncio.fixture
async def services(database, fake_redis, config_manager, mock_event_bus):
    """
    Real ServiceContainer over SQLite, FakeRedis and the YAML config.

    Scope: function
    """
    container = ServiceContainer(
        config_manager=config_manager,
        event_bus=mock_event_bus,
        logger=get_logger("tests.services"),
    )
    await container.initialize()
    yield container
    await container.shutdown()


# ============================================================================
# DISCORD
# ============================================================================


@pytest.fixture
def mock_bot(mocker, mock_event_bus):
    """
    Mock Discord bot with a mock service container.

    Scope: function
    """
    bot = mocker.MagicMock()
    bot.event_bus = mock_event_bus
    bot.service_container = mocker.MagicMock()
    return bot


@pytest.fixture
def mock_context(mocker):
    """
    Mock Discord command context.

    Scope: function
    """
    ctx = mocker.MagicMock()
    ctx.author.id = 123456789
    ctx.author.name = "TestUser"
    ctx.author.display_name = "TestUser"
    ctx.guild.id = 987654321
    ctx.clean_prefix = "!"
    ctx.send = mocker.AsyncMock()
    ctx.reply = mocker.AsyncMock()
    return ctx


# ============================================================================
# DOMAIN EVENT HELPERS
# ============================================================================


def assert_domain_event_emitted(entity, event_name: str) -> None:
    """
    Assert that an entity emitted a specific domain event.

    Args:
        entity: Domain entity with get_pending_events()
        event_name: Event name to check for
    """
    names = [e.event_name for e in entity.get_pending_events()]
    assert event_name in names, f"Expected event '{event_name}' not found. Events: {names}"


def get_domain_event_payload(entity, event_name: str) -> dict:
    """Payload of the first pending event named `event_name`."""
    for event in entity.get_pending_events():
        if event.event_name == event_name:
            return event.payload
    raise AssertionError(f"Event '{event_name}' not found")
