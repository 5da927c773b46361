"""
Tinglebot - Application Entry Point
===================================

Bootstrap order
---------------
- Config validation
- Database initialization (and schema creation)
- Redis initialization
- ConfigManager initialization
- Event bus and service container
- Bot start

Shutdown runs the same steps in reverse.
"""

import asyncio
import signal
import sys
from typing import Optional, Tuple

from tinglebot.bot.tinglebot_bot import TinglebotBot
from tinglebot.core.config.config import Config
from tinglebot.core.config.manager import ConfigManager
from tinglebot.core.database.service import DatabaseService
from tinglebot.core.event.bus import EventBus
from tinglebot.core.logging.logger import get_logger, shutdown_logging
from tinglebot.core.redis.service import RedisService
from tinglebot.core.services.container import ServiceContainer

logger = get_logger(__name__)


# ============================================================================
# Application Bootstrap
# ============================================================================


async def _startup() -> Tuple[TinglebotBot, ServiceContainer]:
    """Initialize all infrastructure components before launching the bot."""
    logger.info("========== TINGLEBOT INITIALIZATION START ==========")

    # Step 1: Validate configuration early
    Config.validate()
    if not Config.DISCORD_TOKEN:
        raise RuntimeError("DISCORD_TOKEN is not set")
    logger.info("Configuration validated")

    # Step 2: Database
    try:
        await DatabaseService.initialize()
        await DatabaseService.create_all()
        logger.info("Database service initialized")
    except Exception as exc:
        logger.critical(f"Database initialization failed: {exc}", exc_info=True)
        raise

    # Step 3: Redis
    try:
        await RedisService.initialize()
        logger.info("Redis service initialized")
    except Exception as exc:
        logger.critical(f"Redis initialization failed: {exc}", exc_info=True)
        raise

    # Step 4: Game balance configuration
    await ConfigManager.initialize()
    logger.info("Config manager initialized")

    # Step 5: Event bus and services
    event_bus = EventBus()
    container = ServiceContainer(
        config_manager=ConfigManager,
        event_bus=event_bus,
        logger=get_logger("tinglebot.core.services.container"),
    )
    await container.initialize()
    logger.info("Service container initialized")

    # Step 6: Bot
    bot = TinglebotBot(ConfigManager, container, event_bus)
    logger.info("========== INFRASTRUCTURE INITIALIZED SUCCESSFULLY ==========")
    return bot, container


# ============================================================================
# Application Shutdown
# ============================================================================


async def _shutdown(bot: Optional[TinglebotBot], container: Optional[ServiceContainer]) -> None:
    """Gracefully shut down the bot and infrastructure services."""
    logger.info("========== TINGLEBOT SHUTDOWN START ==========")

    if bot and not bot.is_closed():
        try:
            await bot.close()
        except Exception as exc:
            logger.error(f"Error while closing bot: {exc}", exc_info=True)

    if container is not None:
        try:
            await container.shutdown()
        except Exception as exc:
            logger.error(f"Service container shutdown error: {exc}", exc_info=True)

    try:
        await RedisService.shutdown()
    except Exception as exc:
        logger.error(f"Redis shutdown error: {exc}", exc_info=True)

    try:
        await DatabaseService.shutdown()
    except Exception as exc:
        logger.error(f"Database service shutdown error: {exc}", exc_info=True)

    logger.info("========== SHUTDOWN COMPLETE ==========")


# ============================================================================
# Application Entrypoint
# ============================================================================


async def main() -> None:
    bot: Optional[TinglebotBot] = None
    container: Optional[ServiceContainer] = None
    try:
        bot, container = await _startup()
        logger.info("Starting Tinglebot...")
        await bot.start(Config.DISCORD_TOKEN)
    except asyncio.CancelledError:
        logger.warning("Asyncio task cancellation received; shutting down gracefully.")
        raise
    finally:
        await _shutdown(bot, container)


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, task: "asyncio.Task[None]") -> None:
    try:
        loop.add_signal_handler(signal.SIGTERM, task.cancel)
        logger.debug("SIGTERM handler installed")
    except NotImplementedError:
        logger.debug("SIGTERM not supported on this platform")


def run() -> None:
    """Console entry point."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    task = loop.create_task(main())
    _install_signal_handlers(loop, task)
    exit_code = 0
    try:
        loop.run_until_complete(task)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Bot stopped.")
        if not task.done():
            task.cancel()
            loop.run_until_complete(asyncio.gather(task, return_exceptions=True))
    except Exception as exc:
        logger.critical(f"Startup failure: {exc}", exc_info=True)
        exit_code = 1
    finally:
        loop.close()
        shutdown_logging()
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
