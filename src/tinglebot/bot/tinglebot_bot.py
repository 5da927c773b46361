"""
The discord.py ``Bot`` for Tinglebot.

Infrastructure (database, Redis, config, services) is built in ``main.py``
and injected here; the bot only loads cogs, sets presence and turns command
errors into embeds.
"""

from __future__ import annotations

import time
from collections import Counter
from typing import TYPE_CHECKING, List

import discord
from discord.ext import commands

from tinglebot.bot.base_cog import describe_domain_error
from tinglebot.bot.loader import FeatureLoader
from tinglebot.core.config.config import Config
from tinglebot.core.logging.logger import LogContext, get_logger
from tinglebot.modules.shared.exceptions import TinglebotDomainException
from tinglebot.ui.embed_builder import EmbedBuilder

if TYPE_CHECKING:
    from tinglebot.core.config.manager import ConfigManager
    from tinglebot.core.event.bus import EventBus
    from tinglebot.core.services.container import ServiceContainer

logger = get_logger(__name__)


class TinglebotBot(commands.Bot):
    def __init__(
        self,
        config_manager: ConfigManager,
        service_container: ServiceContainer,
        event_bus: EventBus,
    ) -> None:
        self._config_manager = config_manager
        self._service_container = service_container
        self._event_bus = event_bus

        intents = discord.Intents.default()
        intents.message_content = True
        intents.members = True

        super().__init__(
            command_prefix=self._get_prefix,
            intents=intents,
            case_insensitive=True,
            strip_after_prefix=True,
            description=Config.BOT_DESCRIPTION,
        )

        self.commands_executed = 0
        self.errors_by_type: Counter[str] = Counter()

    @property
    def config_manager(self) -> ConfigManager:
        return self._config_manager

    @property
    def service_container(self) -> ServiceContainer:
        return self._service_container

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    def _get_prefix(self, bot: commands.Bot, message: discord.Message) -> List[str]:
        return commands.when_mentioned_or(Config.COMMAND_PREFIX)(bot, message)

    async def setup_hook(self) -> None:
        start = time.perf_counter()
        stats = await FeatureLoader(self, self._config_manager).load_all_features()
        await self._event_bus.publish("bot.setup_complete", {"cogs_loaded": stats["loaded"]})
        logger.info(
            "Bot setup complete",
            extra={
                "cogs_loaded": stats["loaded"],
                "cogs_failed": stats["failed"],
                "ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

    async def on_ready(self) -> None:
        logger.info("Connected", extra={"user": str(self.user), "guilds": len(self.guilds)})
        try:
            await self.change_presence(
                activity=discord.Game(name=f"{Config.COMMAND_PREFIX}help | {Config.BOT_NAME}")
            )
        except discord.HTTPException as exc:
            logger.warning("Presence update failed", extra={"error": str(exc)})

    async def on_command_completion(self, ctx: commands.Context) -> None:
        self.commands_executed += 1

    def _error_embed(self, ctx: commands.Context, error: Exception) -> discord.Embed:
        original = getattr(error, "original", error)

        if isinstance(original, TinglebotDomainException):
            title, description, help_text = describe_domain_error(original)
            return EmbedBuilder.error(title=title, description=description, help_text=help_text)
        if isinstance(error, commands.MissingRequiredArgument):
            return EmbedBuilder.error(
                title="Missing Argument",
                description=f"Missing required argument: `{error.param.name}`",
                help_text=f"Use `{Config.COMMAND_PREFIX}help {ctx.command}` for usage.",
            )
        if isinstance(error, commands.BadArgument):
            return EmbedBuilder.error(title="Invalid Argument", description=str(error))
        if isinstance(error, commands.CommandOnCooldown):
            return EmbedBuilder.warning(
                title="Cooldown Active", description=f"Please wait **{error.retry_after:.1f}s**."
            )
        if isinstance(error, commands.CheckFailure):
            return EmbedBuilder.error(
                title="Permission Denied", description="You lack permission to use this command."
            )

        logger.error("Unhandled command error", extra={"command": str(ctx.command)}, exc_info=original)
        return EmbedBuilder.error(
            title="Unexpected Error",
            description="Something went wrong while processing your command.",
            help_text="The issue has been logged.",
        )

    async def on_command_error(self, ctx: commands.Context, error: Exception) -> None:
        if isinstance(error, commands.CommandNotFound):
            return

        async with LogContext(
            user_id=ctx.author.id,
            guild_id=ctx.guild.id if ctx.guild else None,
            command=str(ctx.command) if ctx.command else "unknown",
        ):
            self.errors_by_type[type(getattr(error, "original", error)).__name__] += 1
            embed = self._error_embed(ctx, error)
            try:
                await ctx.send(embed=embed)
            except discord.HTTPException as exc:
                logger.warning("Could not send error embed", extra={"error": str(exc)})

    async def close(self) -> None:
        logger.info(
            "Bot closing",
            extra={"commands_executed": self.commands_executed, "errors": dict(self.errors_by_type)},
        )
        await super().close()
