"""
Shared plumbing for every Tinglebot cog.

Cogs stay thin: parse arguments, call one service method through
``run_command`` and render the returned dict. Domain exceptions become error
embeds there; anything else propagates to ``TinglebotBot.on_command_error``.

    class RaidCog(BaseCog):
        @commands.command(name="raidstatus")
        async def status(self, ctx, raid_id: str):
            raid = await self.run_command(ctx, "raid.status", self.services.raid.get_raid(raid_id))
            if raid:
                await self.send_embed(ctx, EmbedBuilder.raid_status(raid))
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Awaitable, Optional, Tuple, TypeVar

import discord
from discord.ext import commands

from tinglebot.core.logging.logger import LogContext, get_logger, safe_extra
from tinglebot.modules.shared.exceptions import (
    ConcurrencyConflictError,
    CooldownActiveError,
    InsufficientResourcesError,
    InvalidOperationError,
    NotFoundError,
    TinglebotDomainException,
    ValidationError,
)
from tinglebot.ui.embed_builder import EmbedBuilder

if TYPE_CHECKING:
    from tinglebot.core.services.container import ServiceContainer

R = TypeVar("R")


def format_duration(seconds: float) -> str:
    """``3725`` -> ``"1h 2m 5s"``."""
    seconds = max(0, int(seconds))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = [f"{value}{unit}" for value, unit in ((hours, "h"), (minutes, "m")) if value]
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def describe_domain_error(error: TinglebotDomainException) -> Tuple[str, str, Optional[str]]:
    """(title, description, help text) for an error embed."""
    if isinstance(error, InsufficientResourcesError):
        return (
            "Insufficient Resources",
            f"You need **{error.required:,}** {error.resource}, but only have **{error.current:,}**.",
            None,
        )
    if isinstance(error, CooldownActiveError):
        return (
            "Cooldown Active",
            f"**{error.action}** is available again in {format_duration(error.remaining_seconds)}.",
            "Please wait before retrying.",
        )
    if isinstance(error, ConcurrencyConflictError):
        return "Busy", "Someone else changed this at the same moment.", "Please try again."
    if isinstance(error, NotFoundError):
        return "Not Found", error.message, None
    if isinstance(error, ValidationError):
        return "Invalid Input", error.message, None
    if isinstance(error, InvalidOperationError):
        return "Invalid Operation", error.message, None
    return "Error", error.message, None


class BaseCog(commands.Cog):
    def __init__(self, bot: commands.Bot, cog_name: str):
        self.bot = bot
        self.cog_name = cog_name
        self.logger = get_logger(cog_name)

    @property
    def services(self) -> ServiceContainer:
        return self.bot.service_container

    # Feedback

    async def send_error(
        self, ctx: commands.Context, title: str, description: str, help_text: Optional[str] = None
    ):
        await self.send_embed(ctx, EmbedBuilder.error(title=title, description=description, help_text=help_text))

    async def send_success(
        self, ctx: commands.Context, title: str, description: str, footer: Optional[str] = None
    ):
        await self.send_embed(ctx, EmbedBuilder.success(title=title, description=description, footer=footer))

    async def send_info(
        self, ctx: commands.Context, title: str, description: str, footer: Optional[str] = None
    ):
        await self.send_embed(ctx, EmbedBuilder.info(title=title, description=description, footer=footer))

    async def send_embed(self, ctx: commands.Context, embed: discord.Embed):
        try:
            await ctx.reply(embed=embed)
        except discord.HTTPException as e:
            self.logger.error(f"{self.cog_name}: could not send embed: {e}")

    # Errors

    async def handle_standard_errors(self, ctx: commands.Context, error: Exception) -> bool:
        """Reply with an error embed for domain exceptions; False for anything else."""
        if not isinstance(error, TinglebotDomainException):
            return False
        title, description, help_text = describe_domain_error(error)
        await self.send_error(ctx, title, description, help_text)
        return True

    async def run_command(self, ctx: commands.Context, operation: str, coro: Awaitable[R]) -> Optional[R]:
        """
        Await a service call inside a log context for the invoking user.

        Returns the result, or ``None`` once a domain error has been reported
        to the user.
        """
        async with LogContext(
            user_id=ctx.author.id,
            guild_id=ctx.guild.id if ctx.guild else None,
            command=operation,
            component=self.cog_name,
        ):
            try:
                return await coro
            except TinglebotDomainException as e:
                self.logger.info(
                    f"{operation} rejected: {e.message}",
                    extra={"error_code": e.error_code, "details": e.details},
                )
                await self.handle_standard_errors(ctx, e)
                return None

    # Logging

    def log_command_use(self, command_name: str, user_id: int, guild_id: Optional[int] = None, **fields: Any):
        self.logger.info(
            f"Command used: {command_name}",
            extra=safe_extra({"cog": self.cog_name, "user_id": str(user_id), "guild_id": guild_id, **fields}),
        )

    def log_cog_error(self, operation: str, error: Exception, user_id: Optional[int] = None, **fields: Any):
        self.logger.error(
            f"{self.cog_name}.{operation} failed: {error}",
            exc_info=error,
            extra=safe_extra({"cog": self.cog_name, "user_id": user_id, **fields}),
        )
