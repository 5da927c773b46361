"""
Steal commands and the loop that clears expired steal protection.
"""

from __future__ import annotations

from typing import Literal

from discord.ext import commands, tasks

from tinglebot.bot.base_cog import BaseCog, format_duration
from tinglebot.ui.embed_builder import EmbedBuilder

CLEANUP_INTERVAL_MINUTES = 5


class StealCog(BaseCog):
    """
    Stealing between characters.

    Commands:
        steal <your character> <target character> [common|uncommon]
        stealprotection <character>
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)

    async def cog_load(self) -> None:
        self.cleanup_protection.start()

    async def cog_unload(self) -> None:
        self.cleanup_protection.cancel()

    @tasks.loop(minutes=CLEANUP_INTERVAL_MINUTES)
    async def cleanup_protection(self):
        try:
            await self.services.steal.cleanup_expired()
        except Exception as exc:
            self.log_cog_error("cleanup_protection", exc)

    @cleanup_protection.before_loop
    async def _before_cleanup(self):
        await self.bot.wait_until_ready()

    @commands.command(name="steal")
    async def steal(
        self,
        ctx: commands.Context,
        character: str,
        target: str,
        rarity: Literal["common", "uncommon"] = "common",
    ):
        """Try to steal from another character in your village."""
        thief = await self.run_command(
            ctx,
            "steal.resolve_thief",
            self.services.character.get_character_by_name(character, str(ctx.author.id)),
        )
        if thief is None:
            return
        victim = await self.run_command(
            ctx, "steal.resolve_target", self.services.character.get_character_by_name(target)
        )
        if victim is None:
            return

        result = await self.run_command(
            ctx, "steal", self.services.steal.steal(thief["id"], victim["id"], rarity)
        )
        if result is None:
            return

        self.log_command_use(
            "steal", ctx.author.id, ctx.guild.id if ctx.guild else None, success=result["success"]
        )
        footer = f"Rolled {result['roll']} (needed more than {result['failure_threshold']})"
        if result["success"]:
            embed = EmbedBuilder.success(
                "Steal Succeeded",
                f"**{thief['name']}** slipped a {rarity} item away from **{victim['name']}**.",
                footer=footer,
            )
        else:
            embed = EmbedBuilder.warning(
                "Steal Failed",
                f"**{victim['name']}** caught **{thief['name']}** in the act.",
                footer=footer,
            )
        await self.send_embed(ctx, embed)

    @commands.command(name="stealprotection", aliases=["protection"])
    async def steal_protection(self, ctx: commands.Context, *, character: str):
        """How long a character stays protected from theft."""
        found = await self.run_command(
            ctx, "steal.protection", self.services.character.get_character_by_name(character)
        )
        if found is None:
            return
        remaining = await self.services.steal.get_time_left(found["id"])
        if remaining > 0:
            await self.send_info(
                ctx, "Steal Protection", f"**{found['name']}** is protected for {format_duration(remaining)}."
            )
        else:
            await self.send_info(ctx, "Steal Protection", f"**{found['name']}** is not protected.")


async def setup(bot: commands.Bot):
    await bot.add_cog(StealCog(bot))
