"""
Leveling commands and the message listener that awards XP.
"""

from __future__ import annotations

from typing import Literal, Optional

import discord
from discord.ext import commands

from tinglebot.bot.base_cog import BaseCog
from tinglebot.ui.embed_builder import EmbedBuilder


class LevelingCog(BaseCog):
    """
    Levels, tokens and yearly/monthly rewards.

    Commands:
        rank [member]
        top
        exchange                       - Turn new levels into tokens
        birthday set <MM-DD>
        birthday claim [tokens|discount]
        boostreward <member>           - Monthly booster reward (moderators)
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        if message.author.bot or message.guild is None:
            return
        prefixes = await self.bot.get_prefix(message)
        if isinstance(prefixes, str):
            prefixes = [prefixes]
        if any(message.content.startswith(p) for p in prefixes):
            return

        try:
            result = await self.services.leveling.record_message(str(message.author.id))
        except Exception as exc:
            self.log_cog_error("record_message", exc, user_id=message.author.id)
            return

        if result["leveled_up"]:
            try:
                await message.channel.send(
                    embed=EmbedBuilder.success(
                        "Level Up!",
                        f"{message.author.mention} reached **level {result['new_level']}**.",
                        footer="Use the exchange command to turn levels into tokens.",
                    )
                )
            except discord.HTTPException as exc:
                self.logger.warning(f"Failed to announce level up: {exc}")

    @commands.command(name="rank", aliases=["level"])
    async def rank(self, ctx: commands.Context, member: Optional[discord.Member] = None):
        """Show level, XP progress and leaderboard position."""
        member = member or ctx.author
        info = await self.run_command(ctx, "rank", self.services.leveling.get_rank(str(member.id)))
        if info is None:
            return
        progress = info["progress"]
        embed = EmbedBuilder.primary(
            f"{member.display_name}'s Rank",
            f"**Level:** {info['level']}\n"
            f"**Rank:** #{info['rank']}\n"
            f"**Progress:** {progress['current']:,}/{progress['needed']:,} XP ({progress['percentage']}%)\n"
            f"**Tokens:** {info['tokens']:,}",
            footer=f"{info['exchangeable_levels']} level(s) ready to exchange",
        )
        await self.send_embed(ctx, embed)

    @commands.command(name="top", aliases=["leaderboard"])
    async def top(self, ctx: commands.Context):
        """Top members by level."""
        board = await self.services.leveling.get_leaderboard()
        if not board:
            await self.send_info(ctx, "Leaderboard", "Nobody has earned XP yet.")
            return
        lines = [
            f"**#{row['rank']}** <@{row['discord_id']}> - level {row['level']} ({row['xp']:,} XP)"
            for row in board
        ]
        await self.send_info(ctx, "Leaderboard", "\n".join(lines))

    @commands.command(name="exchange")
    async def exchange(self, ctx: commands.Context):
        """Exchange levels gained since your last exchange for tokens."""
        result = await self.run_command(
            ctx, "exchange", self.services.leveling.exchange_levels(str(ctx.author.id))
        )
        if result is not None:
            await self.send_success(
                ctx,
                "Levels Exchanged",
                f"Exchanged **{result['levels_exchanged']}** level(s) for "
                f"**{result['tokens_received']:,}** tokens.",
                footer=f"Balance: {result['new_token_balance']:,}",
            )

    @commands.group(name="birthday", invoke_without_command=True, case_insensitive=True)
    async def birthday(self, ctx: commands.Context):
        await self.send_info(
            ctx,
            "Birthday",
            f"`{ctx.clean_prefix}birthday set MM-DD` to save your birthday, "
            f"`{ctx.clean_prefix}birthday claim` on the day for your reward.",
        )

    @birthday.command(name="set")
    async def birthday_set(self, ctx: commands.Context, date: str):
        """Save your birthday as MM-DD."""
        try:
            month, day = (int(part) for part in date.split("-", 1))
        except ValueError:
            await self.send_error(ctx, "Invalid Date", "Use the format MM-DD, e.g. `04-21`.")
            return
        saved = await self.run_command(
            ctx, "birthday.set", self.services.leveling.set_birthday(str(ctx.author.id), month, day)
        )
        if saved is not None:
            await self.send_success(ctx, "Birthday Saved", f"Your birthday is set to **{saved}**.")

    @birthday.command(name="claim")
    async def birthday_claim(
        self, ctx: commands.Context, reward: Literal["tokens", "discount", "random"] = "random"
    ):
        """Claim your birthday reward."""
        result = await self.run_command(
            ctx,
            "birthday.claim",
            self.services.leveling.give_birthday_reward(str(ctx.author.id), reward),
        )
        if result is not None:
            await self.send_success(
                ctx,
                "Happy Birthday!",
                result["reward_description"],
                footer=f"Balance: {result['new_token_balance']:,}",
            )

    @commands.command(name="boostreward")
    @commands.has_permissions(manage_guild=True)
    async def boost_reward(self, ctx: commands.Context, member: discord.Member):
        """Give a server booster their monthly reward."""
        result = await self.run_command(
            ctx, "boostreward", self.services.leveling.give_boost_reward(str(member.id))
        )
        if result is not None:
            await self.send_success(
                ctx,
                "Boost Reward",
                f"{member.mention} received **{result['tokens_received']:,}** tokens for boosting.",
                footer=f"Month {result['month']}",
            )


async def setup(bot: commands.Bot):
    await bot.add_cog(LevelingCog(bot))
