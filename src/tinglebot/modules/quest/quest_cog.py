"""
Quest commands.

Posting and joining quests, submissions and their approval, interactive
table rolls, moderator rewards, RP post tracking in quest threads and the
periodic auto-completion sweep.
"""

from __future__ import annotations

import re
from typing import Literal, Optional

import discord
from discord.ext import commands, tasks

from tinglebot.bot.base_cog import BaseCog
from tinglebot.core.config.config import Config
from tinglebot.modules.shared.exceptions import TinglebotDomainException
from tinglebot.ui.embed_builder import EmbedBuilder

# RP threads are named after their quest, e.g. "Q123456 - Lost in Vhintl".
QUEST_THREAD_PATTERN = re.compile(r"^\s*(Q\d+)\b", re.IGNORECASE)

QUEST_TYPE_ALIASES = {
    "art": "Art",
    "writing": "Writing",
    "interactive": "Interactive",
    "rp": "RP",
    "artwriting": "Art / Writing",
    "art/writing": "Art / Writing",
}


def quest_id_from_thread(channel: discord.abc.Messageable) -> Optional[str]:
    if not isinstance(channel, discord.Thread):
        return None
    match = QUEST_THREAD_PATTERN.match(channel.name or "")
    return match.group(1).upper() if match else None


class QuestCog(BaseCog):
    """
    Quests.

    Commands:
        quest                                       - List active quests
        quest create <type> <tokens> <title>        - Post a quest (moderators)
        quest join <quest_id> <character>
        quest leave <quest_id>
        quest submit <quest_id> <art|writing> <url>
        quest approve <quest_id> <member> <url>     - Approve a submission (moderators)
        quest table <quest_id> <table> [rolls] [criteria]
        quest roll <quest_id>                       - Interactive quests
        quest status <quest_id>
        quest reward <quest_id> <member> [tokens]   - Pay a completed participant (moderators)
        quest disqualify <quest_id> <member> <reason>
        quest complete <quest_id>
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)
        self.auto_complete.change_interval(seconds=Config.QUEST_CHECK_INTERVAL_SECONDS)

    async def cog_load(self) -> None:
        self.auto_complete.start()

    async def cog_unload(self) -> None:
        self.auto_complete.cancel()

    # ========================================================================
    # BACKGROUND
    # ========================================================================

    @tasks.loop(seconds=600)
    async def auto_complete(self):
        try:
            summary = await self.services.quest.run_auto_completion()
        except Exception as exc:
            self.log_cog_error("auto_complete", exc)
            return
        if summary["completed"] or summary["participants_completed"]:
            self.logger.info("Quest auto-completion sweep", extra=summary)

    @auto_complete.before_loop
    async def _before_auto_complete(self):
        await self.bot.wait_until_ready()

    @commands.Cog.listener()
    async def on_message(self, message: discord.Message):
        """Count RP posts made in a quest's thread."""
        if message.author.bot:
            return
        quest_id = quest_id_from_thread(message.channel)
        if quest_id is None:
            return
        try:
            result = await self.services.quest.record_rp_post(
                quest_id,
                str(message.author.id),
                message.content,
                has_attachments=bool(message.attachments),
                has_embeds=bool(message.embeds),
            )
        except TinglebotDomainException as exc:
            self.logger.debug(
                f"RP post not counted in {quest_id}: {exc.message}",
                extra={"quest_id": quest_id, "user_id": str(message.author.id)},
            )
            return

        if result["valid"] and result["requirement_met"] and result["post_count"] == result["post_requirement"]:
            try:
                await message.channel.send(
                    embed=EmbedBuilder.success(
                        "Post Requirement Met",
                        f"<@{message.author.id}> reached {result['post_requirement']} posts for `{quest_id}`.",
                    )
                )
            except discord.HTTPException as exc:
                self.logger.warning(f"Failed to announce RP requirement: {exc}")

    # ========================================================================
    # COMMANDS
    # ========================================================================

    @commands.group(name="quest", invoke_without_command=True, case_insensitive=True)
    async def quest(self, ctx: commands.Context):
        """List active quests."""
        quests = await self.services.quest.list_active_quests()
        if not quests:
            await self.send_info(ctx, "Quests", "There are no active quests.")
            return
        lines = [
            f"`{q['quest_id']}` **{q['title']}** ({q['quest_type']}) - "
            f"{len(q['participants'])} participant(s)"
            for q in quests
        ]
        await self.send_info(ctx, "Active Quests", "\n".join(lines))

    @quest.command(name="create")
    @commands.has_permissions(manage_guild=True)
    async def quest_create(self, ctx: commands.Context, quest_type: str, tokens: int, *, title: str):
        """Post a new quest."""
        quest = await self.run_command(
            ctx,
            "quest.create",
            self.services.quest.create_quest(
                title,
                QUEST_TYPE_ALIASES.get(quest_type.lower(), quest_type),
                token_reward=tokens,
            ),
        )
        if quest is None:
            return
        self.log_command_use("quest create", ctx.author.id, ctx.guild.id if ctx.guild else None, quest_id=quest["quest_id"])
        await self.send_embed(ctx, EmbedBuilder.quest_status(quest))

    @quest.command(name="join")
    async def quest_join(self, ctx: commands.Context, quest_id: str, *, character: str):
        """Join a quest with one of your characters."""
        result = await self.run_command(
            ctx,
            "quest.join",
            self.services.quest.join_quest(quest_id.upper(), str(ctx.author.id), character),
        )
        if result is None:
            return
        quest = result["quest"]
        await self.send_success(
            ctx,
            "Joined Quest",
            f"**{result['participant']['character_name']}** joined **{quest['title']}**.",
        )

    @quest.command(name="leave")
    async def quest_leave(self, ctx: commands.Context, quest_id: str):
        """Leave a quest. You cannot rejoin it afterwards."""
        result = await self.run_command(
            ctx, "quest.leave", self.services.quest.leave_quest(quest_id.upper(), str(ctx.author.id))
        )
        if result is not None:
            await self.send_success(ctx, "Left Quest", f"You left **{result['quest']['title']}**.")

    @quest.command(name="submit")
    async def quest_submit(
        self, ctx: commands.Context, quest_id: str, kind: Literal["art", "writing"], url: str
    ):
        """Submit art or writing for a quest."""
        submission = await self.run_command(
            ctx,
            "quest.submit",
            self.services.quest.submit(quest_id.upper(), str(ctx.author.id), kind, url),
        )
        if submission is not None:
            await self.send_success(
                ctx, "Submission Received", f"Your {kind} submission is waiting for approval."
            )

    @quest.command(name="approve")
    @commands.has_permissions(manage_guild=True)
    async def quest_approve(self, ctx: commands.Context, quest_id: str, member: discord.Member, url: str):
        """Approve a participant's submission."""
        result = await self.run_command(
            ctx,
            "quest.approve",
            self.services.quest.approve_submission(
                quest_id.upper(), str(member.id), url, str(ctx.author.id)
            ),
        )
        if result is not None:
            await self.send_success(
                ctx,
                "Submission Approved",
                f"{member.mention}'s submission was approved. Progress: **{result['progress']}**.",
            )

    @quest.command(name="table")
    @commands.has_permissions(manage_guild=True)
    async def quest_table(
        self,
        ctx: commands.Context,
        quest_id: str,
        table: str,
        required_rolls: int = 1,
        *,
        success_criteria: Optional[str] = None,
    ):
        """Attach a table roll to an interactive quest."""
        quest = await self.run_command(
            ctx,
            "quest.table",
            self.services.quest.configure_table_roll(
                quest_id.upper(), table, required_rolls, success_criteria
            ),
        )
        if quest is not None:
            await self.send_success(
                ctx,
                "Table Configured",
                f"`{quest['quest_id']}` now rolls on **{quest['table_roll_name']}** "
                f"({quest['required_rolls']} success(es) needed).",
            )

    @quest.command(name="roll")
    async def quest_roll(self, ctx: commands.Context, quest_id: str):
        """Roll the quest's table."""
        result = await self.run_command(
            ctx, "quest.roll", self.services.quest.roll_for_quest(quest_id.upper(), str(ctx.author.id))
        )
        if result is None:
            return
        roll = result["roll"]
        description = (
            f"**{roll['item']}**" + (f"\n*{roll['flavor']}*" if roll.get("flavor") else "") + "\n\n"
            f"Successful rolls: **{result['successful_rolls']}/{result['required_rolls']}**"
        )
        if result["quest_completed"]:
            embed = EmbedBuilder.success(f"Roll #{result['roll_number']}: Quest Complete!", description)
        elif result["success"]:
            embed = EmbedBuilder.success(f"Roll #{result['roll_number']}: Success", description)
        else:
            embed = EmbedBuilder.info(f"Roll #{result['roll_number']}", description)
        if roll.get("thumbnail_image"):
            embed.set_thumbnail(url=roll["thumbnail_image"])
        await self.send_embed(ctx, embed)

    @quest.command(name="status", aliases=["info"])
    async def quest_status(self, ctx: commands.Context, quest_id: str):
        """Show a quest and its participants."""
        quest = await self.run_command(ctx, "quest.status", self.services.quest.get_quest(quest_id.upper()))
        if quest is not None:
            await self.send_embed(ctx, EmbedBuilder.quest_status(quest))

    @quest.command(name="reward")
    @commands.has_permissions(manage_guild=True)
    async def quest_reward(
        self, ctx: commands.Context, quest_id: str, member: discord.Member, tokens: Optional[int] = None
    ):
        """Pay a completed participant."""
        result = await self.run_command(
            ctx,
            "quest.reward",
            self.services.quest.reward_participant(quest_id.upper(), str(member.id), tokens),
        )
        if result is None:
            return
        description = f"{member.mention} received **{result['tokens']:,}** tokens."
        if result.get("item_reward"):
            description += f"\nItem reward: **{result['item_reward']}**"
        await self.send_success(
            ctx, "Quest Reward", description, footer=f"New balance: {result['new_token_balance']:,}"
        )

    @quest.command(name="disqualify")
    @commands.has_permissions(manage_guild=True)
    async def quest_disqualify(
        self, ctx: commands.Context, quest_id: str, member: discord.Member, *, reason: str
    ):
        """Disqualify a participant."""
        participant = await self.run_command(
            ctx,
            "quest.disqualify",
            self.services.quest.disqualify(quest_id.upper(), str(member.id), reason),
        )
        if participant is not None:
            await self.send_success(
                ctx, "Participant Disqualified", f"**{participant['character_name']}**: {reason}"
            )

    @quest.command(name="complete")
    @commands.has_permissions(manage_guild=True)
    async def quest_complete(self, ctx: commands.Context, quest_id: str):
        """Close a quest by hand."""
        quest = await self.run_command(
            ctx, "quest.complete", self.services.quest.complete_quest(quest_id.upper())
        )
        if quest is not None:
            await self.send_success(ctx, "Quest Completed", f"**{quest['title']}** is now closed.")


async def setup(bot: commands.Bot):
    await bot.add_cog(QuestCog(bot))
