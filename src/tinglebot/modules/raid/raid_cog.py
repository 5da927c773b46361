"""
Raid commands.

Thin Discord layer over RaidService: starting, joining and attacking, the
per-raid turn timer that skips idle participants, and a background loop that
fails raids past their time limit.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import discord
from discord.ext import commands, tasks

from tinglebot.bot.base_cog import BaseCog, format_duration
from tinglebot.core.config.config import Config
from tinglebot.ui.embed_builder import EmbedBuilder, hearts_bar


class RaidCog(BaseCog):
    """
    Village raids.

    Commands:
        raid                               - List active raids
        raid start <village> <tier> <hearts> <monster>
        raid forcestart ...                - Start ignoring the global cooldown
        raid join <raid_id> <character>
        raid attack <raid_id> <character>  - Take your turn
        raid leave <raid_id> <character>
        raid status <raid_id>
        raid cooldown
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)
        self._turn_timers: Dict[str, asyncio.Task] = {}
        self._revive_listener: Optional[str] = None
        self.cleanup_expired.change_interval(seconds=Config.RAID_CLEANUP_INTERVAL_SECONDS)

    async def cog_load(self) -> None:
        self._revive_listener = self.bot.event_bus.subscribe(
            "character.revived", self._on_character_revived
        )
        self.cleanup_expired.start()

    async def cog_unload(self) -> None:
        if self._revive_listener is not None:
            self.bot.event_bus.unsubscribe("character.revived", self._revive_listener)
        self.cleanup_expired.cancel()
        for task in self._turn_timers.values():
            task.cancel()
        self._turn_timers.clear()

    # ========================================================================
    # TURN TIMER
    # ========================================================================

    def _schedule_turn_timer(
        self, raid_id: str, character_id: Optional[int], channel: discord.abc.Messageable
    ) -> None:
        """(Re)arm the idle timer for whoever holds the turn now."""
        existing = self._turn_timers.pop(raid_id, None)
        if existing is not None and existing is not asyncio.current_task():
            existing.cancel()
        if character_id is None:
            return
        self._turn_timers[raid_id] = asyncio.create_task(
            self._turn_timeout(raid_id, character_id, channel),
            name=f"raid-turn-{raid_id}",
        )

    def _forget_timer(self, raid_id: str) -> None:
        """Drop the entry for the running timer only if it is still the registered one."""
        if self._turn_timers.get(raid_id) is asyncio.current_task():
            del self._turn_timers[raid_id]

    def _cancel_turn_timer(self, raid_id: str) -> None:
        task = self._turn_timers.pop(raid_id, None)
        if task is not None:
            task.cancel()

    async def _on_character_revived(self, payload: Dict[str, Any]) -> None:
        await self.services.raid.restore_participant(payload["character_id"])

    async def _turn_timeout(
        self, raid_id: str, character_id: int, channel: discord.abc.Messageable
    ) -> None:
        await asyncio.sleep(self.services.raid.turn_skip_seconds)
        try:
            result = await self.services.raid.skip_turn(raid_id, expected_character_id=character_id)
        except Exception as exc:
            self.log_cog_error("turn_timeout", exc, raid_id=raid_id)
            self._forget_timer(raid_id)
            return

        if not result["skipped"]:
            self._forget_timer(raid_id)
            return

        if result["removed"]:
            text = (
                f"**{result['character_name']}** missed a second turn and was removed from "
                f"raid `{raid_id}` without loot."
            )
        else:
            text = f"**{result['character_name']}** took too long; their turn was skipped."
        next_user = result.get("next_user_id")
        if next_user:
            text += f"\n\n<@{next_user}>, it's your turn."

        try:
            await channel.send(embed=EmbedBuilder.warning("Turn Skipped", text))
        except discord.HTTPException as exc:
            self.logger.warning(f"Failed to announce skipped turn: {exc}")

        self._schedule_turn_timer(raid_id, result.get("next_character_id"), channel)

    # ========================================================================
    # BACKGROUND CLEANUP
    # ========================================================================

    @tasks.loop(seconds=300)
    async def cleanup_expired(self):
        try:
            failed = await self.services.raid.cleanup_expired_raids()
        except Exception as exc:
            self.log_cog_error("cleanup_expired", exc)
            return
        if failed:
            self.logger.info(f"Failed {failed} expired raid(s)", extra={"failed": failed})

    @cleanup_expired.before_loop
    async def _before_cleanup(self):
        await self.bot.wait_until_ready()

    # ========================================================================
    # COMMANDS
    # ========================================================================

    async def _character_id(self, ctx: commands.Context, character_name: str) -> Optional[int]:
        character = await self.run_command(
            ctx,
            "raid.resolve_character",
            self.services.character.get_character_by_name(character_name, str(ctx.author.id)),
        )
        return character["id"] if character else None

    @commands.group(name="raid", invoke_without_command=True, case_insensitive=True)
    async def raid(self, ctx: commands.Context):
        """List active raids."""
        raids = await self.services.raid.list_active_raids()
        if not raids:
            await self.send_info(ctx, "Raids", "No raids are active right now.")
            return
        lines = [
            f"`{r['raid_id']}` **{r['monster']['name']}** in {r['village']} - "
            f"{hearts_bar(r['monster']['current_hearts'], r['monster']['max_hearts'])}"
            for r in raids
        ]
        await self.send_info(ctx, "Active Raids", "\n".join(lines))

    async def _start(
        self,
        ctx: commands.Context,
        village: str,
        tier: int,
        hearts: int,
        monster: str,
        skip_cooldown: bool,
    ):
        raid = await self.run_command(
            ctx,
            "raid.start",
            self.services.raid.start_raid(
                village,
                {"name": monster, "tier": tier, "hearts": hearts},
                thread_id=str(ctx.channel.id),
                channel_id=str(getattr(ctx.channel, "parent_id", None) or ctx.channel.id),
                skip_cooldown=skip_cooldown,
            ),
        )
        if raid is None:
            return
        self.log_command_use("raid start", ctx.author.id, ctx.guild.id if ctx.guild else None, raid_id=raid["raid_id"])
        await self.send_embed(ctx, EmbedBuilder.raid_status(raid))

    @raid.command(name="start")
    @commands.has_permissions(manage_guild=True)
    async def raid_start(self, ctx: commands.Context, village: str, tier: int, hearts: int, *, monster: str):
        """Start a raid against a monster (moderators)."""
        await self._start(ctx, village, tier, hearts, monster, skip_cooldown=False)

    @raid.command(name="forcestart", hidden=True)
    @commands.has_permissions(administrator=True)
    async def raid_forcestart(self, ctx: commands.Context, village: str, tier: int, hearts: int, *, monster: str):
        """Start a raid ignoring the global cooldown (administrators)."""
        await self._start(ctx, village, tier, hearts, monster, skip_cooldown=True)

    @raid.command(name="join")
    async def raid_join(self, ctx: commands.Context, raid_id: str, *, character: str):
        """Join an active raid with one of your characters."""
        character_id = await self._character_id(ctx, character)
        if character_id is None:
            return
        raid = await self.run_command(
            ctx, "raid.join", self.services.raid.join_raid(raid_id, character_id)
        )
        if raid is None:
            return

        if len(raid["participants"]) == 1 or raid["current_character_id"] == character_id:
            self._schedule_turn_timer(raid["raid_id"], raid["current_character_id"], ctx.channel)
        await self.send_success(
            ctx,
            "Joined Raid",
            f"**{character}** joined the fight against **{raid['monster']['name']}**.",
            footer=f"{len(raid['participants'])} participant(s)",
        )

    @raid.command(name="attack", aliases=["turn", "roll"])
    async def raid_attack(self, ctx: commands.Context, raid_id: str, *, character: str):
        """Take your turn in a raid."""
        character_id = await self._character_id(ctx, character)
        if character_id is None:
            return
        result: Optional[Dict[str, Any]] = await self.run_command(
            ctx, "raid.attack", self.services.raid.process_turn(raid_id, character_id)
        )
        if result is None:
            return

        raid = result["raid"]
        monster = raid["monster"]
        description = (
            f"{result['message']}\n\n"
            f"**Roll:** {result['roll']} (adjusted {result['adjusted_roll']})\n"
            f"**{monster['name']}:** {hearts_bar(monster['current_hearts'], monster['max_hearts'])}"
        )
        if result["character_ko"]:
            description += f"\n\n**{character}** has been knocked out!"

        if result["monster_defeated"]:
            self._cancel_turn_timer(raid["raid_id"])
            embed = EmbedBuilder.success(f"{monster['name']} Defeated!", description)
        elif result["party_wiped"]:
            self._cancel_turn_timer(raid["raid_id"])
            description += "\n\nEvery raider has fallen. The raid is lost."
            embed = EmbedBuilder.error(f"Raid {raid['raid_id']} Failed", description)
        else:
            if result["next_user_id"]:
                description += f"\n\n<@{result['next_user_id']}>, it's your turn."
            # A mod strike leaves the turn holder's timer running.
            if result["turn_advanced"]:
                self._schedule_turn_timer(raid["raid_id"], result["next_character_id"], ctx.channel)
            embed = EmbedBuilder.primary(f"Raid {raid['raid_id']}", description)

        self.log_command_use("raid attack", ctx.author.id, ctx.guild.id if ctx.guild else None, raid_id=raid_id)
        await self.send_embed(ctx, embed)

    @raid.command(name="leave")
    async def raid_leave(self, ctx: commands.Context, raid_id: str, *, character: str):
        """Leave a raid. Damage already dealt still counts for loot."""
        character_id = await self._character_id(ctx, character)
        if character_id is None:
            return
        result = await self.run_command(
            ctx, "raid.leave", self.services.raid.leave_raid(raid_id, character_id)
        )
        if result is None:
            return
        raid = result["raid"]
        self._schedule_turn_timer(raid["raid_id"], raid["current_character_id"], ctx.channel)
        note = (
            "Damage already dealt still counts for loot."
            if result["loot_eligible"]
            else "No damage was dealt, so no loot."
        )
        await self.send_success(ctx, "Left Raid", f"**{character}** left raid `{raid['raid_id']}`. {note}")

    @raid.command(name="status", aliases=["info"])
    async def raid_status(self, ctx: commands.Context, raid_id: str):
        """Show a raid's monster and turn order."""
        raid = await self.run_command(ctx, "raid.status", self.services.raid.get_raid(raid_id))
        if raid is not None:
            await self.send_embed(ctx, EmbedBuilder.raid_status(raid))

    @raid.command(name="cooldown")
    async def raid_cooldown(self, ctx: commands.Context):
        """Time until the next raid can start."""
        remaining = await self.services.raid.get_cooldown_remaining()
        if remaining <= 0:
            await self.send_info(ctx, "Raid Cooldown", "A new raid can start now.")
        else:
            await self.send_info(
                ctx, "Raid Cooldown", f"The next raid can start in **{format_duration(remaining)}**."
            )


async def setup(bot: commands.Bot):
    await bot.add_cog(RaidCog(bot))
