"""
Character commands: registration, profile, travel and moderator recovery.
"""

from __future__ import annotations

from typing import Optional

import discord
from discord.ext import commands

from tinglebot.bot.base_cog import BaseCog
from tinglebot.ui.embed_builder import EmbedBuilder, hearts_bar


def character_embed(character) -> discord.Embed:
    state = "KO'd" if character["ko"] else "Healthy"
    if character["blighted"]:
        state += f", blight stage {character['blight_stage']}"
    embed = EmbedBuilder.primary(
        character["name"],
        f"**Job:** {character['job'] or 'None'}\n"
        f"**Home:** {character['home_village']}\n"
        f"**Currently in:** {character['current_village']}\n"
        f"**Hearts:** {hearts_bar(character['current_hearts'], character['max_hearts'])}\n"
        f"**Stamina:** {character['current_stamina']}/{character['max_stamina']}",
        footer=state,
    )
    return embed


class CharacterCog(BaseCog):
    """
    Characters.

    Commands:
        character                               - List your characters
        character create <name> <village> [job]
        character info <name>
        character travel <name> <village>
        character revive <member> <name>        - Moderators
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)

    @commands.group(name="character", aliases=["char"], invoke_without_command=True, case_insensitive=True)
    async def character(self, ctx: commands.Context):
        """List your characters."""
        characters = await self.services.character.list_characters(str(ctx.author.id))
        if not characters:
            await self.send_info(
                ctx,
                "Characters",
                f"You have no characters yet. Use `{ctx.clean_prefix}character create`.",
            )
            return
        lines = [
            f"**{c['name']}** - {c['job'] or 'no job'}, in {c['current_village']}"
            + (" (KO)" if c["ko"] else "")
            for c in characters
        ]
        await self.send_info(ctx, "Your Characters", "\n".join(lines))

    @character.command(name="create")
    async def character_create(
        self, ctx: commands.Context, name: str, village: str, *, job: Optional[str] = None
    ):
        """Register a new character in their home village."""
        created = await self.run_command(
            ctx,
            "character.create",
            self.services.character.create_character(str(ctx.author.id), name, village, job=job),
        )
        if created is None:
            return
        self.log_command_use("character create", ctx.author.id, ctx.guild.id if ctx.guild else None, character_name=name)
        await self.send_embed(ctx, character_embed(created))

    @character.command(name="info")
    async def character_info(self, ctx: commands.Context, *, name: str):
        """Show one of your characters."""
        found = await self.run_command(
            ctx,
            "character.info",
            self.services.character.get_character_by_name(name, str(ctx.author.id)),
        )
        if found is not None:
            await self.send_embed(ctx, character_embed(found))

    @character.command(name="travel")
    async def character_travel(self, ctx: commands.Context, name: str, village: str):
        """Move a character to another village."""
        found = await self.run_command(
            ctx,
            "character.travel",
            self.services.character.get_character_by_name(name, str(ctx.author.id)),
        )
        if found is None:
            return
        moved = await self.run_command(
            ctx, "character.travel", self.services.character.move_to_village(found["id"], village)
        )
        if moved is not None:
            await self.send_success(
                ctx, "Travelled", f"**{moved['name']}** arrived in **{moved['current_village']}**."
            )

    @character.command(name="revive")
    @commands.has_permissions(manage_guild=True)
    async def character_revive(self, ctx: commands.Context, member: discord.Member, *, name: str):
        """Revive a KO'd character at full hearts."""
        found = await self.run_command(
            ctx,
            "character.revive",
            self.services.character.get_character_by_name(name, str(member.id)),
        )
        if found is None:
            return
        revived = await self.run_command(
            ctx, "character.revive", self.services.character.revive(found["id"])
        )
        if revived is not None:
            await self.send_success(ctx, "Revived", f"**{revived['name']}** is back on their feet.")


async def setup(bot: commands.Bot):
    await bot.add_cog(CharacterCog(bot))
