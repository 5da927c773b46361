"""
Relic commands: record a find, request and perform appraisals, and archive
appraised relics.
"""

from __future__ import annotations

from typing import Optional

from discord.ext import commands

from tinglebot.bot.base_cog import BaseCog
from tinglebot.domain.models.relic import is_npc_appraiser
from tinglebot.ui.embed_builder import EmbedBuilder


class RelicCog(BaseCog):
    """
    Relics.

    Commands:
        relic info <relic_id>
        relic list <character>
        relic archived
        relic discover <character> <name>              - Moderators record a find
        relic request <relic_id> <appraiser|NPC> [fee]
        relic appraise <relic_id> <character|NPC>
        relic archive <relic_id> <image_url>
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)

    async def _owns_character(self, ctx: commands.Context, name: str) -> bool:
        character = await self.run_command(
            ctx,
            "relic.resolve_character",
            self.services.character.get_character_by_name(name, str(ctx.author.id)),
        )
        return character is not None

    @commands.group(name="relic", invoke_without_command=True, case_insensitive=True)
    async def relic(self, ctx: commands.Context):
        await self.send_info(
            ctx, "Relics", f"Use `{ctx.clean_prefix}help relic` to see the relic commands."
        )

    @relic.command(name="info")
    async def relic_info(self, ctx: commands.Context, relic_id: str):
        """Show a relic."""
        relic = await self.run_command(ctx, "relic.info", self.services.relic.get_relic(relic_id))
        if relic is None:
            return
        description = (
            f"**Status:** {relic['status']}\n"
            f"**Found by:** {relic['discovered_by']}"
            + (f" at {relic['location_found']}" if relic.get("location_found") else "")
        )
        if relic.get("appraised_by"):
            description += f"\n**Appraised by:** {relic['appraised_by']}"
        if relic.get("appraisal_description"):
            description += f"\n\n{relic['appraisal_description']}"
        embed = EmbedBuilder.info(f"{relic['name']} ({relic['relic_id']})", description)
        if relic.get("image_url"):
            embed.set_image(url=relic["image_url"])
        await self.send_embed(ctx, embed)

    @relic.command(name="list")
    async def relic_list(self, ctx: commands.Context, *, character: str):
        """Relics found by a character."""
        relics = await self.services.relic.list_for_character(character)
        if not relics:
            await self.send_info(ctx, "Relics", f"**{character}** has not found any relics.")
            return
        lines = [f"`{r['relic_id']}` **{r['name']}** - {r['status']}" for r in relics]
        await self.send_info(ctx, f"Relics found by {character}", "\n".join(lines))

    @relic.command(name="archived")
    async def relic_archived(self, ctx: commands.Context):
        """Relics on display in the archive."""
        relics = await self.services.relic.list_archived()
        if not relics:
            await self.send_info(ctx, "Relic Archive", "The archive is empty.")
            return
        lines = [f"`{r['relic_id']}` **{r['name']}** - found by {r['discovered_by']}" for r in relics]
        await self.send_info(ctx, "Relic Archive", "\n".join(lines))

    @relic.command(name="discover")
    @commands.has_permissions(manage_guild=True)
    async def relic_discover(
        self, ctx: commands.Context, character: str, *, name: str
    ):
        """Record a relic found during exploration."""
        relic = await self.run_command(
            ctx, "relic.discover", self.services.relic.discover(name, character)
        )
        if relic is not None:
            await self.send_success(
                ctx,
                "Relic Discovered",
                f"**{character}** found **{relic['name']}** (`{relic['relic_id']}`).",
                footer="It must be appraised before it deteriorates.",
            )

    @relic.command(name="request", aliases=["appraise-request"])
    async def relic_request(
        self, ctx: commands.Context, relic_id: str, appraiser: str, fee: int = 0
    ):
        """Ask a character, or the NPC, to appraise your relic."""
        relic = await self.run_command(
            ctx,
            "relic.request",
            self.services.relic.request_appraisal(relic_id, appraiser, str(ctx.author.id), fee),
        )
        if relic is not None:
            await self.send_success(
                ctx,
                "Appraisal Requested",
                f"**{relic['requested_appraiser']}** has been asked to appraise `{relic['relic_id']}`.",
            )

    @relic.command(name="appraise")
    @commands.guild_only()
    async def relic_appraise(self, ctx: commands.Context, relic_id: str, *, appraiser: str):
        """Appraise a relic you were asked to look at."""
        npc = is_npc_appraiser(appraiser)
        if npc and not ctx.author.guild_permissions.manage_guild:
            await self.send_error(ctx, "Permission Denied", "Only moderators can appraise as the NPC.")
            return
        if not npc and not await self._owns_character(ctx, appraiser):
            return

        result = await self.run_command(
            ctx, "relic.appraise", self.services.relic.appraise(relic_id, appraiser)
        )
        if result is not None:
            await self.send_success(
                ctx,
                f"Appraised: {result['name']}",
                result["description"],
                footer=f"Appraised by {result['appraised_by']}",
            )

    @relic.command(name="archive")
    async def relic_archive(self, ctx: commands.Context, relic_id: str, image_url: Optional[str] = None):
        """Add an appraised relic to the archive with its artwork."""
        image_url = image_url or (ctx.message.attachments[0].url if ctx.message.attachments else None)
        if not image_url:
            await self.send_error(ctx, "Missing Image", "Attach the relic artwork or pass an image URL.")
            return
        relic = await self.run_command(
            ctx, "relic.archive", self.services.relic.archive(relic_id, image_url)
        )
        if relic is not None:
            await self.send_success(ctx, "Relic Archived", f"**{relic['name']}** is now on display.")


async def setup(bot: commands.Bot):
    await bot.add_cog(RelicCog(bot))
