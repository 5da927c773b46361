"""
Table roll commands: import tables from CSV attachments, roll them and
inspect their contents.
"""

from __future__ import annotations

from discord.ext import commands

from tinglebot.bot.base_cog import BaseCog
from tinglebot.ui.embed_builder import EmbedBuilder, EMBED_FIELD_VALUE_LIMIT, truncate_text

CSV_MAX_BYTES = 512 * 1024


class TableRollCog(BaseCog):
    """
    Weighted loot tables.

    Commands:
        tableroll                        - List active tables
        tableroll import <name>          - Create or replace a table from an attached CSV
        tableroll roll <name>
        tableroll info <name>
        tableroll disable <name>
    """

    def __init__(self, bot: commands.Bot):
        super().__init__(bot, self.__class__.__name__)

    @commands.group(name="tableroll", aliases=["tr"], invoke_without_command=True, case_insensitive=True)
    async def tableroll(self, ctx: commands.Context):
        """List active tables."""
        await self._list_tables(ctx)

    @tableroll.command(name="list")
    async def tableroll_list(self, ctx: commands.Context):
        """List active tables."""
        await self._list_tables(ctx)

    async def _list_tables(self, ctx: commands.Context):
        tables = await self.services.table_roll.list_tables()
        if not tables:
            await self.send_info(ctx, "Table Rolls", "No tables have been created yet.")
            return
        lines = [
            f"**{t['name']}** - {t['entry_count']} entries, rolled {t['roll_count']} time(s)"
            for t in tables
        ]
        await self.send_info(ctx, "Table Rolls", "\n".join(lines))

    @tableroll.command(name="import", aliases=["create"])
    @commands.has_permissions(manage_guild=True)
    async def tableroll_import(self, ctx: commands.Context, *, name: str):
        """Create or replace a table from the attached CSV file."""
        if not ctx.message.attachments:
            await self.send_error(
                ctx,
                "No File",
                "Attach a CSV file with the table entries.",
                "Columns: Weight, Flavor, Item, thumbnail image, category, rarity",
            )
            return
        attachment = ctx.message.attachments[0]
        if attachment.size > CSV_MAX_BYTES:
            await self.send_error(ctx, "File Too Large", "Table CSVs are limited to 512 KB.")
            return

        csv_text = (await attachment.read()).decode("utf-8-sig", errors="replace")
        result = await self.run_command(
            ctx,
            "tableroll.import",
            self.services.table_roll.import_csv(name, csv_text, created_by=str(ctx.author.id)),
        )
        if result is None:
            return

        verb = "Created" if result["created"] else "Updated"
        description = f"**{result['name']}** now has **{result['entry_count']}** entries."
        if result["errors"]:
            shown = "\n".join(result["errors"][:5])
            description += f"\n\nSkipped {len(result['errors'])} row(s):\n{shown}"
        self.log_command_use("tableroll import", ctx.author.id, ctx.guild.id if ctx.guild else None, table=name)
        await self.send_success(ctx, f"Table {verb}", description)

    @tableroll.command(name="roll")
    async def tableroll_roll(self, ctx: commands.Context, *, name: str):
        """Roll a table."""
        result = await self.run_command(ctx, "tableroll.roll", self.services.table_roll.roll(name))
        if result is None:
            return
        description = result.get("flavor") or ""
        embed = EmbedBuilder.primary(
            f"{result['table']}: {result['item']}",
            description,
            footer=f"Entry {result['index']} - {result['rarity']}",
        )
        if result.get("thumbnail_image"):
            embed.set_thumbnail(url=result["thumbnail_image"])
        await self.send_embed(ctx, embed)

    @tableroll.command(name="info")
    async def tableroll_info(self, ctx: commands.Context, *, name: str):
        """Show a table's entries and statistics."""
        table = await self.run_command(ctx, "tableroll.info", self.services.table_roll.get_table(name))
        if table is None:
            return
        embed = EmbedBuilder.info(
            table["name"],
            f"**Entries:** {table['entry_count']}\n"
            f"**Total weight:** {table['total_weight']}\n"
            f"**Rolls:** {table['roll_count']}",
        )
        entries = "\n".join(
            f"{e['weight']}x **{e['item']}** ({e['rarity']})" for e in table["entries"]
        )
        if entries:
            embed.add_field(
                name="Entries", value=truncate_text(entries, EMBED_FIELD_VALUE_LIMIT), inline=False
            )
        await self.send_embed(ctx, embed)

    @tableroll.command(name="disable")
    @commands.has_permissions(manage_guild=True)
    async def tableroll_disable(self, ctx: commands.Context, *, name: str):
        """Deactivate a table so it can no longer be rolled."""
        result = await self.run_command(
            ctx, "tableroll.disable", self.services.table_roll.deactivate_table(name)
        )
        if result is not None:
            await self.send_success(ctx, "Table Disabled", f"**{result['name']}** can no longer be rolled.")


async def setup(bot: commands.Bot):
    await bot.add_cog(TableRollCog(bot))
