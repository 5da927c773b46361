"""
Factory for standardized Discord embeds across Tinglebot.

Features:
- Consistent branding and colors (from Config)
- Automatic Discord limits enforcement
- Raid and quest builders for the recurring status cards
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import discord

from tinglebot.core.config.config import Config

EMBED_TITLE_LIMIT = 256
EMBED_DESCRIPTION_LIMIT = 4096
EMBED_FOOTER_LIMIT = 2048
EMBED_FIELD_VALUE_LIMIT = 1024


def truncate_text(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def hearts_bar(current: int, maximum: int, width: int = 10) -> str:
    """Text bar for a heart pool, e.g. ``[#######---] 7/10``."""
    maximum = max(1, maximum)
    filled = max(0, min(width, round(width * current / maximum)))
    return f"[{'#' * filled}{'-' * (width - filled)}] {current}/{maximum}"


class EmbedBuilder:
    """
    Factory for standardized Discord embeds.

    All embeds include a timestamp and respect Discord limits.
    """

    @staticmethod
    def _base_embed(
        title: str,
        description: str,
        color: int,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        embed = discord.Embed(
            title=truncate_text(title, EMBED_TITLE_LIMIT),
            description=truncate_text(description, EMBED_DESCRIPTION_LIMIT),
            color=color,
            timestamp=datetime.now(timezone.utc),
        )
        if footer:
            embed.set_footer(text=truncate_text(footer, EMBED_FOOTER_LIMIT))
        return embed

    # =========================================================================
    # CORE TYPES
    # =========================================================================

    @staticmethod
    def primary(title: str, description: str, footer: Optional[str] = None) -> discord.Embed:
        """Default embed for neutral/system messages."""
        return EmbedBuilder._base_embed(title, description, Config.EMBED_COLOR_PRIMARY, footer)

    @staticmethod
    def success(title: str, description: str, footer: Optional[str] = None) -> discord.Embed:
        """Positive actions (rewards, victories, confirmations)."""
        return EmbedBuilder._base_embed(title, description, Config.EMBED_COLOR_SUCCESS, footer)

    @staticmethod
    def error(title: str, description: str, help_text: Optional[str] = None) -> discord.Embed:
        """
        Error embeds with optional help text.

        Args:
            title: Error title
            description: Error description
            help_text: Optional helpful suggestion for user
        """
        desc = description
        if help_text:
            desc += f"\n\n**Help:** {help_text}"
        return EmbedBuilder._base_embed(title, desc, Config.EMBED_COLOR_ERROR)

    @staticmethod
    def warning(title: str, description: str, footer: Optional[str] = None) -> discord.Embed:
        """For recoverable issues or alerts."""
        return EmbedBuilder._base_embed(title, description, Config.EMBED_COLOR_WARNING, footer)

    @staticmethod
    def info(title: str, description: str, footer: Optional[str] = None) -> discord.Embed:
        """Informational messages."""
        return EmbedBuilder._base_embed(title, description, Config.EMBED_COLOR_INFO, footer)

    # =========================================================================
    # GAME-SPECIFIC TYPES
    # =========================================================================

    @staticmethod
    def raid_status(raid: Dict[str, Any]) -> discord.Embed:
        """Monster hearts, participants and whose turn it is."""
        monster = raid["monster"]
        embed = EmbedBuilder.primary(
            title=f"Raid {raid['raid_id']}: {monster['name']} (Tier {monster['tier']})",
            description=(
                f"**Village:** {raid['village']}\n"
                f"**Status:** {raid['status']}\n"
                f"**Hearts:** {hearts_bar(monster['current_hearts'], monster['max_hearts'])}"
            ),
            footer=f"Use {Config.COMMAND_PREFIX}raid attack {raid['raid_id']} <character> on your turn",
        )
        if monster.get("image"):
            embed.set_thumbnail(url=monster["image"])

        participants: List[Dict[str, Any]] = raid.get("participants", [])
        if participants:
            current = raid.get("current_turn", 0)
            lines = []
            for index, p in enumerate(participants):
                marker = ">" if index == current % len(participants) else " "
                state = " (KO)" if p.get("is_ko") else ""
                lines.append(f"`{marker}` **{p['name']}**{state} - {p['damage']} dmg")
            embed.add_field(
                name=f"Participants ({len(participants)})",
                value=truncate_text("\n".join(lines), EMBED_FIELD_VALUE_LIMIT),
                inline=False,
            )
        return embed

    @staticmethod
    def quest_status(quest: Dict[str, Any]) -> discord.Embed:
        embed = EmbedBuilder.primary(
            title=f"{quest['title']} ({quest['quest_id']})",
            description=quest.get("description") or "No description.",
            footer=f"{quest['quest_type']} quest - {quest['status']}",
        )
        embed.add_field(name="Location", value=quest.get("location") or "Anywhere", inline=True)
        embed.add_field(name="Time Limit", value=quest.get("time_limit") or "None", inline=True)
        embed.add_field(name="Reward", value=f"{quest.get('token_reward', 0):,} tokens", inline=True)

        participants = quest.get("participants", {})
        if participants:
            lines = [
                f"**{p['character_name']}** - {p['progress']}"
                for p in participants.values()
            ]
            embed.add_field(
                name=f"Participants ({len(participants)})",
                value=truncate_text("\n".join(lines), EMBED_FIELD_VALUE_LIMIT),
                inline=False,
            )
        return embed
