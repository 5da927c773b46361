"""Tinglebot: Discord bot for raids, quests, table rolls and relics."""

__version__ = "1.0.0"
