"""
Leveling Module
===============

Services:
- LevelingService: XP, level exchange, birthday and boost rewards
"""

from .service import LevelingService

__all__ = [
    "LevelingService",
]
