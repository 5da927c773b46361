"""
Character Module
================

Services:
- CharacterService: Character lookup, travel, hearts and stamina
"""

from .service import CharacterService

__all__ = [
    "CharacterService",
]
