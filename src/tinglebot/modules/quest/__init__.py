"""
Quest Module
============

Services:
- QuestService: Quest participation, submissions and completion
"""

from .service import QuestService

__all__ = [
    "QuestService",
]
