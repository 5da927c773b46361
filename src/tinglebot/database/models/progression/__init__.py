"""
Progression ORM models.

Exports:
- Quest
"""

from .quest import Quest

__all__ = ["Quest"]
