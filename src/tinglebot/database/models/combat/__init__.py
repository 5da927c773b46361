"""
Combat ORM models.

Exports:
- Raid
"""

from .raid import Raid

__all__ = ["Raid"]
