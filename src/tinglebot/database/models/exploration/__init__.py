"""
Exploration ORM models.

Exports:
- Relic
- TableRoll
"""

from .relic import Relic
from .table_roll import TableRoll

__all__ = ["Relic", "TableRoll"]
