"""
Table Roll Module
=================

Services:
- TableRollService: Weighted roll tables
"""

from .service import TableRollService

__all__ = [
    "TableRollService",
]
