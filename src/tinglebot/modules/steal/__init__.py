"""
Steal Module
============

Services:
- StealService: Steal attempts and steal protection windows
"""

from .service import StealService

__all__ = [
    "StealService",
]
