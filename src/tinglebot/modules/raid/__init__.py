"""
Raid Module
===========

Services:
- RaidService: Raid lifecycle and turn accounting
"""

from .service import RaidService

__all__ = [
    "RaidService",
]
