"""
Relic Module
============

Services:
- RelicService: Relic discovery, appraisal and archive
"""

from .service import RelicService

__all__ = [
    "RelicService",
]
