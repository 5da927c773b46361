"""
Core ORM models.

Exports:
- Character
- User
"""

from .character import Character
from .user import User

__all__ = ["Character", "User"]
