"""
Shared utilities (NOT business logic).

Usage:
    from trainsync.shared import BaseRepository
"""
from .repository import BaseRepository

__all__ = [
    "BaseRepository",
]
