"""
Database Models

Feature models live next to their feature (features/strava/models.py)
and register themselves on the shared Base.
"""

from trainsync.models.base import Base

__all__ = ["Base"]
