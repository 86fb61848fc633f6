"""
Strava sync services.

Provides:
- StravaSyncService: Main sync orchestrator
- ActivitySyncService: Activity and stream persistence
- BackgroundSyncRunner: Background sync task runner
"""

from .service import StravaSyncService, SyncResult, RefreshResult, StopReason
from .activities import ActivitySyncService, UpsertOutcome
from .locks import UserSyncLocks, user_sync_locks
from .background import (
    BackgroundSyncRunner,
    SyncQueueManager,
    background_sync,
    sync_queue,
    trigger_incremental_sync,
    get_sync_stats,
)
from .config import SyncConfig

__all__ = [
    # Services
    "StravaSyncService",
    "ActivitySyncService",
    "SyncResult",
    "RefreshResult",
    "StopReason",
    "UpsertOutcome",
    # Locks
    "UserSyncLocks",
    "user_sync_locks",
    # Background
    "BackgroundSyncRunner",
    "SyncQueueManager",
    "background_sync",
    "sync_queue",
    "trigger_incremental_sync",
    "get_sync_stats",
    # Config
    "SyncConfig",
]
