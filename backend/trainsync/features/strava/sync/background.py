"""
Background sync runner.

Queue-driven incremental sync. Request handlers and schedulers call
`trigger_incremental_sync` instead of starting syncs as a side effect of
rendering pages.
"""

import asyncio
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Optional

from ..client import rate_limiter
from ..exceptions import StravaError
from ..repository import StravaAccountRepository, SyncStateRepository
from .config import SyncConfig
from .service import StravaSyncService, SyncResult

logger = logging.getLogger(__name__)


# =============================================================================
# Sync Queue Manager
# =============================================================================

class SyncQueueManager:
    """
    Manages the queue of users to sync.

    Uses a simple deque-based queue with priority for:
    1. Explicitly triggered users (pushed to the front)
    2. Users whose last sync is oldest
    """

    def __init__(self):
        self._queue: deque[str] = deque()  # user_ids
        self._in_progress: set[str] = set()
        self._lock = asyncio.Lock()

    async def add_user(self, user_id: str, priority: bool = False):
        """Add user to sync queue."""
        async with self._lock:
            if user_id not in self._queue and user_id not in self._in_progress:
                if priority:
                    self._queue.appendleft(user_id)
                else:
                    self._queue.append(user_id)
                logger.debug(f"Added user {user_id} to sync queue (priority={priority})")

    async def get_next_users(self, count: int) -> list[str]:
        """Get next users to sync."""
        async with self._lock:
            users = []
            for _ in range(min(count, len(self._queue))):
                user_id = self._queue.popleft()
                self._in_progress.add(user_id)
                users.append(user_id)
            return users

    async def mark_complete(self, user_id: str):
        """Mark user sync as complete."""
        async with self._lock:
            self._in_progress.discard(user_id)

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def in_progress_count(self) -> int:
        return len(self._in_progress)


# Global queue instance
sync_queue = SyncQueueManager()


# =============================================================================
# Background Sync Runner
# =============================================================================

class BackgroundSyncRunner:
    """
    Background task runner for incremental sync.

    Call `start()` to begin background syncing.
    Call `stop()` to gracefully stop.

    Usage:
        runner = BackgroundSyncRunner()
        await runner.start(db_factory)
        # ... later ...
        await runner.stop()
    """

    def __init__(
        self,
        queue: Optional[SyncQueueManager] = None,
        db_factory=None,
        service_factory=StravaSyncService
    ):
        self.queue = queue or sync_queue
        self._service_factory = service_factory
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._db_factory = db_factory

    @property
    def running(self) -> bool:
        return self._running

    async def start(self, db_factory):
        """Start background sync loop."""
        if self._running:
            return

        self._running = True
        self._db_factory = db_factory
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Background sync started")

    async def stop(self):
        """Stop background sync loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        logger.info("Background sync stopped")

    async def _run_loop(self):
        """Main sync loop."""
        while self._running:
            try:
                await self.process_batch()
            except Exception as e:
                logger.exception(f"Sync batch error: {e}")

            # Wait before next batch
            await asyncio.sleep(SyncConfig.BACKGROUND_SYNC_INTERVAL_SECONDS)

    def _session_factory(self):
        if self._db_factory is None:
            from trainsync.db.session import AsyncSessionLocal
            self._db_factory = AsyncSessionLocal
        return self._db_factory

    async def run_user(self, user_id: str) -> SyncResult:
        """Run one incremental sync in its own session."""
        async with self._session_factory()() as db:
            return await self._service_factory(db).incremental(user_id)

    async def process_batch(self) -> int:
        """
        Process one batch of queued users.

        Returns:
            Number of users processed
        """
        user_ids = await self.queue.get_next_users(SyncConfig.USERS_PER_BATCH)

        if not user_ids:
            await self.refresh_queue()
            return 0

        logger.info(f"Processing sync batch: {len(user_ids)} users")

        for user_id in user_ids:
            try:
                result = await self.run_user(user_id)
                logger.debug(f"Sync result for {user_id}: {result.to_dict()}")
                await asyncio.sleep(SyncConfig.USER_DELAY_SECONDS)
            except StravaError as e:
                # Already logged and recorded in sync state by the service
                logger.warning(f"Background sync skipped user {user_id}: {e}")
            finally:
                await self.queue.mark_complete(user_id)

        return len(user_ids)

    async def refresh_queue(self):
        """Queue linked users whose last sync is older than the minimum interval."""
        async with self._session_factory()() as db:
            user_ids = await StravaAccountRepository(db).list_user_ids()
            states = SyncStateRepository(db)

            cutoff = datetime.utcnow() - timedelta(
                hours=SyncConfig.MIN_SYNC_INTERVAL_HOURS
            )

            for user_id in user_ids:
                state = await states.get_by_user_id(user_id)

                if not state:
                    await self.queue.add_user(user_id, priority=True)
                elif not state.last_sync_start or state.last_sync_start < cutoff:
                    await self.queue.add_user(user_id)

            logger.info(f"Refreshed sync queue: {self.queue.queue_size} users")


# Global runner instance
background_sync = BackgroundSyncRunner()


# =============================================================================
# Helper Functions
# =============================================================================

async def trigger_incremental_sync(
    user_id: str,
    wait: bool = False,
    runner: Optional[BackgroundSyncRunner] = None
) -> Optional[SyncResult]:
    """
    Request an incremental sync for a user.

    Args:
        user_id: User ID
        wait: Run now and return the result instead of queueing
        runner: Runner to use (defaults to the global one)

    Returns:
        SyncResult when wait=True, otherwise None

    Raises:
        StravaError: When wait=True and the sync fails
    """
    runner = runner or background_sync
    if wait:
        return await runner.run_user(user_id)

    await runner.queue.add_user(user_id, priority=True)
    logger.info(f"Added user {user_id} to sync queue")
    return None


def get_sync_stats() -> dict:
    """Get current sync statistics."""
    return {
        "queue_size": sync_queue.queue_size,
        "in_progress": sync_queue.in_progress_count,
        "running": background_sync.running,
        "rate_limit": rate_limiter.get_usage(),
    }
