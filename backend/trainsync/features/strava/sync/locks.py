"""
Per-user serialization of sync runs.

Two runs for the same user (say a manual backfill and the background
incremental) would otherwise both read and write the watermark.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class UserSyncLocks:
    """
    One asyncio.Lock per user id.

    A lock exists only while some run holds or waits for it, so the registry
    stays bounded by the number of concurrent runs.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}  # holders + waiters per user

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, user_id: str) -> bool:
        lock = self._locks.get(user_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, user_id: str) -> AsyncIterator[None]:
        """Wait for and hold the user's sync lock."""
        lock = self._locks.setdefault(user_id, asyncio.Lock())
        self._users[user_id] = self._users.get(user_id, 0) + 1
        if lock.locked():
            logger.info(f"Sync already running for user {user_id}, waiting")
        try:
            async with lock:
                yield
        finally:
            self._users[user_id] -= 1
            if not self._users[user_id]:
                del self._users[user_id]
                del self._locks[user_id]


# Global lock registry
user_sync_locks = UserSyncLocks()
