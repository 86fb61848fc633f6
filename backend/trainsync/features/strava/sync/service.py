"""
Strava sync orchestration.

Drives token -> client -> upsert for the sync strategies:

1. Backfill: page through the whole history until Strava returns an
   empty page, then set the watermark to the newest stored activity.
2. Incremental: page newest-first and stop at the first activity not newer
   than the watermark (or after INCREMENTAL_MAX_PAGES pages).
3. Refresh / enrich: fetch detail + streams for activities that are
   missing locally or were never enriched, in bounded batches.

Run-level failures (backfill, incremental) abort the run and leave the
watermark untouched. Per-activity failures during refresh/enrich are logged
and counted; the batch continues.
"""

import asyncio
import logging
from dataclasses import dataclass, asdict
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trainsync.config import settings
from ..client import StravaClient
from ..exceptions import StravaError, PersistenceError
from ..repository import ActivityRepository, SyncStateRepository
from ..tokens import TokenManager
from .activities import ActivitySyncService, UpsertOutcome, parse_start_date
from .config import SyncConfig
from .locks import UserSyncLocks, user_sync_locks

logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    """Why a paging loop ended."""
    EXHAUSTED = "exhausted"     # Strava returned an empty page
    WATERMARK = "watermark"     # reached an already-synced activity
    PAGE_CAP = "page_cap"       # hit the page limit


@dataclass
class SyncResult:
    """Outcome of a paged sync run."""
    fetched: int = 0
    created: int = 0
    updated: int = 0
    pages: int = 0
    stopped: Optional[StopReason] = None

    def record(self, outcome: UpsertOutcome) -> None:
        self.fetched += 1
        if outcome is UpsertOutcome.CREATED:
            self.created += 1
        else:
            self.updated += 1

    def to_dict(self) -> dict:
        data = asdict(self)
        data["stopped"] = self.stopped.value if self.stopped else None
        return data


@dataclass
class RefreshResult:
    """Outcome of a refresh / enrichment batch."""
    checked: int = 0      # remote ids looked at (refresh only)
    missing: int = 0      # remote ids not stored locally (refresh only)
    batch: int = 0        # activities processed in this call
    detailed: int = 0
    streamed: int = 0
    failed: int = 0
    remaining: int = 0    # work left for the next call

    def to_dict(self) -> dict:
        return asdict(self)


class StravaSyncService:
    """
    Main sync orchestrator.

    Usage:
        service = StravaSyncService(db)
        result = await service.incremental(user_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        client: Optional[StravaClient] = None,
        tokens: Optional[TokenManager] = None,
        locks: Optional[UserSyncLocks] = None,
        page_delay: Optional[float] = None
    ):
        self.db = db
        self.client = client or StravaClient()
        self.tokens = tokens or TokenManager(db)
        self.locks = locks or user_sync_locks
        self.page_delay = (
            settings.strava_page_delay_seconds if page_delay is None else page_delay
        )
        self.activity_sync = ActivitySyncService(db)
        self.activities = ActivityRepository(db)
        self.sync_states = SyncStateRepository(db)

    async def _pause(self) -> None:
        """Throttle between consecutive list requests."""
        if self.page_delay > 0:
            await asyncio.sleep(self.page_delay)

    async def _run(
        self,
        user_id: str,
        label: str,
        run: Callable[[str], Awaitable]
    ):
        """Run one sync strategy under the user's lock, recording failures."""
        async with self.locks.hold(user_id):
            try:
                result = await run(user_id)
            except StravaError as e:
                logger.error(f"{label} failed for user {user_id}: {e}")
                await self.db.rollback()
                try:
                    await self.sync_states.record_error(user_id, f"{label}: {e}")
                    await self.db.commit()
                except PersistenceError as record_error:
                    logger.error(f"Could not record sync error: {record_error}")
                    await self.db.rollback()
                raise

        logger.info(f"{label} for user {user_id}: {result.to_dict()}")
        return result

    # =========================================================================
    # Backfill
    # =========================================================================

    async def backfill(self, user_id: str) -> SyncResult:
        """Import the user's full activity history."""
        return await self._run(user_id, "Backfill", self._backfill)

    async def _backfill(self, user_id: str) -> SyncResult:
        access_token = await self.tokens.get_valid_access_token(user_id)
        await self.sync_states.mark_started(user_id, datetime.utcnow())
        await self.db.commit()

        result = SyncResult()
        page = 1
        while True:
            batch = await self.client.list_activities(
                access_token, page, SyncConfig.ACTIVITIES_PER_PAGE
            )
            if not batch:
                result.stopped = StopReason.EXHAUSTED
                break

            for item in batch:
                result.record(await self.activity_sync.upsert_activity(user_id, item))
            await self.db.commit()

            result.pages += 1
            page += 1
            await self._pause()

        newest = await self.activities.newest_start_date(user_id)
        state = await self.sync_states.get_by_user_id(user_id)
        await self.sync_states.advance_watermark(
            state, newest, backfill_done=True, last_error=None
        )
        await self.db.commit()
        return result

    # =========================================================================
    # Incremental
    # =========================================================================

    async def incremental(self, user_id: str) -> SyncResult:
        """Fetch activities newer than the watermark."""
        return await self._run(user_id, "Incremental sync", self._incremental)

    async def _incremental(self, user_id: str) -> SyncResult:
        access_token = await self.tokens.get_valid_access_token(user_id)

        state = await self.sync_states.get_by_user_id(user_id)
        since = state.last_synced_at if state else None
        await self.sync_states.mark_started(user_id, datetime.utcnow())
        await self.db.commit()

        result = SyncResult()
        newest = since
        page = 1
        while page <= SyncConfig.INCREMENTAL_MAX_PAGES:
            batch = await self.client.list_activities(
                access_token, page, SyncConfig.ACTIVITIES_PER_PAGE
            )
            if not batch:
                result.stopped = StopReason.EXHAUSTED
                break

            for item in batch:
                start = parse_start_date(item.get("start_date"))
                # Lists are newest-first: everything from here on is synced
                if since and start and start <= since:
                    result.stopped = StopReason.WATERMARK
                    break
                result.record(await self.activity_sync.upsert_activity(user_id, item))
                if start and (newest is None or start > newest):
                    newest = start
            await self.db.commit()
            result.pages += 1

            if result.stopped:
                break
            page += 1
            await self._pause()
        else:
            result.stopped = StopReason.PAGE_CAP

        state = await self.sync_states.get_by_user_id(user_id)
        await self.sync_states.advance_watermark(state, newest, last_error=None)
        await self.db.commit()
        return result

    # =========================================================================
    # Recent
    # =========================================================================

    async def sync_recent(
        self,
        user_id: str,
        per_page: int = SyncConfig.RECENT_ACTIVITIES_PER_PAGE
    ) -> SyncResult:
        """Upsert the first page of activities. Leaves the watermark alone."""
        async def run(uid: str) -> SyncResult:
            access_token = await self.tokens.get_valid_access_token(uid)
            batch = await self.client.list_activities(access_token, 1, per_page)
            result = SyncResult(pages=1)
            for item in batch:
                result.record(await self.activity_sync.upsert_activity(uid, item))
            await self.db.commit()
            result.stopped = (
                StopReason.EXHAUSTED if len(batch) < per_page else StopReason.PAGE_CAP
            )
            return result

        return await self._run(user_id, "Recent sync", run)

    # =========================================================================
    # Refresh / enrichment
    # =========================================================================

    async def refresh_missing(
        self,
        user_id: str,
        batch_size: int = SyncConfig.ENRICH_BATCH_SIZE
    ) -> RefreshResult:
        """
        Import recent remote activities that are not stored locally.

        Cross-references up to REFRESH_MAX_PAGES remote pages with local
        ids and fully syncs (detail + streams) at most `batch_size` of the
        missing ones. Call again while `remaining` > 0.
        """
        async def run(uid: str) -> RefreshResult:
            access_token = await self.tokens.get_valid_access_token(uid)

            remote_ids: list[str] = []
            seen: set[str] = set()
            for page in range(1, SyncConfig.REFRESH_MAX_PAGES + 1):
                batch = await self.client.list_activities(
                    access_token, page, SyncConfig.ACTIVITIES_PER_PAGE
                )
                if not batch:
                    break
                for item in batch:
                    activity_id = str(item["id"])
                    if activity_id not in seen:
                        seen.add(activity_id)
                        remote_ids.append(activity_id)
                await self._pause()

            existing = await self.activities.existing_ids(uid, remote_ids)
            missing = [i for i in remote_ids if i not in existing]

            result = RefreshResult(checked=len(remote_ids), missing=len(missing))
            for activity_id in missing[:batch_size]:
                await self._enrich_one(uid, access_token, activity_id, result, import_missing=True)
            result.remaining = max(len(missing) - batch_size, 0)
            return result

        return await self._run(user_id, "Refresh", run)

    async def enrich_missing(
        self,
        user_id: str,
        batch_size: int = SyncConfig.ENRICH_BATCH_SIZE
    ) -> RefreshResult:
        """
        Fetch detail and streams for stored activities lacking them.

        Processes at most `batch_size` activities, newest first. Call again
        while `remaining` > 0.

        An activity that failed MAX_ENRICH_FAILURES times is skipped from
        then on, so a permanently missing detail cannot pin the batch.
        """
        async def run(uid: str) -> RefreshResult:
            access_token = await self.tokens.get_valid_access_token(uid)
            ids = await self.activities.ids_needing_enrichment(
                uid, batch_size, max_failures=SyncConfig.MAX_ENRICH_FAILURES
            )

            result = RefreshResult()
            for activity_id in ids:
                await self._enrich_one(uid, access_token, activity_id, result)
            result.remaining = await self.activities.count_needing_enrichment(
                uid, max_failures=SyncConfig.MAX_ENRICH_FAILURES
            )
            return result

        return await self._run(user_id, "Enrichment", run)

    async def _enrich_one(
        self,
        user_id: str,
        access_token: str,
        activity_id: str,
        result: RefreshResult,
        import_missing: bool = False
    ) -> None:
        """Detail + streams for one activity. Never raises item-level errors."""
        result.batch += 1
        failed = False

        try:
            detail = await self.client.get_activity_detail(access_token, activity_id)
            if import_missing:
                await self.activity_sync.upsert_activity(user_id, detail)
            await self.activity_sync.apply_detail(activity_id, detail)
            await self.db.commit()
            result.detailed += 1
        except StravaError as e:
            logger.warning(f"Detail sync failed for activity {activity_id}: {e}")
            await self.db.rollback()
            failed = True
            if import_missing:
                # Nothing stored to attach streams to
                result.failed += 1
                return

        try:
            if await self._sync_streams(access_token, activity_id):
                result.streamed += 1
        except StravaError as e:
            logger.warning(f"Stream sync failed for activity {activity_id}: {e}")
            await self.db.rollback()
            failed = True

        if failed:
            result.failed += 1
            await self._record_enrich_failure(activity_id)

    async def _record_enrich_failure(self, activity_id: str) -> None:
        try:
            await self.activities.record_enrich_failure(activity_id)
            await self.db.commit()
        except PersistenceError as e:
            logger.error(f"Could not record enrichment failure for {activity_id}: {e}")
            await self.db.rollback()

    async def _sync_streams(self, access_token: str, activity_id: str) -> bool:
        """
        Fetch and store streams for one activity.

        Returns:
            True if streams were stored; False if Strava has none
        """
        streams = await self.client.get_activity_streams(access_token, activity_id)
        if streams is None:
            await self.activity_sync.mark_streams_absent(activity_id)
            stored = False
        else:
            stored = await self.activity_sync.store_streams(activity_id, streams)
        await self.db.commit()
        return stored

    # =========================================================================
    # Single activity (webhooks)
    # =========================================================================

    async def sync_activity(self, user_id: str, activity_id: str) -> UpsertOutcome:
        """
        Fetch detail + streams for one activity and store them.

        Does not take the user's sync lock and never touches sync state.

        Raises:
            StravaError: If the token or the detail fetch fails
        """
        access_token = await self.tokens.get_valid_access_token(user_id)
        detail = await self.client.get_activity_detail(access_token, activity_id)

        outcome = await self.activity_sync.upsert_activity(user_id, detail)
        await self.activity_sync.apply_detail(activity_id, detail)
        await self.db.commit()

        try:
            await self._sync_streams(access_token, activity_id)
        except StravaError as e:
            logger.warning(f"Stream sync failed for activity {activity_id}: {e}")
            await self.db.rollback()

        return outcome

    # =========================================================================
    # Status
    # =========================================================================

    async def get_status(self, user_id: str) -> dict:
        """Sync progress and local counts for a user."""
        account = await self.tokens.get_account(user_id)
        state = await self.sync_states.get_by_user_id(user_id)

        return {
            "linked": account is not None,
            "sync_running": self.locks.is_locked(user_id),
            "last_sync_start": state.last_sync_start if state else None,
            "last_synced_at": state.last_synced_at if state else None,
            "backfill_done": bool(state.backfill_done) if state else False,
            "last_error": state.last_error if state else None,
            "activities": await self.activities.count(user_id=user_id),
            "activities_with_streams": await self.activities.count(
                user_id=user_id, has_streams=True
            ),
            "pending_enrichment": await self.activities.count_needing_enrichment(user_id),
        }
