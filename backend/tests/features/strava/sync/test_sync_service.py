"""
Tests for StravaSyncService.

Runs every sync strategy against the fake Strava API and an in-memory
database.
"""

from datetime import datetime

import pytest

from trainsync.features.strava.exceptions import NotLinked, RemoteError, RefreshFailed
from trainsync.features.strava.repository import (
    ActivityRepository,
    ActivityStreamRepository,
    SyncStateRepository,
)
from trainsync.features.strava.sync.config import SyncConfig
from trainsync.features.strava.sync.service import StopReason


def day(n: int) -> datetime:
    """Start time of the n-th test activity (naive UTC)."""
    return datetime(2026, 3, n, 7, 0, 0)


async def watermark(db):
    state = await SyncStateRepository(db).get_by_user_id("user-1")
    return state.last_synced_at if state else None


# =============================================================================
# Backfill
# =============================================================================

class TestBackfill:
    """Tests for StravaSyncService.backfill()."""

    async def test_imports_all_pages_until_empty(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [
            [fake_strava.activity(3, day(3)), fake_strava.activity(2, day(2))],
            [fake_strava.activity(1, day(1))],
        ]

        result = await sync_service.backfill("user-1")

        assert result.created == 3
        assert result.updated == 0
        assert result.pages == 2
        assert result.stopped is StopReason.EXHAUSTED
        assert len(fake_strava.calls("/athlete/activities")) == 3
        assert await ActivityRepository(db).count(user_id="user-1") == 3

        state = await SyncStateRepository(db).get_by_user_id("user-1")
        assert state.last_synced_at == day(3)
        assert state.backfill_done is True
        assert state.last_sync_start is not None

    async def test_second_backfill_updates_only(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(2, day(2)), fake_strava.activity(1, day(1))]]

        await sync_service.backfill("user-1")
        result = await sync_service.backfill("user-1")

        assert result.created == 0
        assert result.updated == 2
        assert await ActivityRepository(db).count() == 2

    async def test_empty_history(self, db, sync_service, make_account):
        await make_account()

        result = await sync_service.backfill("user-1")

        assert result.fetched == 0
        state = await SyncStateRepository(db).get_by_user_id("user-1")
        assert state.backfill_done is True
        assert state.last_synced_at is None

    async def test_never_moves_watermark_backwards(self, db, sync_service, make_account, fake_strava):
        await make_account()
        states = SyncStateRepository(db)
        await states.mark_started("user-1", day(1))
        state = await states.get_by_user_id("user-1")
        await states.advance_watermark(state, day(20))
        await db.commit()
        fake_strava.pages = [[fake_strava.activity(5, day(5))]]

        await sync_service.backfill("user-1")

        assert await watermark(db) == day(20)

    async def test_not_linked(self, db, sync_service, fake_strava):
        with pytest.raises(NotLinked):
            await sync_service.backfill("user-1")

        assert fake_strava.requests == []
        assert await SyncStateRepository(db).get_by_user_id("user-1") is None


# =============================================================================
# Incremental
# =============================================================================

class TestIncremental:
    """Tests for StravaSyncService.incremental()."""

    async def test_stops_at_watermark(self, db, sync_service, make_account, fake_strava):
        """[T5, T4, T3, T2] with watermark T3 stores T5 and T4 only."""
        await make_account()
        fake_strava.pages = [[fake_strava.activity(3, day(3)), fake_strava.activity(2, day(2))]]
        await sync_service.backfill("user-1")
        assert await watermark(db) == day(3)

        fake_strava.requests.clear()
        fake_strava.pages = [[
            fake_strava.activity(5, day(5)),
            fake_strava.activity(4, day(4)),
            fake_strava.activity(3, day(3)),
            fake_strava.activity(2, day(2)),
        ]]

        result = await sync_service.incremental("user-1")

        assert result.created == 2
        assert result.fetched == 2
        assert result.stopped is StopReason.WATERMARK
        assert len(fake_strava.calls("/athlete/activities")) == 1
        assert await watermark(db) == day(5)
        assert await ActivityRepository(db).count() == 4

    async def test_without_watermark_reads_until_empty(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [
            [fake_strava.activity(3, day(3))],
            [fake_strava.activity(2, day(2))],
        ]

        result = await sync_service.incremental("user-1")

        assert result.created == 2
        assert result.stopped is StopReason.EXHAUSTED
        assert await watermark(db) == day(3)

    async def test_page_cap(self, db, sync_service, make_account, fake_strava, monkeypatch):
        monkeypatch.setattr(SyncConfig, "INCREMENTAL_MAX_PAGES", 2)
        await make_account()
        fake_strava.pages = [
            [fake_strava.activity(9, day(9))],
            [fake_strava.activity(8, day(8))],
            [fake_strava.activity(7, day(7))],
        ]

        result = await sync_service.incremental("user-1")

        assert result.pages == 2
        assert result.stopped is StopReason.PAGE_CAP
        assert len(fake_strava.calls("/athlete/activities")) == 2
        assert await watermark(db) == day(9)

    async def test_nothing_new_keeps_watermark(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(3, day(3))]]
        await sync_service.backfill("user-1")

        result = await sync_service.incremental("user-1")

        assert result.fetched == 0
        assert result.stopped is StopReason.WATERMARK
        assert await watermark(db) == day(3)

    async def test_failed_run_leaves_watermark(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(3, day(3))]]
        await sync_service.backfill("user-1")
        fake_strava.errors["/api/v3/athlete/activities"] = 500

        with pytest.raises(RemoteError):
            await sync_service.incremental("user-1")

        state = await SyncStateRepository(db).get_by_user_id("user-1")
        assert state.last_synced_at == day(3)
        assert "500" in state.last_error

    async def test_successful_run_clears_last_error(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(3, day(3))]]
        await sync_service.backfill("user-1")
        fake_strava.errors["/api/v3/athlete/activities"] = 500
        with pytest.raises(RemoteError):
            await sync_service.incremental("user-1")

        del fake_strava.errors["/api/v3/athlete/activities"]
        await sync_service.incremental("user-1")

        state = await SyncStateRepository(db).get_by_user_id("user-1")
        assert state.last_error is None

    async def test_refresh_failure_aborts_run(self, db, sync_service, make_account, fake_strava):
        await make_account(expires_in=10)
        fake_strava.token_status = 401

        with pytest.raises(RefreshFailed):
            await sync_service.incremental("user-1")

        assert fake_strava.calls("/athlete/activities") == []


# =============================================================================
# Recent
# =============================================================================

class TestSyncRecent:
    """Tests for StravaSyncService.sync_recent()."""

    async def test_upserts_first_page_only(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [
            [fake_strava.activity(2, day(2)), fake_strava.activity(1, day(1))],
            [fake_strava.activity(0, day(1))],
        ]

        result = await sync_service.sync_recent("user-1")

        assert result.created == 2
        assert len(fake_strava.calls("/athlete/activities")) == 1
        assert await watermark(db) is None


# =============================================================================
# Refresh / Enrichment
# =============================================================================

class TestEnrichMissing:
    """Tests for StravaSyncService.enrich_missing()."""

    async def test_streams_404_marks_checked(self, db, sync_service, make_account, fake_strava):
        """Manual activity: detail stored, no streams, no error, not retried."""
        await make_account()
        fake_strava.pages = [[fake_strava.activity(123, day(1))]]
        fake_strava.details["123"] = fake_strava.detail(123, day(1))
        await sync_service.backfill("user-1")

        result = await sync_service.enrich_missing("user-1")

        assert result.batch == 1
        assert result.detailed == 1
        assert result.streamed == 0
        assert result.failed == 0
        assert result.remaining == 0

        activity = await ActivityRepository(db).get_by_activity_id("123")
        assert activity.has_streams is False
        assert activity.streams_checked_at is not None
        assert activity.avg_hr == 150.0

        again = await sync_service.enrich_missing("user-1")
        assert again.batch == 0

    async def test_stores_streams(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(1, day(1))]]
        fake_strava.details["1"] = fake_strava.detail(1, day(1))
        fake_strava.streams["1"] = fake_strava.stream_set(6)
        await sync_service.backfill("user-1")

        result = await sync_service.enrich_missing("user-1")

        assert result.streamed == 1
        stream = await ActivityStreamRepository(db).get_for_activity("1")
        assert stream.sample_count == 6
        activity = await ActivityRepository(db).get_by_activity_id("1")
        assert activity.has_streams is True

    async def test_item_failure_does_not_stop_batch(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(2, day(2)), fake_strava.activity(1, day(1))]]
        fake_strava.details["1"] = fake_strava.detail(1, day(1))
        fake_strava.errors["/api/v3/activities/2"] = 500
        await sync_service.backfill("user-1")

        result = await sync_service.enrich_missing("user-1")

        assert result.batch == 2
        assert result.failed == 1
        assert result.detailed == 1
        assert result.remaining == 1  # activity 2 still lacks detail

    async def test_batch_size(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(i, day(i)) for i in range(3, 0, -1)]]
        for i in range(1, 4):
            fake_strava.details[str(i)] = fake_strava.detail(i, day(i))
        await sync_service.backfill("user-1")

        result = await sync_service.enrich_missing("user-1", batch_size=2)

        assert result.batch == 2
        assert result.remaining == 1

    async def test_failing_newer_activities_do_not_starve_older(
        self, db, sync_service, make_account, fake_strava
    ):
        """Deleted remotely: detail and streams 404 forever."""
        await make_account()
        fake_strava.pages = [[
            fake_strava.activity(300, day(3)),
            fake_strava.activity(200, day(2)),
            fake_strava.activity(100, day(1)),
        ]]
        fake_strava.details["100"] = fake_strava.detail(100, day(1))
        await sync_service.backfill("user-1")

        results = []
        for _ in range(SyncConfig.MAX_ENRICH_FAILURES + 2):
            result = await sync_service.enrich_missing("user-1", batch_size=2)
            results.append(result)
            if result.remaining == 0:
                break

        assert results[-1].remaining == 0
        assert len(results) == SyncConfig.MAX_ENRICH_FAILURES + 1
        older = await ActivityRepository(db).get_by_activity_id("100")
        assert older.has_detail
        gone = await ActivityRepository(db).get_by_activity_id("300")
        assert gone.raw_detail is None
        assert gone.enrich_failures == SyncConfig.MAX_ENRICH_FAILURES


class TestRefreshMissing:
    """Tests for StravaSyncService.refresh_missing()."""

    async def test_imports_remote_only_activities_in_batches(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(1, day(1))]]
        await sync_service.backfill("user-1")

        fake_strava.pages = [[
            fake_strava.activity(3, day(3)),
            fake_strava.activity(2, day(2)),
            fake_strava.activity(1, day(1)),
        ]]
        fake_strava.details["3"] = fake_strava.detail(3, day(3))
        fake_strava.details["2"] = fake_strava.detail(2, day(2))
        fake_strava.streams["3"] = fake_strava.stream_set(4)

        first = await sync_service.refresh_missing("user-1", batch_size=1)

        assert first.checked == 3
        assert first.missing == 2
        assert first.batch == 1
        assert first.remaining == 1
        activities = ActivityRepository(db)
        stored = await activities.get_by_activity_id("3")
        assert stored.has_streams is True
        assert stored.has_detail
        assert await activities.get_by_activity_id("2") is None

        second = await sync_service.refresh_missing("user-1", batch_size=1)

        assert second.missing == 1
        assert second.remaining == 0
        assert await activities.get_by_activity_id("2") is not None

    async def test_detail_failure_imports_nothing(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(4, day(4))]]

        result = await sync_service.refresh_missing("user-1")

        assert result.failed == 1
        assert result.detailed == 0
        assert await ActivityRepository(db).get_by_activity_id("4") is None
        assert fake_strava.calls("/activities/4/streams") == []


# =============================================================================
# Single Activity / Status
# =============================================================================

class TestSyncActivity:
    """Tests for StravaSyncService.sync_activity()."""

    async def test_creates_with_detail_and_streams(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.details["77"] = fake_strava.detail(77, day(7))
        fake_strava.streams["77"] = fake_strava.stream_set(3)

        await sync_service.sync_activity("user-1", "77")

        activity = await ActivityRepository(db).get_by_activity_id("77")
        assert activity.has_detail
        assert activity.has_streams is True
        assert await watermark(db) is None

    async def test_stream_failure_keeps_activity(self, db, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.details["77"] = fake_strava.detail(77, day(7))
        fake_strava.errors["/api/v3/activities/77/streams"] = 500

        await sync_service.sync_activity("user-1", "77")

        activity = await ActivityRepository(db).get_by_activity_id("77")
        assert activity is not None
        assert activity.has_streams is False


class TestGetStatus:
    """Tests for StravaSyncService.get_status()."""

    async def test_unlinked_user(self, sync_service):
        status = await sync_service.get_status("user-1")

        assert status["linked"] is False
        assert status["activities"] == 0
        assert status["last_synced_at"] is None

    async def test_after_backfill(self, sync_service, make_account, fake_strava):
        await make_account()
        fake_strava.pages = [[fake_strava.activity(2, day(2)), fake_strava.activity(1, day(1))]]
        await sync_service.backfill("user-1")

        status = await sync_service.get_status("user-1")

        assert status["linked"] is True
        assert status["sync_running"] is False
        assert status["backfill_done"] is True
        assert status["last_synced_at"] == day(2)
        assert status["activities"] == 2
        assert status["activities_with_streams"] == 0
        assert status["pending_enrichment"] == 2
