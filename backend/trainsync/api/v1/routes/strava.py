"""
Strava Sync Routes

Endpoints for activity synchronization:
- /strava/{user_id}/backfill - Import full history
- /strava/{user_id}/incremental - New activities since last sync
- /strava/{user_id}/refresh - Import recent activities missing locally
- /strava/{user_id}/sync-details - Enrich stored activities
- /strava/{user_id}/sync - Re-sync the most recent page
- /strava/{user_id}/sync-status - Sync progress
- /strava/{user_id}/activities/{activity_id}/streams - Stored streams
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from trainsync.db.session import get_async_db
from trainsync.features.strava.exceptions import (
    StravaError,
    NotLinked,
    MissingRefreshToken,
    RefreshFailed,
    RateLimitError,
    RemoteError,
    PersistenceError,
)
from trainsync.features.strava.repository import ActivityRepository, ActivityStreamRepository
from trainsync.features.strava.sync import (
    StravaSyncService,
    SyncConfig,
    trigger_incremental_sync,
    get_sync_stats,
)

logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Schemas
# =============================================================================

class SyncStatusResponse(BaseModel):
    """Sync status response."""
    linked: bool
    sync_running: bool
    last_sync_start: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    backfill_done: bool
    last_error: Optional[str] = None
    activities: int
    activities_with_streams: int
    pending_enrichment: int


class ActivityStreamsResponse(BaseModel):
    """Stored streams of one activity."""
    activity_id: str
    sample_count: Optional[int]
    streams: dict[str, list]


# =============================================================================
# Dependencies
# =============================================================================

def get_sync_service(db: AsyncSession = Depends(get_async_db)) -> StravaSyncService:
    """Sync orchestrator bound to the request session."""
    return StravaSyncService(db)


def strava_http_error(error: StravaError) -> HTTPException:
    """Map a sync failure onto the HTTP status the caller sees."""
    if isinstance(error, NotLinked):
        return HTTPException(status_code=400, detail="Strava not linked")
    if isinstance(error, MissingRefreshToken):
        return HTTPException(status_code=409, detail="Strava refresh token missing, relink required")
    if isinstance(error, RateLimitError):
        return HTTPException(status_code=429, detail="Strava rate limit exceeded")
    if isinstance(error, (RefreshFailed, RemoteError)):
        return HTTPException(status_code=502, detail=str(error))
    if isinstance(error, PersistenceError):
        return HTTPException(status_code=500, detail="Failed to store Strava data")
    return HTTPException(status_code=500, detail=str(error))


# =============================================================================
# Sync Triggers
# =============================================================================

@router.post("/strava/{user_id}/backfill")
async def backfill(
    user_id: str,
    service: StravaSyncService = Depends(get_sync_service)
):
    """Import the user's whole Strava history."""
    try:
        result = await service.backfill(user_id)
    except StravaError as e:
        raise strava_http_error(e)
    return {"status": "completed", "result": result.to_dict()}


@router.post("/strava/{user_id}/incremental")
async def incremental(
    user_id: str,
    immediate: bool = Query(True, description="Sync now instead of queuing"),
    service: StravaSyncService = Depends(get_sync_service)
):
    """
    Fetch activities newer than the last sync.

    If immediate=False, adds the user to the background priority queue.
    """
    if not immediate:
        await trigger_incremental_sync(user_id)
        return {
            "status": "queued",
            "message": "Sync queued. Activities will be synced in background."
        }

    try:
        result = await service.incremental(user_id)
    except StravaError as e:
        raise strava_http_error(e)
    return {"status": "completed", "result": result.to_dict()}


@router.post("/strava/{user_id}/refresh")
async def refresh(
    user_id: str,
    batch_size: int = Query(SyncConfig.ENRICH_BATCH_SIZE, ge=1, le=50),
    service: StravaSyncService = Depends(get_sync_service)
):
    """
    Import recent activities that are missing locally.

    Works in batches; call again while `remaining` > 0.
    """
    try:
        result = await service.refresh_missing(user_id, batch_size)
    except StravaError as e:
        raise strava_http_error(e)
    return {"status": "completed", "result": result.to_dict()}


@router.post("/strava/{user_id}/sync-details")
async def sync_details(
    user_id: str,
    batch_size: int = Query(SyncConfig.ENRICH_BATCH_SIZE, ge=1, le=50),
    service: StravaSyncService = Depends(get_sync_service)
):
    """Fetch detail and streams for stored activities lacking them."""
    try:
        result = await service.enrich_missing(user_id, batch_size)
    except StravaError as e:
        raise strava_http_error(e)
    return {"status": "completed", "result": result.to_dict()}


@router.post("/strava/{user_id}/sync")
async def sync_recent(
    user_id: str,
    service: StravaSyncService = Depends(get_sync_service)
):
    """Re-sync the most recent page of activities."""
    try:
        result = await service.sync_recent(user_id)
    except StravaError as e:
        raise strava_http_error(e)
    return {"status": "completed", "result": result.to_dict()}


# =============================================================================
# Status
# =============================================================================

@router.get("/strava/{user_id}/sync-status", response_model=SyncStatusResponse)
async def get_user_sync_status(
    user_id: str,
    service: StravaSyncService = Depends(get_sync_service)
):
    """Get sync status for a user."""
    return SyncStatusResponse(**await service.get_status(user_id))


@router.get(
    "/strava/{user_id}/activities/{activity_id}/streams",
    response_model=ActivityStreamsResponse
)
async def get_activity_streams(
    user_id: str,
    activity_id: str,
    db: AsyncSession = Depends(get_async_db)
):
    """Stored streams of one of the user's activities."""
    activity = await ActivityRepository(db).get_by_activity_id(activity_id)
    if not activity or activity.user_id != user_id:
        raise HTTPException(status_code=404, detail="Activity not found")

    stream = await ActivityStreamRepository(db).get_for_activity(activity_id)
    if not stream:
        raise HTTPException(status_code=404, detail="Streams not available")

    return ActivityStreamsResponse(
        activity_id=activity_id,
        sample_count=stream.sample_count,
        streams=stream.channels(),
    )


@router.get("/strava/admin/sync-stats")
async def admin_sync_stats():
    """
    Admin endpoint: Get global sync statistics.
    """
    return get_sync_stats()
