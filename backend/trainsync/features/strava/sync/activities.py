"""
Activity persistence.

Maps Strava payloads onto Activity / ActivityStream rows. Field names are
renamed here; units stay as Strava sends them (meters, seconds, m/s).
"""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import STREAM_CHANNELS
from ..repository import ActivityRepository, ActivityStreamRepository

logger = logging.getLogger(__name__)


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


def parse_start_date(value: Optional[str]) -> Optional[datetime]:
    """Parse Strava ISO 8601 timestamp into naive UTC."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_summary(user_id: str, data: dict) -> dict:
    """Activity summary columns from a list item or detail payload."""
    return {
        "id": str(data["id"]),
        "user_id": user_id,
        "name": data.get("name"),
        "type": data.get("type"),
        "distance_m": data.get("distance"),
        "moving_s": data.get("moving_time"),
        "elapsed_s": data.get("elapsed_time"),
        "start_date": parse_start_date(data.get("start_date")),
        "timezone": data.get("timezone"),
        "is_trainer": data.get("trainer"),
        "is_commute": data.get("commute"),
        "total_elev_m": data.get("total_elevation_gain"),
        "raw": data,
    }


def normalize_detail(data: dict) -> dict:
    """Activity detail columns from a detail payload."""
    return {
        "avg_hr": data.get("average_heartrate"),
        "max_hr": data.get("max_heartrate"),
        "avg_speed": data.get("average_speed"),
        "avg_cadence": data.get("average_cadence"),
        "avg_watts": data.get("average_watts"),
        "calories": data.get("calories"),
        "device_name": data.get("device_name"),
        "map_polyline": (data.get("map") or {}).get("summary_polyline"),
        "raw_detail": data,
    }


def aligned_channels(activity_id: str, streams: dict[str, dict]) -> Optional[dict[str, list]]:
    """
    Extract channel arrays that line up with the time channel.

    Returns None when there is no time channel to align against.
    """
    time_data = (streams.get("time") or {}).get("data")
    if not time_data:
        logger.warning(f"Streams for activity {activity_id} have no time channel")
        return None

    channels = {}
    for name in STREAM_CHANNELS:
        data = (streams.get(name) or {}).get("data")
        if data is None:
            continue
        if len(data) != len(time_data):
            logger.warning(
                f"Dropping misaligned {name} stream for activity {activity_id}: "
                f"{len(data)} samples vs {len(time_data)}"
            )
            continue
        channels[name] = data
    return channels


class ActivitySyncService:
    """
    Service for writing synced activities.

    Handles:
    - Create-or-overwrite of activity summaries
    - Detail enrichment
    - Stream replacement
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.activities = ActivityRepository(db)
        self.streams = ActivityStreamRepository(db)

    async def upsert_activity(self, user_id: str, data: dict) -> UpsertOutcome:
        """
        Create or overwrite an activity from a Strava summary/detail payload.

        Re-applying the same payload leaves the row unchanged.

        Raises:
            PersistenceError: On storage failure
        """
        created = await self.activities.upsert(normalize_summary(user_id, data))
        return UpsertOutcome.CREATED if created else UpsertOutcome.UPDATED

    async def apply_detail(self, activity_id: str, data: dict) -> bool:
        """
        Write detail fields onto an existing activity.

        Returns:
            False if the activity is not stored
        """
        return await self.activities.update_fields(activity_id, **normalize_detail(data))

    async def store_streams(self, activity_id: str, streams: dict[str, dict]) -> bool:
        """
        Replace the activity's streams with a fresh Strava response.

        Returns:
            True if streams were stored, False if the response had no usable
            time channel (treated like "no streams").
        """
        channels = aligned_channels(activity_id, streams)
        if channels is None:
            await self.mark_streams_absent(activity_id)
            return False

        await self.streams.replace(activity_id, channels, len(channels["time"]))
        await self.activities.update_fields(
            activity_id,
            has_streams=True,
            streams_checked_at=datetime.utcnow()
        )
        return True

    async def mark_streams_absent(self, activity_id: str) -> None:
        """Remember that Strava had no streams, so enrichment skips it."""
        await self.activities.update_fields(
            activity_id,
            streams_checked_at=datetime.utcnow()
        )
