"""
Strava-related database models.

Models:
- StravaAccount: Linked Strava account with OAuth tokens
- Activity: Mirrored activity (summary + optional detail enrichment)
- ActivityStream: Per-activity time-series channels (1:1 with Activity)
- SyncState: Sync progress / watermark per user
"""

from datetime import datetime

from sqlalchemy import (
    Column, String, DateTime, Integer, Float, Boolean, ForeignKey, Text, JSON,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from trainsync.models.base import Base

STRAVA_PROVIDER = "strava"

# Channels requested from /activities/{id}/streams, in storage order
STREAM_CHANNELS = (
    "time",
    "heartrate",
    "velocity_smooth",
    "altitude",
    "cadence",
    "watts",
    "grade_smooth",
    "latlng",
)


class StravaAccount(Base):
    """
    Linked Strava account.

    Created when the user links Strava (outside this service), updated on
    every token refresh. Tokens should be encrypted in production.
    """

    __tablename__ = "strava_accounts"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_strava_accounts_user_provider"),
        UniqueConstraint("provider", "provider_account_id", name="uq_strava_accounts_athlete"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(36), nullable=False, index=True)
    provider = Column(String(32), nullable=False, default=STRAVA_PROVIDER)

    # Strava athlete id
    provider_account_id = Column(String(20), nullable=False)

    # OAuth tokens
    access_token = Column(Text, nullable=True)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(Integer, nullable=True)  # Unix timestamp
    token_type = Column(String(32), nullable=True)
    scope = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<StravaAccount user_id={self.user_id} athlete_id={self.provider_account_id}>"


class Activity(Base):
    """
    Mirrored Strava activity.

    The primary key is the Strava activity id (as string), so the same
    activity seen through a list page, a detail fetch or a webhook always
    lands on the same row. Detail fields stay NULL until enriched.
    """

    __tablename__ = "activities"

    id = Column(String(32), primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)

    # Summary
    name = Column(String(255), nullable=True)
    type = Column(String(50), nullable=True)
    distance_m = Column(Float, nullable=True)
    moving_s = Column(Integer, nullable=True)
    elapsed_s = Column(Integer, nullable=True)
    start_date = Column(DateTime, nullable=True, index=True)  # naive UTC
    timezone = Column(String(64), nullable=True)
    is_trainer = Column(Boolean, nullable=True)
    is_commute = Column(Boolean, nullable=True)
    total_elev_m = Column(Float, nullable=True)
    raw = Column(JSON(none_as_null=True), nullable=True)

    # Detail
    avg_hr = Column(Float, nullable=True)
    max_hr = Column(Float, nullable=True)
    avg_speed = Column(Float, nullable=True)
    avg_cadence = Column(Float, nullable=True)
    avg_watts = Column(Float, nullable=True)
    calories = Column(Float, nullable=True)
    device_name = Column(String(255), nullable=True)
    map_polyline = Column(Text, nullable=True)
    raw_detail = Column(JSON(none_as_null=True), nullable=True)

    # Streams
    has_streams = Column(Boolean, nullable=False, default=False)
    streams_checked_at = Column(DateTime, nullable=True)

    # Failed enrichment attempts; capped rows drop out of enrichment
    enrich_failures = Column(Integer, nullable=False, default=0, server_default="0")

    # Sync metadata
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    stream = relationship(
        "ActivityStream",
        back_populates="activity",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<Activity {self.id} {self.type} {self.distance_m}m>"

    @property
    def has_detail(self) -> bool:
        return self.raw_detail is not None


class ActivityStream(Base):
    """
    Time-series channels for one activity.

    Each channel is a JSON array index-aligned with `time`. Channels the
    device did not record are NULL. The row is always replaced as a whole.
    """

    __tablename__ = "activity_streams"

    activity_id = Column(
        String(32),
        ForeignKey("activities.id", ondelete="CASCADE"),
        primary_key=True
    )

    time = Column(JSON(none_as_null=True), nullable=True)
    heartrate = Column(JSON(none_as_null=True), nullable=True)
    velocity_smooth = Column(JSON(none_as_null=True), nullable=True)
    altitude = Column(JSON(none_as_null=True), nullable=True)
    cadence = Column(JSON(none_as_null=True), nullable=True)
    watts = Column(JSON(none_as_null=True), nullable=True)
    grade_smooth = Column(JSON(none_as_null=True), nullable=True)
    latlng = Column(JSON(none_as_null=True), nullable=True)

    sample_count = Column(Integer, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    activity = relationship("Activity", back_populates="stream")

    def __repr__(self):
        return f"<ActivityStream {self.activity_id} samples={self.sample_count}>"

    def channels(self) -> dict[str, list]:
        """Recorded channels keyed by name."""
        return {
            name: getattr(self, name)
            for name in STREAM_CHANNELS
            if getattr(self, name) is not None
        }


class SyncState(Base):
    """
    Sync progress per user.

    last_synced_at is the watermark incremental sync pages down to.
    It only ever moves forward.
    """

    __tablename__ = "strava_sync_state"

    user_id = Column(String(36), primary_key=True)

    last_sync_start = Column(DateTime, nullable=True)
    last_synced_at = Column(DateTime, nullable=True)
    backfill_done = Column(Boolean, nullable=False, default=False)
    last_error = Column(String(500), nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def __repr__(self):
        return f"<SyncState user_id={self.user_id} last_synced_at={self.last_synced_at}>"
