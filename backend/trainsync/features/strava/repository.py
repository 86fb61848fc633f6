"""
Strava repositories.

Data access layer for Strava-related models.

Activity and stream writes go through native INSERT ... ON CONFLICT
statements so concurrent writers (a backfill and a webhook touching the
same activity) never race between an existence check and an insert.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Iterable, Iterator

from sqlalchemy import select, func, update, delete, or_, and_, desc
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trainsync.shared.repository import BaseRepository
from .exceptions import PersistenceError
from .models import (
    STRAVA_PROVIDER,
    STREAM_CHANNELS,
    StravaAccount,
    Activity,
    ActivityStream,
    SyncState,
)


@contextmanager
def translate_db_errors(action: str) -> Iterator[None]:
    """Re-raise storage failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        raise PersistenceError(f"Failed to {action}: {e}") from e


def _dialect_insert(dialect_name: str, table):
    """INSERT construct supporting ON CONFLICT for the bound dialect."""
    if dialect_name == "postgresql":
        return postgresql.insert(table)
    if dialect_name == "sqlite":
        return sqlite.insert(table)
    raise PersistenceError(f"Upsert not supported for dialect {dialect_name}")


class StravaAccountRepository(BaseRepository[StravaAccount]):
    """Repository for linked Strava accounts."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, StravaAccount)

    async def get_by_user_id(self, user_id: str) -> StravaAccount | None:
        """
        Get linked account for user.

        Args:
            user_id: User's ID

        Returns:
            StravaAccount if found, None otherwise
        """
        return await self.get_by(user_id=user_id, provider=STRAVA_PROVIDER)

    async def get_by_athlete_id(self, athlete_id: str) -> StravaAccount | None:
        """
        Get account by Strava athlete ID.

        Args:
            athlete_id: Strava athlete ID

        Returns:
            StravaAccount if found, None otherwise
        """
        return await self.get_by(
            provider=STRAVA_PROVIDER,
            provider_account_id=str(athlete_id)
        )

    async def list_user_ids(self) -> list[str]:
        """IDs of all users with a linked account."""
        result = await self.db.execute(
            select(StravaAccount.user_id)
            .where(StravaAccount.provider == STRAVA_PROVIDER)
        )
        return list(result.scalars().all())

    async def update_tokens(
        self,
        account: StravaAccount,
        access_token: str,
        refresh_token: str,
        expires_at: int,
        token_type: str | None = None,
        scope: str | None = None
    ) -> StravaAccount:
        """
        Update OAuth tokens after refresh.

        token_type and scope are only overwritten when Strava returns them.

        Returns:
            Updated account
        """
        values = {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
        }
        if token_type is not None:
            values["token_type"] = token_type
        if scope is not None:
            values["scope"] = scope
        with translate_db_errors(f"store tokens for user {account.user_id}"):
            return await self.update(account, **values)


class ActivityRepository(BaseRepository[Activity]):
    """Repository for mirrored activities."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, Activity)

    async def get_by_activity_id(self, activity_id: str) -> Activity | None:
        return await self.get_by(id=str(activity_id))

    async def upsert(self, values: dict) -> bool:
        """
        Insert the activity, or overwrite it if the id already exists.

        Args:
            values: Column values, must contain "id"

        Returns:
            True if a new row was created, False if an existing row was updated
        """
        activity_id = values["id"]
        table = Activity.__table__

        with translate_db_errors(f"upsert activity {activity_id}"):
            insert_stmt = (
                _dialect_insert(self.dialect_name, table)
                .values(**values)
                .on_conflict_do_nothing(index_elements=[table.c.id])
            )
            result = await self.db.execute(insert_stmt)
            if result.rowcount == 1:
                return True

            overwrite = {k: v for k, v in values.items() if k != "id"}
            await self.db.execute(
                update(table)
                .where(table.c.id == activity_id)
                .values(**overwrite)
            )
            return False

    async def update_fields(self, activity_id: str, **values) -> bool:
        """
        Update selected columns of one activity.

        Returns:
            True if the activity exists
        """
        table = Activity.__table__
        with translate_db_errors(f"update activity {activity_id}"):
            result = await self.db.execute(
                update(table).where(table.c.id == str(activity_id)).values(**values)
            )
        return result.rowcount > 0

    async def delete_activity(self, activity_id: str) -> bool:
        """
        Delete an activity together with its stream row.

        Returns:
            True if the activity existed
        """
        activity_id = str(activity_id)
        with translate_db_errors(f"delete activity {activity_id}"):
            await self.db.execute(
                delete(ActivityStream.__table__)
                .where(ActivityStream.__table__.c.activity_id == activity_id)
            )
            result = await self.db.execute(
                delete(Activity.__table__)
                .where(Activity.__table__.c.id == activity_id)
            )
        return result.rowcount > 0

    async def existing_ids(self, user_id: str, ids: Iterable[str]) -> set[str]:
        """Subset of `ids` already stored for the user."""
        ids = [str(i) for i in ids]
        if not ids:
            return set()
        result = await self.db.execute(
            select(Activity.id)
            .where(Activity.user_id == user_id)
            .where(Activity.id.in_(ids))
        )
        return set(result.scalars().all())

    async def newest_start_date(self, user_id: str) -> datetime | None:
        """Start date of the user's most recent stored activity."""
        result = await self.db.execute(
            select(func.max(Activity.start_date))
            .where(Activity.user_id == user_id)
        )
        return result.scalar()

    def _needs_enrichment(self, user_id: str, max_failures: int | None):
        conditions = [Activity.user_id == user_id]
        if max_failures is not None:
            conditions.append(Activity.enrich_failures < max_failures)
        return and_(
            *conditions,
            or_(
                Activity.raw_detail.is_(None),
                and_(
                    Activity.has_streams == False,  # noqa: E712
                    Activity.streams_checked_at.is_(None),
                ),
            ),
        )

    async def ids_needing_enrichment(
        self,
        user_id: str,
        limit: int,
        max_failures: int | None = None
    ) -> list[str]:
        """
        Activities missing detail, or whose streams were never fetched.

        Rows that already failed `max_failures` times are left out.

        Returns:
            Activity ids, newest first
        """
        result = await self.db.execute(
            select(Activity.id)
            .where(self._needs_enrichment(user_id, max_failures))
            .order_by(desc(Activity.start_date))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_needing_enrichment(
        self,
        user_id: str,
        max_failures: int | None = None
    ) -> int:
        result = await self.db.execute(
            select(func.count())
            .select_from(Activity)
            .where(self._needs_enrichment(user_id, max_failures))
        )
        return result.scalar() or 0

    async def record_enrich_failure(self, activity_id: str) -> None:
        table = Activity.__table__
        with translate_db_errors(f"record enrichment failure for {activity_id}"):
            await self.db.execute(
                update(table)
                .where(table.c.id == str(activity_id))
                .values(enrich_failures=table.c.enrich_failures + 1)
            )


class ActivityStreamRepository(BaseRepository[ActivityStream]):
    """Repository for activity streams."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, ActivityStream)

    async def get_for_activity(self, activity_id: str) -> ActivityStream | None:
        return await self.get_by(activity_id=str(activity_id))

    async def replace(
        self,
        activity_id: str,
        channels: dict[str, list],
        sample_count: int
    ) -> None:
        """
        Store streams for an activity, replacing any previous row entirely.

        Channels missing from `channels` are written as NULL.
        """
        table = ActivityStream.__table__
        row = {name: channels.get(name) for name in STREAM_CHANNELS}
        row["sample_count"] = sample_count
        row["updated_at"] = datetime.utcnow()

        with translate_db_errors(f"store streams for activity {activity_id}"):
            stmt = _dialect_insert(self.dialect_name, table).values(
                activity_id=str(activity_id), **row
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[table.c.activity_id],
                set_={name: stmt.excluded[name] for name in row},
            )
            await self.db.execute(stmt)


class SyncStateRepository(BaseRepository[SyncState]):
    """Repository for sync progress."""

    def __init__(self, db: AsyncSession):
        super().__init__(db, SyncState)

    async def get_by_user_id(self, user_id: str) -> SyncState | None:
        """
        Get sync state for user.

        Args:
            user_id: User's ID

        Returns:
            SyncState if found, None otherwise
        """
        return await self.get_by(user_id=user_id)

    async def mark_started(self, user_id: str, started_at: datetime) -> SyncState:
        """
        Record the start of a sync run, creating the state row if needed.

        Args:
            user_id: User's ID
            started_at: Run start time (naive UTC)

        Returns:
            Sync state for user
        """
        with translate_db_errors(f"mark sync start for user {user_id}"):
            state = await self.get_by_user_id(user_id)
            if not state:
                return await self.create(
                    user_id=user_id,
                    last_sync_start=started_at,
                    backfill_done=False
                )
            return await self.update(state, last_sync_start=started_at)

    async def advance_watermark(
        self,
        state: SyncState,
        synced_at: datetime | None,
        **extra
    ) -> bool:
        """
        Move last_synced_at forward to `synced_at`.

        An older or missing value never replaces a newer watermark.
        Extra fields are written regardless.

        Returns:
            True if the watermark moved
        """
        moved = synced_at is not None and (
            state.last_synced_at is None or synced_at > state.last_synced_at
        )
        values = dict(extra)
        if moved:
            values["last_synced_at"] = synced_at
        with translate_db_errors(f"update sync state for user {state.user_id}"):
            await self.update(state, **values)
        return moved

    async def record_error(self, user_id: str, error: str) -> None:
        """Store the reason of the last failed run."""
        with translate_db_errors(f"record sync error for user {user_id}"):
            state = await self.get_by_user_id(user_id)
            if state:
                await self.update(state, last_error=error[:500])
