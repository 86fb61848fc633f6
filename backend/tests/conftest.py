"""
Pytest configuration and fixtures.

Every test gets its own in-memory SQLite database and a fake Strava API
served through httpx.MockTransport, so nothing touches the network.
"""

import re
import time
from datetime import datetime
from typing import Optional

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from trainsync.models.base import Base
from trainsync.features.strava.client import StravaClient
from trainsync.features.strava.models import StravaAccount
from trainsync.features.strava.oauth import StravaOAuth
from trainsync.features.strava.sync.locks import UserSyncLocks
from trainsync.features.strava.sync.service import StravaSyncService
from trainsync.features.strava.tokens import TokenManager


USER_ID = "user-1"
ATHLETE_ID = "555"

# =============================================================================
# Fake Strava API
# =============================================================================

class FakeStrava:
    """
    In-memory stand-in for the Strava API.

    pages:   activity list pages, newest first (page 1 = pages[0])
    details: activity id -> detail payload (missing = 404)
    streams: activity id -> key_by_type streams payload (missing = 404)
    errors:  request path -> status code to answer with
    raises:  request path -> httpx exception raised instead of answering
    """

    def __init__(self):
        self.pages: list[list[dict]] = []
        self.details: dict[str, dict] = {}
        self.streams: dict[str, dict] = {}
        self.errors: dict[str, int] = {}
        self.raises: dict[str, httpx.HTTPError] = {}
        self.token_status = 200
        self.token_payload = {
            "access_token": "refreshed-access",
            "refresh_token": "refreshed-refresh",
            "expires_at": int(time.time()) + 6 * 3600,
            "token_type": "Bearer",
        }
        self.requests: list[httpx.Request] = []

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.raises:
            raise self.raises[path]

        if path in self.errors:
            return httpx.Response(self.errors[path], text="boom")

        if path == "/oauth/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"message": "Bad Request"})
            return httpx.Response(200, json=self.token_payload)

        if path == "/api/v3/athlete/activities":
            page = int(request.url.params["page"])
            items = self.pages[page - 1] if page <= len(self.pages) else []
            return httpx.Response(200, json=items)

        match = re.fullmatch(r"/api/v3/activities/(\w+)/streams", path)
        if match:
            streams = self.streams.get(match.group(1))
            if streams is None:
                return httpx.Response(404, json={"message": "Resource Not Found"})
            return httpx.Response(200, json=streams)

        match = re.fullmatch(r"/api/v3/activities/(\w+)", path)
        if match:
            detail = self.details.get(match.group(1))
            if detail is None:
                return httpx.Response(404, json={"message": "Resource Not Found"})
            return httpx.Response(200, json=detail)

        return httpx.Response(404, json={"message": "Unknown endpoint"})

    def calls(self, path_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(path_suffix)]

    # Payload builders

    @staticmethod
    def activity(activity_id: int, start: datetime, **extra) -> dict:
        """Strava activity summary as returned by /athlete/activities."""
        payload = {
            "id": activity_id,
            "name": f"Run {activity_id}",
            "type": "Run",
            "distance": 10000.0,
            "moving_time": 3000,
            "elapsed_time": 3100,
            "start_date": start.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "timezone": "(GMT+06:00) Asia/Almaty",
            "trainer": False,
            "commute": False,
            "total_elevation_gain": 120.0,
        }
        payload.update(extra)
        return payload

    @staticmethod
    def detail(activity_id: int, start: datetime, **extra) -> dict:
        """Strava detailed activity."""
        payload = FakeStrava.activity(
            activity_id,
            start,
            average_heartrate=150.0,
            max_heartrate=178.0,
            average_speed=3.33,
            average_cadence=86.0,
            calories=720.0,
            device_name="Garmin Forerunner 965",
            map={"summary_polyline": "abc123"},
        )
        payload.update(extra)
        return payload

    @staticmethod
    def stream_set(samples: int = 4) -> dict:
        """key_by_type streams with time, heartrate and altitude."""
        return {
            "time": {"data": list(range(samples)), "series_type": "time"},
            "heartrate": {"data": [140 + i for i in range(samples)]},
            "altitude": {"data": [800.0 + i for i in range(samples)]},
        }


# =============================================================================
# Database
# =============================================================================

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# =============================================================================
# Strava
# =============================================================================

@pytest.fixture
def fake_strava():
    return FakeStrava()


@pytest.fixture
def make_account(db):
    """Factory for linked Strava accounts."""

    async def _make(
        user_id: str = USER_ID,
        athlete_id: str = ATHLETE_ID,
        expires_in: int = 3600,
        refresh_token: Optional[str] = "refresh-1",
    ) -> StravaAccount:
        account = StravaAccount(
            user_id=user_id,
            provider="strava",
            provider_account_id=athlete_id,
            access_token="access-1",
            refresh_token=refresh_token,
            expires_at=int(time.time()) + expires_in,
            token_type="Bearer",
            scope="read,activity:read_all",
        )
        db.add(account)
        await db.commit()
        return account

    return _make


@pytest.fixture
def service_factory(fake_strava):
    """Build StravaSyncService instances wired to the fake API."""
    locks = UserSyncLocks()

    def _build(session: AsyncSession) -> StravaSyncService:
        oauth = StravaOAuth("client-id", "client-secret", transport=fake_strava.transport)
        return StravaSyncService(
            session,
            client=StravaClient(transport=fake_strava.transport, limiter=None),
            tokens=TokenManager(session, oauth=oauth),
            locks=locks,
            page_delay=0,
        )

    return _build


@pytest.fixture
def sync_service(db, service_factory):
    return service_factory(db)
