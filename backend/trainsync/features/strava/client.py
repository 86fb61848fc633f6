"""
Strava API client.

Provides methods for reading athlete activities from the Strava API.
Handles rate limiting and status-code interpretation so callers only see
data, None (streams not available) or a StravaError.

Strava API Limits:
- 200 requests per 15 minutes
- 2,000 requests per day
"""

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Optional

import httpx

from trainsync.config import settings
from .exceptions import RemoteError, RateLimitError
from .models import STREAM_CHANNELS

logger = logging.getLogger(__name__)


# =============================================================================
# Rate Limiter
# =============================================================================

class StravaRateLimiter:
    """
    In-memory rate limiter for Strava API.

    Limits:
    - 200 requests per 15 minutes (short-term)
    - 2000 requests per day (daily)
    """

    def __init__(
        self,
        short_limit: int = 200,
        short_window_minutes: int = 15,
        daily_limit: int = 2000
    ):
        self.short_limit = short_limit
        self.short_window = timedelta(minutes=short_window_minutes)
        self.daily_limit = daily_limit

        self.short_counts: dict[str, list[datetime]] = defaultdict(list)
        self.daily_counts: dict[str, int] = defaultdict(int)
        self.daily_date = datetime.now().date()
        self._lock = asyncio.Lock()

    async def check_and_increment(self, key: str = "global") -> bool:
        """
        Check if request is allowed and increment counters.

        Returns True if request is allowed, False if rate limited.
        """
        async with self._lock:
            now = datetime.now()

            # Reset daily counter if new day
            if now.date() != self.daily_date:
                self.daily_counts.clear()
                self.daily_date = now.date()
                logger.info("Daily rate limit counters reset")

            # Clean old timestamps (>15 min)
            cutoff = now - self.short_window
            self.short_counts[key] = [
                ts for ts in self.short_counts[key]
                if ts > cutoff
            ]

            short_count = len(self.short_counts[key])
            daily_count = self.daily_counts[key]

            if short_count >= self.short_limit:
                logger.warning(
                    f"Strava rate limit hit: {short_count}/{self.short_limit} "
                    f"requests in 15 min for {key}"
                )
                return False

            if daily_count >= self.daily_limit:
                logger.warning(
                    f"Strava daily limit hit: {daily_count}/{self.daily_limit} "
                    f"for {key}"
                )
                return False

            self.short_counts[key].append(now)
            self.daily_counts[key] += 1

            return True

    def get_usage(self, key: str = "global") -> dict:
        """Get current rate limit usage."""
        now = datetime.now()
        cutoff = now - self.short_window
        short_count = len([ts for ts in self.short_counts[key] if ts > cutoff])

        return {
            "short_term": {
                "used": short_count,
                "limit": self.short_limit,
                "window_minutes": int(self.short_window.total_seconds() // 60)
            },
            "daily": {
                "used": self.daily_counts[key],
                "limit": self.daily_limit
            }
        }


# Global rate limiter instance
rate_limiter = StravaRateLimiter()


# =============================================================================
# Strava Client
# =============================================================================

class StravaClient:
    """
    Async client for the Strava activities API.

    Every call takes an access token obtained from TokenManager.

    Usage:
        client = StravaClient()
        page = await client.list_activities(token, page=1, per_page=100)
        detail = await client.get_activity_detail(token, "123")
        streams = await client.get_activity_streams(token, "123")  # may be None
    """

    API_URL = "https://www.strava.com/api/v3"

    def __init__(
        self,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        limiter: Optional[StravaRateLimiter] = rate_limiter,
        timeout: Optional[float] = None
    ):
        self._transport = transport
        self._limiter = limiter
        self._timeout = timeout or settings.strava_http_timeout_seconds

    async def _api_request(
        self,
        endpoint: str,
        access_token: str,
        params: Optional[dict] = None
    ) -> httpx.Response:
        """
        Make an authenticated GET request with rate limiting.

        Returns the raw response; status interpretation is up to the caller.

        Raises:
            RateLimitError: If the local limiter refuses the call
            RemoteError: If no response arrived (timeout, connection error)
        """
        if self._limiter and not await self._limiter.check_and_increment():
            raise RateLimitError(429, "Local rate limit exceeded", endpoint)

        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=self._timeout
            ) as client:
                response = await client.get(
                    f"{self.API_URL}{endpoint}",
                    headers={"Authorization": f"Bearer {access_token}"},
                    params=params
                )
        except httpx.HTTPError as e:
            logger.warning(f"Strava request {endpoint} failed: {e!r}")
            raise RemoteError(None, repr(e), endpoint) from e

        # Log rate limit headers from Strava
        if "X-RateLimit-Limit" in response.headers:
            logger.debug(
                f"Strava rate limit: {response.headers.get('X-RateLimit-Usage')} "
                f"/ {response.headers.get('X-RateLimit-Limit')}"
            )

        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response, endpoint: str) -> None:
        if response.status_code == 429:
            raise RateLimitError(429, response.text, endpoint)
        if not response.is_success:
            raise RemoteError(response.status_code, response.text, endpoint)

    async def list_activities(
        self,
        access_token: str,
        page: int = 1,
        per_page: int = 50
    ) -> list[dict]:
        """
        Get one page of athlete activity summaries, newest first.

        An empty list means the page is past the end.

        Raises:
            RemoteError: On non-2xx response
        """
        endpoint = "/athlete/activities"
        response = await self._api_request(
            endpoint,
            access_token,
            params={"page": page, "per_page": per_page}
        )
        self._raise_for_status(response, endpoint)
        return response.json()

    async def get_activity_detail(self, access_token: str, activity_id: str) -> dict:
        """
        Get detailed activity info.

        Raises:
            RemoteError: On non-2xx response, including 404
        """
        endpoint = f"/activities/{activity_id}"
        response = await self._api_request(
            endpoint,
            access_token,
            params={"include_all_efforts": "true"}
        )
        self._raise_for_status(response, endpoint)
        return response.json()

    async def get_activity_streams(
        self,
        access_token: str,
        activity_id: str
    ) -> Optional[dict[str, dict]]:
        """
        Get time-series streams keyed by channel name.

        Returns:
            {"time": {"data": [...]}, "heartrate": {"data": [...]}, ...}
            or None when Strava has no streams for the activity (404):
            manual entries, or uploads still being processed.

        Raises:
            RemoteError: On any other non-2xx response
        """
        endpoint = f"/activities/{activity_id}/streams"
        response = await self._api_request(
            endpoint,
            access_token,
            params={"keys": ",".join(STREAM_CHANNELS), "key_by_type": "true"}
        )
        if response.status_code == 404:
            logger.debug(f"No streams for activity {activity_id}")
            return None
        self._raise_for_status(response, endpoint)
        return response.json()
