"""
Strava OAuth token endpoint.

Linking an account (authorization code exchange) happens outside this
service; here we only renew access tokens with the stored refresh token.
"""

import logging
from typing import Optional

import httpx

from trainsync.config import settings
from .exceptions import RefreshFailed

logger = logging.getLogger(__name__)


class StravaOAuth:
    """
    Strava OAuth handler.

    Usage:
        oauth = StravaOAuth()
        tokens = await oauth.refresh_token(refresh_token)
    """

    TOKEN_URL = "https://www.strava.com/oauth/token"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.client_id = client_id or settings.strava_client_id
        self.client_secret = client_secret or settings.strava_client_secret
        self._transport = transport

    async def refresh_token(self, refresh_token: str) -> dict:
        """
        Exchange a refresh token for a new access token.

        Args:
            refresh_token: Current refresh token

        Returns:
            {
                "access_token": "...",
                "refresh_token": "...",
                "expires_at": 1234567890,
                "token_type": "Bearer",   # optional
                "scope": "..."            # optional
            }

        Raises:
            RefreshFailed: If Strava rejects the refresh or cannot be reached
        """
        try:
            async with httpx.AsyncClient(
                transport=self._transport,
                timeout=settings.strava_http_timeout_seconds
            ) as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "grant_type": "refresh_token",
                        "refresh_token": refresh_token,
                    }
                )
        except httpx.HTTPError as e:
            logger.error(f"Strava token refresh request failed: {e!r}")
            raise RefreshFailed(None, repr(e)) from e

        if not response.is_success:
            logger.error(
                f"Strava token refresh failed: {response.status_code} {response.text}"
            )
            raise RefreshFailed(response.status_code, response.text)

        return response.json()
