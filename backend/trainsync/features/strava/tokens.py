"""
Access token lifecycle for linked Strava accounts.
"""

import logging
import time
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import NotLinked, MissingRefreshToken
from .models import StravaAccount
from .oauth import StravaOAuth
from .repository import StravaAccountRepository

logger = logging.getLogger(__name__)

# Refresh tokens that expire within this many seconds
TOKEN_SAFETY_WINDOW_SECONDS = 120


class TokenManager:
    """
    Hands out valid access tokens, refreshing them when close to expiry.

    No in-memory caching: every call re-checks the persisted expiry.

    Usage:
        tokens = TokenManager(db)
        access_token = await tokens.get_valid_access_token(user_id)
    """

    def __init__(
        self,
        db: AsyncSession,
        oauth: Optional[StravaOAuth] = None,
        clock: Callable[[], float] = time.time
    ):
        self.db = db
        self.accounts = StravaAccountRepository(db)
        self.oauth = oauth or StravaOAuth()
        self._clock = clock

    async def get_account(self, user_id: str) -> StravaAccount | None:
        return await self.accounts.get_by_user_id(user_id)

    def is_fresh(self, account: StravaAccount) -> bool:
        """Access token usable for at least the safety window."""
        return bool(
            account.access_token
            and account.expires_at
            and account.expires_at > self._clock() + TOKEN_SAFETY_WINDOW_SECONDS
        )

    async def get_valid_access_token(self, user_id: str) -> str:
        """
        Get a valid access token for user, refreshing if needed.

        Raises:
            NotLinked: User has no Strava account
            MissingRefreshToken: Token expired and cannot be renewed
            RefreshFailed: Strava rejected the refresh
        """
        account = await self.get_account(user_id)
        if not account:
            raise NotLinked(user_id)

        if self.is_fresh(account):
            return account.access_token

        if not account.refresh_token:
            raise MissingRefreshToken(user_id)

        logger.info(f"Refreshing Strava token for user {user_id}")
        new_tokens = await self.oauth.refresh_token(account.refresh_token)

        await self.accounts.update_tokens(
            account,
            access_token=new_tokens["access_token"],
            refresh_token=new_tokens.get("refresh_token", account.refresh_token),
            expires_at=new_tokens["expires_at"],
            token_type=new_tokens.get("token_type"),
            scope=new_tokens.get("scope"),
        )
        await self.db.commit()

        return new_tokens["access_token"]
