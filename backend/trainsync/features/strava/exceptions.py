"""
Strava sync errors.

Every failure the sync subsystem reports derives from StravaError so that
routes and background workers can tell sync failures apart from bugs.
"""

from typing import Optional


class StravaError(Exception):
    """Base Strava error."""
    pass


class NotLinked(StravaError):
    """User has no linked Strava account."""

    def __init__(self, user_id: str):
        super().__init__(f"No Strava account linked for user {user_id}")
        self.user_id = user_id


class MissingRefreshToken(StravaError):
    """Linked account has no refresh token to renew its access token."""

    def __init__(self, user_id: str):
        super().__init__(f"Missing Strava refresh token for user {user_id}")
        self.user_id = user_id


class RefreshFailed(StravaError):
    """Strava token endpoint rejected the refresh or could not be reached."""

    def __init__(self, status: Optional[int], body: str):
        super().__init__(f"Strava token refresh failed: {status or 'no response'} {body}")
        self.status = status
        self.body = body


class RemoteError(StravaError):
    """
    Strava API call failed.

    `status` is None when no response arrived (timeout, connection error).
    """

    def __init__(self, status: Optional[int], body: str, endpoint: Optional[str] = None):
        where = f" {endpoint}" if endpoint else ""
        super().__init__(f"Strava{where} failed: {status or 'no response'} {body}")
        self.status = status
        self.body = body
        self.endpoint = endpoint


class RateLimitError(RemoteError):
    """Rate limit exceeded (locally or reported by Strava)."""
    pass


class PersistenceError(StravaError):
    """Storage layer failure while writing synced data."""
    pass


class SignatureInvalid(StravaError):
    """Webhook payload failed HMAC verification."""
    pass


class SubscriptionVerificationFailed(StravaError):
    """Webhook subscription handshake used a wrong mode or verify token."""
    pass
