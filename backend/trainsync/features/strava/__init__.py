"""
Strava integration module.

Usage:
    from trainsync.features.strava import StravaClient, TokenManager
    from trainsync.features.strava.sync import StravaSyncService

Components:
- TokenManager: Valid access tokens (refresh on demand)
- StravaClient: API client (activity list, detail, streams)
- WebhookReconciler: Push event handling
- StravaSyncService: Backfill / incremental / enrichment

Models:
- StravaAccount: Linked account and OAuth tokens
- Activity: Mirrored activity summary and detail
- ActivityStream: Per-sample channels of an activity
- SyncState: Per-user watermark and run status
"""

from .models import (
    StravaAccount,
    Activity,
    ActivityStream,
    SyncState,
)
from .exceptions import (
    StravaError,
    NotLinked,
    MissingRefreshToken,
    RefreshFailed,
    RemoteError,
    RateLimitError,
    PersistenceError,
    SignatureInvalid,
    SubscriptionVerificationFailed,
)
from .oauth import StravaOAuth
from .tokens import TokenManager
from .client import (
    StravaClient,
    StravaRateLimiter,
    rate_limiter,
)
from .repository import (
    StravaAccountRepository,
    ActivityRepository,
    ActivityStreamRepository,
    SyncStateRepository,
)
from .webhook import WebhookReconciler, WebhookAck

__all__ = [
    # Models
    "StravaAccount",
    "Activity",
    "ActivityStream",
    "SyncState",
    # Errors
    "StravaError",
    "NotLinked",
    "MissingRefreshToken",
    "RefreshFailed",
    "RemoteError",
    "RateLimitError",
    "PersistenceError",
    "SignatureInvalid",
    "SubscriptionVerificationFailed",
    # Auth
    "StravaOAuth",
    "TokenManager",
    # Client
    "StravaClient",
    "StravaRateLimiter",
    "rate_limiter",
    # Repositories
    "StravaAccountRepository",
    "ActivityRepository",
    "ActivityStreamRepository",
    "SyncStateRepository",
    # Webhooks
    "WebhookReconciler",
    "WebhookAck",
]
