"""
Strava webhook reconciliation.

Applies push events (activity create / update / delete) to the local
mirror one activity at a time. Events are always acknowledged once the
signature checks out: a missed event is repaired by the next incremental
sync, while an error response would only make Strava retry.
"""

import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from trainsync.config import settings
from .exceptions import StravaError, SignatureInvalid, SubscriptionVerificationFailed
from .repository import ActivityRepository, StravaAccountRepository
from .sync.service import StravaSyncService

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


@dataclass
class WebhookAck:
    """Acknowledgement returned to Strava (always HTTP 200)."""
    status: str                  # processed | ignored | error
    action: Optional[str] = None  # synced | deleted | skipped
    detail: Optional[str] = None

    def to_dict(self) -> dict:
        return {"status": self.status, "action": self.action, "detail": self.detail}


def compute_signature(secret: str, raw_body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: Optional[str], raw_body: bytes, header: Optional[str]) -> None:
    """
    Check the X-Strava-Signature header against the raw body.

    Accepts "sha256=<hex>" or bare hex.

    Raises:
        SignatureInvalid: Missing secret, missing header, bad hex or mismatch
    """
    if not secret:
        raise SignatureInvalid("Webhook signing secret is not configured")
    if not header:
        raise SignatureInvalid("Missing signature header")

    provided = header.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]

    try:
        provided_bytes = bytes.fromhex(provided)
    except ValueError:
        raise SignatureInvalid("Signature is not valid hex")

    expected = bytes.fromhex(compute_signature(secret, raw_body))
    if not hmac.compare_digest(provided_bytes, expected):
        raise SignatureInvalid("Signature mismatch")


def _became_private(updates: Optional[dict]) -> bool:
    if not isinstance(updates, dict):
        return False
    value = updates.get("private")
    return value is True or (isinstance(value, str) and value.lower() == "true")


class WebhookReconciler:
    """
    Handles Strava push subscription traffic.

    Usage:
        reconciler = WebhookReconciler(db)
        ack = await reconciler.handle_event(raw_body, signature_header)
    """

    def __init__(
        self,
        db: AsyncSession,
        sync_service: Optional[StravaSyncService] = None,
        secret: Optional[str] = None,
        verify_token: Optional[str] = None
    ):
        self.db = db
        self.sync_service = sync_service or StravaSyncService(db)
        self.secret = secret if secret is not None else settings.webhook_signing_secret
        self.verify_token = (
            verify_token if verify_token is not None
            else settings.strava_webhook_verify_token
        )
        self.accounts = StravaAccountRepository(db)
        self.activities = ActivityRepository(db)

    def verify_signature(self, raw_body: bytes, header: Optional[str]) -> None:
        """Check a delivery against the configured signing secret."""
        verify_signature(self.secret, raw_body, header)

    # -------------------------------------------------------------------------
    # Subscription handshake
    # -------------------------------------------------------------------------

    def verify_subscription(
        self,
        mode: Optional[str],
        verify_token: Optional[str],
        challenge: Optional[str]
    ) -> dict:
        """
        Answer Strava's subscription validation GET.

        Raises:
            SubscriptionVerificationFailed: Wrong mode or verify token
        """
        if (
            mode == "subscribe"
            and self.verify_token
            and verify_token
            and hmac.compare_digest(verify_token, self.verify_token)
        ):
            return {"hub.challenge": challenge}
        raise SubscriptionVerificationFailed("Invalid webhook verification request")

    # -------------------------------------------------------------------------
    # Event delivery
    # -------------------------------------------------------------------------

    async def handle_event(self, raw_body: bytes, signature: Optional[str]) -> WebhookAck:
        """
        Verify and apply one webhook event.

        Raises:
            SignatureInvalid: Before any parsing or database access
        """
        try:
            self.verify_signature(raw_body, signature)
        except SignatureInvalid as e:
            logger.warning(f"Rejected Strava webhook: {e}")
            raise

        try:
            event = json.loads(raw_body)
        except (UnicodeDecodeError, ValueError):
            logger.warning("Strava webhook body is not valid JSON, ignoring")
            return WebhookAck(status="ignored", detail="malformed payload")

        if not isinstance(event, dict) or event.get("object_type") != "activity":
            return WebhookAck(status="ignored", detail="not an activity event")

        aspect = event.get("aspect_type")
        activity_id = str(event.get("object_id"))
        logger.info(
            f"Strava webhook: {aspect} activity {activity_id} "
            f"owner {event.get('owner_id')}"
        )

        try:
            action = await self._dispatch(aspect, activity_id, event)
        except StravaError as e:
            logger.error(f"Webhook {aspect} for activity {activity_id} failed: {e}")
            await self.db.rollback()
            return WebhookAck(status="error", detail=str(e))
        except Exception:
            logger.exception(f"Unexpected webhook failure for activity {activity_id}")
            await self.db.rollback()
            return WebhookAck(status="error", detail="internal error")

        return WebhookAck(status="processed", action=action)

    async def _dispatch(self, aspect: Optional[str], activity_id: str, event: dict) -> str:
        if aspect == "delete":
            return await self._delete(activity_id)

        if aspect == "update" and _became_private(event.get("updates")):
            return await self._delete(activity_id)

        if aspect in ("create", "update"):
            return await self._sync(activity_id, event.get("owner_id"))

        logger.info(f"Unknown webhook aspect {aspect!r}, ignoring")
        return "skipped"

    async def _delete(self, activity_id: str) -> str:
        """Delete locally; an already absent activity counts as done."""
        existed = await self.activities.delete_activity(activity_id)
        await self.db.commit()
        if not existed:
            logger.debug(f"Activity {activity_id} already absent")
        return "deleted"

    async def _sync(self, activity_id: str, owner_id) -> str:
        account = await self.accounts.get_by_athlete_id(str(owner_id))
        if not account:
            logger.info(f"No linked account for athlete {owner_id}, skipping")
            return "skipped"

        await self.sync_service.sync_activity(account.user_id, activity_id)
        return "synced"
