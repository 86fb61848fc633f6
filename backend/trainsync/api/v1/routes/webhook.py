"""
Strava Webhook Routes

- GET /strava/webhook - Subscription validation (hub.challenge echo)
- POST /strava/webhook - Event delivery
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from trainsync.db.session import get_async_db
from trainsync.features.strava.exceptions import SignatureInvalid, SubscriptionVerificationFailed
from trainsync.features.strava.webhook import WebhookReconciler

logger = logging.getLogger(__name__)

router = APIRouter()


def get_webhook_reconciler(db: AsyncSession = Depends(get_async_db)) -> WebhookReconciler:
    return WebhookReconciler(db)


@router.get("/strava/webhook")
async def verify_subscription(
    mode: Optional[str] = Query(None, alias="hub.mode"),
    challenge: Optional[str] = Query(None, alias="hub.challenge"),
    verify_token: Optional[str] = Query(None, alias="hub.verify_token"),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler)
):
    """Answer Strava's subscription validation request."""
    try:
        return reconciler.verify_subscription(mode, verify_token, challenge)
    except SubscriptionVerificationFailed as e:
        logger.warning(f"Webhook subscription verification failed: {e}")
        raise HTTPException(status_code=403, detail="Forbidden")


@router.post("/strava/webhook")
async def receive_event(
    request: Request,
    x_strava_signature: Optional[str] = Header(None),
    reconciler: WebhookReconciler = Depends(get_webhook_reconciler)
):
    """
    Receive a Strava push event.

    Verified events are always acknowledged with 200, even when applying
    them failed.
    """
    raw_body = await request.body()
    try:
        ack = await reconciler.handle_event(raw_body, x_strava_signature)
    except SignatureInvalid:
        raise HTTPException(status_code=401, detail="Invalid signature")
    return ack.to_dict()
