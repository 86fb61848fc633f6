"""
API Router v1

Combines all route modules.
"""

from fastapi import APIRouter

from trainsync.api.v1.routes import strava, webhook

api_router = APIRouter()

api_router.include_router(webhook.router, tags=["Strava Webhook"])
api_router.include_router(strava.router, tags=["Strava"])
