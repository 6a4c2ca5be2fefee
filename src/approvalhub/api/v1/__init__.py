"""API v1 module."""

from fastapi import APIRouter

from approvalhub.api.v1.endpoints import approvals, auth, events, health, webhooks

api_router = APIRouter(prefix="/service")

api_router.include_router(auth.router)
api_router.include_router(approvals.router)
api_router.include_router(events.router)
api_router.include_router(webhooks.router)
api_router.include_router(health.router)
