"""
Main API router. Mounts all sub-routers.
"""

from fastapi import APIRouter

router = APIRouter()


# ── Health ───────────────────────────────────────────────────────────

@router.get("/healthz")
async def healthz():
    return {"ok": True}


# ── API routes (public, no auth) ────────────────────────────────────

from .apps import apps_router
from .conversations import conversations_router
from .sessions import sessions_router
from .webhooks import webhooks_router

router.include_router(conversations_router, prefix="/api")
router.include_router(sessions_router, prefix="/api")
router.include_router(webhooks_router, prefix="/api")
router.include_router(apps_router, prefix="/api")
