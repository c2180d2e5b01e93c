"""
FastAPI dependencies. Injected into route handlers.

Tests swap backends with app.dependency_overrides[...] on these.
"""

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .cache import Cache, get_cache
from .config import get_settings
from .database import get_db as _get_db
from .flags import get_flags
from .guardrails import get_inspector


async def get_db() -> AsyncSession:
    """Yields an async DB session per request."""
    async for session in _get_db():
        yield session


def get_request_id(request: Request) -> str:
    """Correlation id set by the request-id middleware."""
    return getattr(request.state, "request_id", None) or "unknown"


def get_cache_dep() -> Cache:
    """Returns the active cache backend (Redis or in-process)."""
    return get_cache()


def get_session_store_dep():
    """Returns the active session store (SQL or in-memory)."""
    from ..services.session_store import get_session_store

    return get_session_store()


def get_tavus_dep():
    from ..services.tavus import get_tavus_client

    return get_tavus_client()


def get_orchestrator(
    store=Depends(get_session_store_dep),
    tavus=Depends(get_tavus_dep),
):
    from ..services.conversations import ConversationOrchestrator

    return ConversationOrchestrator(store, tavus, get_settings(), get_flags())


def get_webhook_processor(
    store=Depends(get_session_store_dep),
    cache: Cache = Depends(get_cache_dep),
):
    from ..services.webhooks import WebhookProcessor

    return WebhookProcessor(store, cache, get_settings(), get_flags(), get_inspector())
