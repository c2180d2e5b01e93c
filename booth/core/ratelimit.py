"""
Fixed-window rate limiting per client IP + route.

Best effort anti-abuse only. Counters live in the shared Cache so they are
per-process unless FF_USE_REDIS is on.
"""

import logging
import math
import time

from fastapi import Depends, Request, Response

from .cache import Cache
from .config import get_settings
from .dependencies import get_cache_dep
from .errors import RateLimitError

logger = logging.getLogger(__name__)


def client_ip(request: Request) -> str:
    """
    The socket peer. Behind a proxy uvicorn rewrites it from X-Forwarded-For,
    but only for hops listed in FORWARDED_ALLOW_IPS, so a client cannot pick
    its own rate-limit key by sending the header.
    """
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def check_rate_limit(
    cache: Cache, key: str, limit: int, window_seconds: int
) -> tuple[bool, int, float]:
    """Count one hit. Returns (allowed, remaining, reset_at epoch seconds)."""
    count, reset_at = await cache.incr_window(key, window_seconds)
    allowed = count <= limit
    remaining = max(limit - count, 0)
    return allowed, remaining, reset_at


def rate_limit(route_name: str, limit_setting: str):
    """
    Build a FastAPI dependency enforcing `Settings.<limit_setting>` hits
    per RATE_LIMIT_WINDOW_SECONDS for each client IP on this route.
    """

    async def _dependency(
        request: Request,
        response: Response,
        cache: Cache = Depends(get_cache_dep),
    ) -> None:
        settings = get_settings()
        limit = getattr(settings, limit_setting)
        key = f"{client_ip(request)}:{route_name}"

        allowed, remaining, reset_at = await check_rate_limit(
            cache, key, limit, settings.rate_limit_window_seconds
        )

        headers = {
            "X-RateLimit-Remaining": str(remaining),
            "X-RateLimit-Reset": str(int(reset_at * 1000)),
        }
        if not allowed:
            retry_after = math.ceil(max(reset_at - time.time(), 0))
            headers["Retry-After"] = str(retry_after)
            logger.warning(
                "Rate limit hit key=%s requestId=%s retry_after=%ss",
                key, getattr(request.state, "request_id", "unknown"), retry_after,
            )
            raise RateLimitError(headers=headers)

        response.headers.update(headers)

    return _dependency
