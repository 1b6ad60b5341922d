"""Redis-backed per-client request quotas."""

import asyncio
import logging
import time
from typing import Callable, Iterable

from fastapi import Depends, Request
from redis.exceptions import RedisError

from app.context import AppContext, get_context
from app.errors import RateLimitedError

logger = logging.getLogger(__name__)

# expired local windows are swept once this many clients are tracked
LOCAL_PRUNE_THRESHOLD = 1024

_local_counters: dict[str, tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def client_identifier(request: Request, trusted_proxies: Iterable[str] | None = None) -> str:
    """Client address. ``X-Forwarded-For`` counts only when the peer is a trusted proxy."""
    if trusted_proxies is None:
        trusted_proxies = request.app.state.ctx.settings.trusted_proxies
    trusted = set(trusted_proxies)
    peer = request.client.host if request.client and request.client.host else None

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and peer in trusted:
        hops = [h.strip() for h in forwarded.split(",") if h.strip()]
        # the nearest hop our own proxies did not add is the real client
        for hop in reversed(hops):
            if hop not in trusted:
                return hop
        if hops:
            return hops[0]
    return peer or "unknown"


def _prune_local_counters(now: float):
    for key in [k for k, (_, reset_at) in _local_counters.items() if now >= reset_at]:
        del _local_counters[key]


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        if len(_local_counters) >= LOCAL_PRUNE_THRESHOLD:
            _prune_local_counters(now)
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


def rate_limit(prefix: str, limit: int | None = None, window_seconds: int | None = None) -> Callable:
    """Return a dependency enforcing ``limit`` requests per client per window.

    Limits default to the OTP quota settings.
    """

    async def _dependency(request: Request, ctx: AppContext = Depends(get_context)):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        max_requests = limit or ctx.settings.otp_ip_limit
        window = window_seconds or ctx.settings.otp_ip_window_seconds
        key = f"rate:{prefix}:{client_identifier(request, ctx.settings.trusted_proxies)}"

        try:
            if ctx.redis is None:
                raise RedisError("no redis client")
            current = await ctx.redis.incr(key)
            if current == 1:
                await ctx.redis.expire(key, window)
            allowed = current <= max_requests
        except (RedisError, OSError) as e:
            logger.warning("Rate limiter falling back to local counters: %s", e)
            allowed = await _consume_local_quota(key, max_requests, window)

        if not allowed:
            raise RateLimitedError(
                f"Too many requests for {prefix}. Try again later.", "IP_RATE_LIMIT_EXCEEDED",
            )

    return _dependency
