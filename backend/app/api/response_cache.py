"""Response caching for API routes.

Routers built with ``route_class=CachedRoute`` honour two decorators on
their endpoints:

    @router.get("/bookmarks")
    @cache_response("30 minutes", key_builder=bookmarks_key)
    async def list_bookmarks(...): ...

``cache_response`` serves GET responses from the cache and stores 2xx
bodies on a miss. ``invalidate_cache`` clears patterns after a successful
write. Cache failures never fail the request.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.routing import APIRoute

from app.dependencies.auth import bearer_token
from app.errors import AppError
from app.services.auth_service import decode_access_token
from app.services.cache_service import generate_key, is_empty

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}
DURATION_UNITS = {
    "s": 1, "sec": 1, "second": 1, "seconds": 1,
    "m": 60, "min": 60, "minute": 60, "minutes": 60,
    "h": 3600, "hour": 3600, "hours": 3600,
    "d": 86400, "day": 86400, "days": 86400,
}
_DURATION = re.compile(r"^(\d+)\s*(\w+)$")

KeyBuilder = Callable[[Request, str | None], str]
TagBuilder = Callable[[Request, str | None, Any], Iterable[str]]
PatternBuilder = Callable[[Request, str | None], Iterable[str]]


def parse_duration(duration) -> int:
    """Seconds from an int or a string like ``"30 m"`` / ``"2 hours"``; 300 when unparseable."""
    if isinstance(duration, (int, float)):
        return int(duration)
    text = str(duration).strip()
    if text.isdigit():
        return int(text)
    match = _DURATION.match(text)
    if not match:
        logger.error("Invalid cache duration format: %s", duration)
        return DEFAULT_TTL
    unit = match.group(2).lower()
    if unit not in DURATION_UNITS:
        logger.error("Unknown cache duration unit: %s", unit)
        return DEFAULT_TTL
    return int(match.group(1)) * DURATION_UNITS[unit]


@dataclass
class CacheConfig:
    ttl: int
    key_builder: KeyBuilder | None = None
    tags: TagBuilder | None = None


def cache_response(duration="5 minutes", key_builder: KeyBuilder | None = None, tags: TagBuilder | None = None):
    config = CacheConfig(parse_duration(duration), key_builder, tags)

    def decorator(endpoint):
        endpoint.__cache_config__ = config
        return endpoint

    return decorator


def invalidate_cache(patterns: PatternBuilder):
    def decorator(endpoint):
        endpoint.__cache_invalidation__ = patterns
        return endpoint

    return decorator


def query_context(request: Request) -> str:
    """Digest of the sorted query parameters, distinct for every distinct query."""
    params = json.dumps(sorted(request.query_params.multi_items()), separators=(",", ":"))
    return hashlib.sha1(params.encode()).hexdigest()


def default_key(request: Request, user_id: str | None) -> str:
    return generate_key(request.url.path, user_id or "anon", query_context(request))


def caller_id(request: Request) -> str | None:
    """User id from the bearer token, without touching the database."""
    token = bearer_token(request)
    if not token:
        return None
    try:
        return decode_access_token(request.app.state.ctx.settings, token)["sub"]
    except AppError:
        return None


def _body(response: Response):
    if not isinstance(response, JSONResponse) or not response.body:
        return None
    try:
        return json.loads(response.body)
    except ValueError:
        return None


class CachedRoute(APIRoute):
    def get_route_handler(self) -> Callable:
        handler = super().get_route_handler()
        config: CacheConfig | None = getattr(self.endpoint, "__cache_config__", None)
        invalidation: PatternBuilder | None = getattr(self.endpoint, "__cache_invalidation__", None)
        if config is None and invalidation is None:
            return handler

        async def cached_handler(request: Request) -> Response:
            ctx = request.app.state.ctx
            method = request.method.upper()

            if config and method == "GET" and ctx.cache.enabled and not getattr(request.state, "is_bot", False):
                return await _serve_cached(request, handler, config, ctx)

            response = await handler(request)
            if invalidation and method in WRITE_METHODS and 200 <= response.status_code < 300:
                try:
                    patterns = list(invalidation(request, caller_id(request)))
                    await ctx.cache.smart_invalidate(patterns)
                except (AppError, TypeError, ValueError) as e:
                    logger.error("Cache invalidation after %s %s failed: %s", method, request.url.path, e)
            return response

        return cached_handler


async def _serve_cached(request: Request, handler: Callable, config: CacheConfig, ctx) -> Response:
    user_id = caller_id(request)
    key = config.key_builder(request, user_id) if config.key_builder else default_key(request, user_id)

    cached = await ctx.cache.get(key)
    if cached is not None:
        logger.debug("Cache hit: %s", key)
        return JSONResponse(cached, headers={"X-Cache": "HIT", "X-Cache-Key": key})

    logger.debug("Cache miss: %s", key)
    response = await handler(request)
    if 200 <= response.status_code < 300:
        body = _body(response)
        if is_empty(body):
            logger.debug("Skipping cache set for empty response: %s", key)
        else:
            tags = list(config.tags(request, user_id, body)) if config.tags else None
            await ctx.cache.set(key, body, config.ttl, tags=tags)
    response.headers["X-Cache"] = "MISS"
    response.headers["X-Cache-Key"] = key
    return response
