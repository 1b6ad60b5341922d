"""Redis-backed cache with TTLs, tag sets and pattern invalidation.

Every public method swallows Redis errors after logging them: a broken cache
degrades to a miss, never to a failed request.
"""

import json
import logging
import re
from typing import Any, Awaitable, Callable, Iterable

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from app.services.task_pool import TaskPool

logger = logging.getLogger(__name__)

_GLOB = re.compile(r"([\\*?\[\]])")

TAG_PREFIX = "tag:"
CACHE_ERRORS = (RedisError, OSError, TypeError, ValueError)


def _clean(part: str) -> str:
    part = str(part)
    if part == "*":
        return part
    return _GLOB.sub(r"\\\1", part)


def generate_key(namespace: str, scope: str | None = None, variant: str | None = None) -> str:
    """Build ``namespace[:scope][:variant]`` with glob characters escaped.

    A component that is exactly ``*`` is kept so the same helper builds
    invalidation patterns.
    """
    parts = [_clean(namespace)]
    for part in (scope, variant):
        if part is not None and part != "":
            parts.append(_clean(part))
    return ":".join(parts)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (list, tuple, dict, set, str)):
        return len(value) == 0
    return False


def related_patterns(pattern: str) -> list[str]:
    """Patterns whose entries are derived from the entries matched by ``pattern``."""
    related = set()
    if pattern.startswith("products:detail:"):
        related.update({"products:list:*", "products:trending:*", "recommendations:*"})
    if pattern.startswith("products:"):
        related.update({"products:list:*", "products:trending:*"})
    if pattern.startswith("users:detail:"):
        match = re.match(r"^users:detail:([^:*]+)", pattern)
        if match:
            related.add(f"recommendations:user:{match.group(1)}:*")
            related.add(f"bookmarks:user:{match.group(1)}:*")
    related.discard(pattern)
    return sorted(related)


class CacheService:
    def __init__(self, redis: aioredis.Redis | None, tasks: TaskPool | None = None, enabled: bool = True):
        self.redis = redis
        self.tasks = tasks
        self.enabled = enabled and redis is not None

    generate_key = staticmethod(generate_key)

    async def get(self, key: str) -> Any | None:
        if not self.enabled or not key:
            return None
        try:
            raw = await self.redis.get(key)
        except CACHE_ERRORS as e:
            logger.error("Cache GET error for %s: %s", key, e)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.error("Cache entry %s is not valid JSON, dropping it", key)
            await self.delete(key)
            return None

    async def set(self, key: str, value: Any, ttl: int, tags: Iterable[str] | None = None) -> bool:
        """Store ``value`` for ``ttl`` seconds. Empty collections are never stored."""
        if not self.enabled or not key:
            return False
        if is_empty(value):
            logger.debug("Skipping cache set for empty value: %s", key)
            return False
        try:
            payload = json.dumps(value, default=str)
            await self.redis.set(key, payload, ex=max(1, int(ttl)))
            for tag in tags or ():
                tag_key = f"{TAG_PREFIX}{tag}"
                await self.redis.sadd(tag_key, key)
                # tag sets outlive their members so stale members are harmless
                current = await self.redis.ttl(tag_key)
                if current is None or current < ttl:
                    await self.redis.expire(tag_key, max(1, int(ttl)))
            return True
        except CACHE_ERRORS as e:
            logger.error("Cache SET error for %s: %s", key, e)
            return False

    async def delete(self, *keys: str) -> int:
        if not self.enabled or not keys:
            return 0
        try:
            return await self.redis.delete(*keys)
        except CACHE_ERRORS as e:
            logger.error("Cache DEL error for %s: %s", keys, e)
            return 0

    async def ttl(self, key: str) -> int:
        if not self.enabled:
            return -2
        try:
            return await self.redis.ttl(key)
        except CACHE_ERRORS as e:
            logger.error("Cache TTL error for %s: %s", key, e)
            return -2

    async def delete_pattern(self, pattern: str) -> int:
        if not self.enabled:
            return 0
        deleted = 0
        try:
            batch = []
            async for key in self.redis.scan_iter(match=pattern, count=500):
                if key.startswith(TAG_PREFIX):
                    continue
                batch.append(key)
                if len(batch) >= 500:
                    deleted += await self.redis.delete(*batch)
                    batch = []
            if batch:
                deleted += await self.redis.delete(*batch)
        except CACHE_ERRORS as e:
            logger.error("Cache pattern delete error for %s: %s", pattern, e)
        return deleted

    async def delete_tag(self, tag: str) -> int:
        if not self.enabled:
            return 0
        tag_key = f"{TAG_PREFIX}{tag}"
        try:
            members = await self.redis.smembers(tag_key)
            deleted = await self.redis.delete(*members) if members else 0
            await self.redis.delete(tag_key)
            return deleted
        except CACHE_ERRORS as e:
            logger.error("Cache tag delete error for %s: %s", tag, e)
            return 0

    async def smart_invalidate(
        self,
        patterns: Iterable[str],
        product_ids: Iterable[str] = (),
        user_ids: Iterable[str] = (),
        recursive: bool = True,
    ) -> int:
        """Drop every key matching any glob in ``patterns`` and every key tagged
        with one of the given product or user ids.

        When a pattern actually removed keys, patterns derived from it are
        cleared as well.
        """
        queue = [p for p in dict.fromkeys(patterns) if p]
        seen = set()
        total = 0
        while queue:
            pattern = queue.pop(0)
            if pattern in seen:
                continue
            seen.add(pattern)
            cleared = await self.delete_pattern(pattern)
            total += cleared
            if cleared and recursive:
                queue.extend(p for p in related_patterns(pattern) if p not in seen)

        for product_id in product_ids:
            total += await self.delete_tag(f"product:{product_id}")
        for user_id in user_ids:
            total += await self.delete_tag(f"user:{user_id}")

        if total:
            logger.info("Cache invalidation cleared %d keys (%d patterns)", total, len(seen))
        return total

    async def invalidate_product(self, product_id: str, slug: str | None = None, maker_id: str | None = None) -> int:
        patterns = [
            generate_key("products", "list", "*"),
            generate_key("products", "trending", "*"),
            generate_key("products", "featured", "*"),
            generate_key("products", "new", "*"),
            generate_key("products", "search", "*"),
            "products:category:*",
            "products:maker:*",
            "products:user:*",
            generate_key("views", f"product:{product_id}:stats", "*"),
            generate_key("recommendations", "*"),
        ]
        if slug:
            patterns.insert(0, generate_key("products", f"detail:{slug}", "*"))
        if maker_id:
            patterns.append(generate_key("products", f"user:{maker_id}", "*"))
        return await self.smart_invalidate(patterns, product_ids=[product_id])

    async def invalidate_view_caches(self, product_id: str, user_id: str | None = None) -> int:
        patterns = [
            generate_key("views", f"product:{product_id}:stats", "*"),
            generate_key("products", "trending", "*"),
        ]
        if user_id:
            patterns.append(generate_key("views", f"user:{user_id}:history", "*"))
            patterns.append(generate_key("recommendations", f"user:{user_id}", "*"))
        return await self.smart_invalidate(patterns, recursive=False)

    async def warm_cache(self, key: str, fetcher: Callable[[], Awaitable[Any]], ttl: int = 3600) -> bool:
        """Schedule ``fetcher`` to repopulate ``key`` when it is missing or close to expiry.

        Returns whether a refresh was scheduled.
        """
        if not self.enabled or self.tasks is None:
            return False
        remaining = await self.ttl(key)
        if remaining > max(60, ttl // 10):
            logger.debug("Cache warm skipped, %s still fresh (%ds)", key, remaining)
            return False

        async def _refresh():
            data = await fetcher()
            if is_empty(data):
                logger.warning("Cache warm fetcher returned nothing for %s", key)
                return
            await self.set(key, data, ttl)
            logger.info("Cache warmed: %s", key)

        return self.tasks.submit(f"warm:{key}", _refresh)

    async def ping(self) -> bool:
        if self.redis is None:
            return False
        try:
            return bool(await self.redis.ping())
        except CACHE_ERRORS:
            return False
