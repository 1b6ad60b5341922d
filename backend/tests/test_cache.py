import pytest

from app.api.response_cache import parse_duration
from app.services.cache_service import generate_key, is_empty, related_patterns


@pytest.mark.parametrize(
    "args, expected",
    [
        (("products",), "products"),
        (("products", "detail:my-app", "anon"), "products:detail:my-app:anon"),
        (("bookmarks", "user:42", "*"), "bookmarks:user:42:*"),
        (("search", "q", "ai tools [beta]?"), r"search:q:ai tools \[beta\]\?"),
        (("products", None, "x"), "products:x"),
        (("products", "", None), "products"),
    ],
)
def test_generate_key(args, expected):
    assert generate_key(*args) == expected


def test_generate_key_escapes_globs_inside_components():
    assert generate_key("products", "detail:*evil*") == r"products:detail:\*evil\*"
    assert generate_key("search", "q", "a\\b") == r"search:q:a\\b"


def test_generate_key_keeps_distinct_components_distinct():
    keys = {generate_key("search", "q", q) for q in ("foo bar", "foo_bar", "foo*bar", "foo?bar", " foo bar")}
    assert len(keys) == 5


@pytest.mark.parametrize(
    "duration, seconds",
    [
        (45, 45),
        ("120", 120),
        ("30 minutes", 1800),
        ("1 hour", 3600),
        ("2h", 7200),
        ("10 sec", 10),
        ("1 day", 86400),
        ("soon", 300),
        ("5 fortnights", 300),
    ],
)
def test_parse_duration(duration, seconds):
    assert parse_duration(duration) == seconds


def test_is_empty():
    assert is_empty(None)
    assert is_empty([])
    assert is_empty({})
    assert is_empty("")
    assert not is_empty(0)
    assert not is_empty({"success": True})


def test_related_patterns():
    assert related_patterns("products:detail:app:*") == [
        "products:list:*", "products:trending:*", "recommendations:*",
    ]
    assert related_patterns("users:detail:u1:*") == ["bookmarks:user:u1:*", "recommendations:user:u1:*"]
    assert related_patterns("bookmarks:user:u1:*") == []


@pytest.mark.asyncio
async def test_set_get_and_ttl(ctx):
    cache = ctx.cache
    assert await cache.set("products:list:a", {"items": [1, 2]}, 60)
    assert await cache.get("products:list:a") == {"items": [1, 2]}
    assert 0 < await cache.ttl("products:list:a") <= 60
    assert await cache.get("products:list:missing") is None


@pytest.mark.asyncio
async def test_empty_values_are_not_stored(ctx):
    assert not await ctx.cache.set("products:list:empty", [], 60)
    assert not await ctx.cache.set("products:list:none", None, 60)
    assert await ctx.redis.exists("products:list:empty", "products:list:none") == 0


@pytest.mark.asyncio
async def test_corrupt_entry_is_dropped(ctx):
    await ctx.redis.set("products:list:bad", "{not json")
    assert await ctx.cache.get("products:list:bad") is None
    assert await ctx.redis.exists("products:list:bad") == 0


@pytest.mark.asyncio
async def test_disabled_cache_is_a_no_op(ctx):
    from app.services.cache_service import CacheService

    cache = CacheService(ctx.redis, enabled=False)
    assert not await cache.set("k", {"a": 1}, 60)
    assert await cache.get("k") is None
    assert await cache.smart_invalidate(["*"]) == 0


@pytest.mark.asyncio
async def test_smart_invalidate_patterns_tags_and_related(ctx):
    cache = ctx.cache
    await cache.set("products:detail:app:anon", {"a": 1}, 60, tags=["product:p1"])
    await cache.set("products:list:page1", {"a": 1}, 60)
    await cache.set("recommendations:user:u1:feed:10", {"a": 1}, 60, tags=["user:u1"])
    await cache.set("bookmarks:user:u2:x", {"a": 1}, 60)
    await cache.set("views:other", {"a": 1}, 60, tags=["product:p1"])

    cleared = await cache.smart_invalidate(["products:detail:app:*"], product_ids=["p1"])

    # detail + derived list/recommendation patterns + tagged entry
    assert cleared == 4
    assert await ctx.redis.exists("bookmarks:user:u2:x") == 1
    assert await ctx.redis.exists("products:list:page1", "recommendations:user:u1:feed:10", "views:other") == 0
    assert await ctx.redis.exists("tag:product:p1") == 0


@pytest.mark.asyncio
async def test_non_recursive_invalidation_leaves_related_entries(ctx):
    cache = ctx.cache
    await cache.set("products:detail:app:anon", {"a": 1}, 60)
    await cache.set("products:list:page1", {"a": 1}, 60)

    assert await cache.smart_invalidate(["products:detail:app:*"], recursive=False) == 1
    assert await ctx.redis.exists("products:list:page1") == 1


@pytest.mark.asyncio
async def test_delete_pattern_skips_tag_sets(ctx):
    await ctx.cache.set("products:detail:x:anon", {"a": 1}, 60, tags=["product:x"])
    assert await ctx.cache.delete_pattern("*") == 1
    assert await ctx.redis.exists("tag:product:x") == 1


@pytest.mark.asyncio
async def test_warm_cache_schedules_refresh_when_missing(ctx):
    calls = []

    async def fetch():
        calls.append(1)
        return [{"productId": "p1"}]

    assert await ctx.cache.warm_cache("recommendations:user:anon:trending:10", fetch, ttl=3600)
    await ctx.tasks.join()
    assert calls == [1]
    assert await ctx.cache.get("recommendations:user:anon:trending:10") == [{"productId": "p1"}]

    # fresh entries are left alone
    assert not await ctx.cache.warm_cache("recommendations:user:anon:trending:10", fetch, ttl=3600)
    await ctx.tasks.join()
    assert calls == [1]


@pytest.mark.asyncio
async def test_ping(ctx):
    assert await ctx.cache.ping()
