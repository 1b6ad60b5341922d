import pytest


@pytest.mark.asyncio
async def test_bookmark_list_is_cached_until_toggle(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    reader = await make_user()
    await make_product(maker, "Cache Me")
    await make_product(maker, "Cache You")
    await client.post("/api/v1/products/cache-me/bookmark", headers=auth(reader))
    await ctx.tasks.join()

    first = await client.get("/api/v1/bookmarks", headers=auth(reader))
    assert first.headers["X-Cache"] == "MISS"
    key = first.headers["X-Cache-Key"]
    assert key.startswith(f"bookmarks:user:{reader.id}:")
    assert 0 < await ctx.redis.ttl(key) <= 1800

    second = await client.get("/api/v1/bookmarks", headers=auth(reader))
    assert second.headers["X-Cache"] == "HIT"
    assert second.json() == first.json()

    await client.post("/api/v1/products/cache-you/bookmark", headers=auth(reader))
    await ctx.tasks.join()

    third = await client.get("/api/v1/bookmarks", headers=auth(reader))
    assert third.headers["X-Cache"] == "MISS"
    assert {i["slug"] for i in third.json()["data"]} == {"cache-me", "cache-you"}


@pytest.mark.asyncio
async def test_bookmark_cache_is_per_user(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    one = await make_user()
    two = await make_user()
    await make_product(maker, "Shared Shelf")
    await client.post("/api/v1/products/shared-shelf/bookmark", headers=auth(one))
    await ctx.tasks.join()

    r = await client.get("/api/v1/bookmarks", headers=auth(one))
    assert len(r.json()["data"]) == 1
    r = await client.get("/api/v1/bookmarks", headers=auth(two))
    assert r.headers["X-Cache"] == "MISS"
    assert r.json()["data"] == []


@pytest.mark.asyncio
async def test_product_detail_invalidated_by_upvote(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    voter = await make_user()
    await make_product(maker, "Hot Take")

    r = await client.get("/api/v1/products/hot-take")
    assert r.headers["X-Cache"] == "MISS"
    assert r.headers["X-Cache-Key"] == "products:detail:hot-take:anon"
    r = await client.get("/api/v1/products/hot-take")
    assert r.headers["X-Cache"] == "HIT"
    assert r.json()["data"]["upvotes"] == 0

    await client.post("/api/v1/products/hot-take/upvote", headers=auth(voter))
    await ctx.tasks.join()

    r = await client.get("/api/v1/products/hot-take")
    assert r.headers["X-Cache"] == "MISS"
    assert r.json()["data"]["upvotes"] == 1


@pytest.mark.asyncio
async def test_errors_are_not_cached(client, ctx):
    r = await client.get("/api/v1/products/nothing-here")
    assert r.status_code == 404
    assert await ctx.redis.exists("products:detail:nothing-here:anon") == 0


@pytest.mark.asyncio
async def test_bots_bypass_the_cache(client, ctx, make_user, make_product):
    maker = await make_user()
    await make_product(maker, "Crawlable")

    r = await client.get("/api/v1/products/crawlable", headers={"User-Agent": "curl/8.4.0"})
    assert r.status_code == 200
    assert "X-Cache" not in r.headers
    assert await ctx.redis.exists("products:detail:crawlable:anon") == 0


@pytest.mark.asyncio
async def test_project_list_invalidated_on_create(client, make_user, auth):
    owner = await make_user()
    payload = {"title": "Side Quest", "description": "weekend build"}
    await client.post("/api/v1/projects", json=payload, headers=auth(owner))

    r = await client.get("/api/v1/projects")
    assert r.headers["X-Cache"] == "MISS"
    assert r.headers["X-Cache-Key"].startswith("projects:list:anon:")
    assert (await client.get("/api/v1/projects")).headers["X-Cache"] == "HIT"

    await client.post("/api/v1/projects", json={**payload, "title": "Main Quest"}, headers=auth(owner))
    r = await client.get("/api/v1/projects")
    assert r.headers["X-Cache"] == "MISS"
    assert {p["title"] for p in r.json()["data"]} == {"Side Quest", "Main Quest"}


@pytest.mark.asyncio
async def test_queries_differing_only_in_spacing_get_their_own_entries(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    reader = await make_user()
    await make_product(maker, "foo bar kit", slug="foo-bar-kit")
    await make_product(maker, "foo_bar kit", slug="foo-underscore-kit")
    for slug in ("foo-bar-kit", "foo-underscore-kit"):
        await client.post(f"/api/v1/products/{slug}/bookmark", headers=auth(reader))
        await ctx.tasks.join()

    underscored = await client.get("/api/v1/bookmarks", params={"search": "foo_bar"}, headers=auth(reader))
    spaced = await client.get("/api/v1/bookmarks", params={"search": "foo bar"}, headers=auth(reader))
    globbed = await client.get("/api/v1/bookmarks", params={"search": "foo*bar"}, headers=auth(reader))

    assert [r.headers["X-Cache"] for r in (underscored, spaced, globbed)] == ["MISS", "MISS", "MISS"]
    assert len({r.headers["X-Cache-Key"] for r in (underscored, spaced, globbed)}) == 3
    assert [i["slug"] for i in underscored.json()["data"]] == ["foo-underscore-kit"]
    assert [i["slug"] for i in spaced.json()["data"]] == ["foo-bar-kit"]
