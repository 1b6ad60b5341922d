import pytest
from sqlalchemy import select

from app.models.product import Product
from app.models.recommendation_interaction import RecommendationInteraction
from app.models.recommendation_profile import RecommendationProfile
from app.models.view import View
from app.services.view_service import classify_source, viewer_key


def test_viewer_key():
    assert viewer_key("u1", "s1", "1.2.3.4") == "u:u1"
    assert viewer_key(None, "s1", "1.2.3.4") == viewer_key(None, "s1", "5.6.7.8")
    assert viewer_key(None, None, "1.2.3.4") != viewer_key(None, None, "5.6.7.8")
    assert viewer_key(None, None, None).startswith("a:")


@pytest.mark.parametrize(
    "source, referrer, expected",
    [
        ("recommendation", None, "recommendation"),
        ("bogus", None, "direct"),
        (None, "https://www.google.com/search?q=x", "search"),
        (None, "https://t.co/abc", "social"),
        (None, "https://blog.example.org/post", "external"),
    ],
)
def test_classify_source(source, referrer, expected):
    assert classify_source(source, referrer) == expected


@pytest.mark.asyncio
async def test_repeat_views_are_deduplicated(client, ctx, session_maker, make_user, make_product, auth):
    maker = await make_user()
    viewer = await make_user()
    product = await make_product(maker, "Looked At")
    url = f"/api/v1/views/products/{product.id}"

    r = await client.post(url, json={"source": "search"}, headers=auth(viewer))
    assert r.json()["data"] == {"recorded": True, "isDuplicate": False, "isBot": False, "views": {"total": 1, "unique": 1}}
    await ctx.tasks.join()

    r = await client.post(url, headers=auth(viewer))
    assert r.json()["data"]["isDuplicate"] is True
    assert r.json()["data"]["views"] == {"total": 1, "unique": 1}

    ctx.clock.advance(minutes=31)
    r = await client.post(url, headers=auth(viewer))
    assert r.json()["data"]["recorded"] is True
    assert r.json()["data"]["views"] == {"total": 2, "unique": 1}
    await ctx.tasks.join()

    async with session_maker() as db:
        stored = await db.get(Product, product.id)
        assert (stored.view_count, stored.unique_view_count) == (2, 1)
        assert sum(day["count"] for day in stored.view_history) == 2
        tracked = (await db.execute(
            select(RecommendationInteraction).where(RecommendationInteraction.user_id == viewer.id)
        )).scalars().all()
        assert [t.interaction_type for t in tracked] == ["view", "view"]


@pytest.mark.asyncio
async def test_view_pushes_totals_to_product_and_maker(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    viewer = await make_user()
    product = await make_product(maker, "Live Counter")
    watchers = ctx.events.subscribe(f"product:{product.id}")
    inbox = ctx.events.subscribe(f"user:{maker.id}")
    url = f"/api/v1/views/products/{product.id}"

    await client.post(url, headers=auth(viewer))
    await ctx.tasks.join()
    for sub in (watchers, inbox):
        message = sub.queue.get_nowait()
        assert message["event"] == "product:view:update"
        assert message["data"]["productId"] == product.id
        assert (message["data"]["count"], message["data"]["unique"]) == (1, 1)
        assert message["data"]["makerId"] == maker.id

    await client.post(url, headers=auth(viewer))
    await client.post(url, headers={"User-Agent": "curl/8.0"})
    assert watchers.queue.empty()
    assert inbox.queue.empty()

    await client.post(url, json={"sessionId": "someone-else"})
    assert watchers.queue.get_nowait()["data"]["count"] == 2


@pytest.mark.asyncio
async def test_views_alone_build_a_recommendation_profile(client, ctx, session_maker, make_user, make_product, auth):
    designer = await make_user()
    browser = await make_user()
    products = [await make_product(designer, f"Palette {i}", category="Design", tags=["ui"]) for i in range(3)]

    for product in products:
        await client.post(f"/api/v1/views/products/{product.id}", headers=auth(browser))
        await ctx.tasks.join()

    async with session_maker() as db:
        profile = (await db.execute(
            select(RecommendationProfile).where(RecommendationProfile.user_id == browser.id)
        )).scalar_one()
        assert profile.total_interactions == 3
        assert {p["key"]: p["score"] for p in profile.category_prefs} == {"Design": 0.12}


@pytest.mark.asyncio
async def test_anonymous_sessions_count_separately(client, make_user, make_product):
    maker = await make_user()
    product = await make_product(maker, "Window Shopping")
    url = f"/api/v1/views/products/{product.id}"

    await client.post(url, json={"sessionId": "sess-a"})
    r = await client.post(url, json={"sessionId": "sess-a"})
    assert r.json()["data"]["isDuplicate"] is True
    r = await client.post(url, json={"sessionId": "sess-b"})
    assert r.json()["data"]["views"] == {"total": 2, "unique": 2}


@pytest.mark.asyncio
async def test_bot_views_are_stored_but_not_counted(client, session_maker, make_user, make_product):
    maker = await make_user()
    product = await make_product(maker, "Crawled")
    url = f"/api/v1/views/products/{product.id}"

    for _ in range(2):
        r = await client.post(url, headers={"User-Agent": "curl/8.0"})
        assert r.json()["data"]["isBot"] is True
        assert r.json()["data"]["views"] == {"total": 0, "unique": 0}

    async with session_maker() as db:
        rows = (await db.execute(select(View).where(View.product_id == product.id))).scalars().all()
        assert len(rows) == 2
        assert all(v.is_bot for v in rows)
        assert (await db.get(Product, product.id)).view_count == 0


@pytest.mark.asyncio
async def test_view_of_missing_product(client):
    r = await client.post("/api/v1/views/products/does-not-exist")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_stats_visible_to_maker_only(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    other = await make_user()
    admin = await make_user(role="admin")
    product = await make_product(maker, "Charted")
    url = f"/api/v1/views/products/{product.id}"

    await client.post(url, json={"sessionId": "one", "viewDuration": 10})
    await client.post(url, json={"sessionId": "two", "viewDuration": 20, "referrer": "https://google.com/"})
    await client.post(url, headers={"User-Agent": "Googlebot/2.1"})

    stats_url = f"{url}/stats"
    assert (await client.get(stats_url)).status_code == 401
    assert (await client.get(stats_url, headers=auth(other))).status_code == 403

    r = await client.get(stats_url, params={"days": 7}, headers=auth(maker))
    assert r.status_code == 200
    stats = r.json()["data"]
    assert stats["totals"] == {"views": 2, "unique": 2, "periodViews": 2, "botViews": 1}
    assert stats["averageDuration"] == 15.0
    assert len(stats["daily"]) == 7
    assert sum(d["count"] for d in stats["daily"]) == 2
    assert {s["name"]: s["count"] for s in stats["sources"]} == {"direct": 1, "search": 1}

    assert (await client.get(stats_url, headers=auth(admin))).status_code == 200


@pytest.mark.asyncio
async def test_history_and_clear(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    viewer = await make_user()
    first = await make_product(maker, "First Look", category="Design")
    second = await make_product(maker, "Second Look")

    await client.post(f"/api/v1/views/products/{first.id}", headers=auth(viewer))
    await ctx.tasks.join()
    await client.post(f"/api/v1/views/products/{second.id}", headers=auth(viewer))
    await ctx.tasks.join()

    r = await client.get("/api/v1/views/me/history", headers=auth(viewer))
    items = r.json()["data"]
    assert [i["product"]["slug"] for i in items] == ["second-look", "first-look"]
    assert items[1]["product"]["category"] == "Design"

    r = await client.delete("/api/v1/views/me/history", headers=auth(viewer))
    assert r.json()["data"] == {"cleared": 2}

    r = await client.get("/api/v1/views/me/history", headers=auth(viewer))
    assert r.json()["data"] == []

    # counters keep the views
    r = await client.get("/api/v1/products/first-look")
    assert r.json()["data"]["views"] == 1
