from datetime import timedelta

import pytest
from sqlalchemy import select

from app.models.recommendation_profile import RecommendationProfile
from app.services import recommendation_scoring as scoring
from app.services.clock import utcnow
from app.services.interest_profile_service import Signal, build_preferences, prefs_to_map
from app.services.recommendation_tracking import engagement_quality, nearest_impression, normalize_strategy

NOW = utcnow()


def candidate(pid, category="X", maker="m1", tags=(), upvotes=0, views=0, age_days=0.0):
    return scoring.Candidate(
        id=pid, maker_id=maker, category=category, tags=list(tags),
        upvotes=upvotes, views=views, created_at=NOW - timedelta(days=age_days),
    )


def scored(pid, score, category, maker, tags=()):
    return scoring.Scored(pid, score, "", "test", category, maker, list(tags))


# --- scoring ---

def test_allocate_quotas():
    assert scoring.allocate_quotas(10) == {"trending": 3, "new": 2, "personalized": 4, "discovery": 1}
    assert scoring.allocate_quotas(7) == {"trending": 2, "new": 1, "personalized": 3, "discovery": 1}
    assert sum(scoring.allocate_quotas(13).values()) == 13


def test_diversify_spreads_categories_and_makers():
    items = [scored("A", 0.9, "X", "m1"), scored("B", 0.85, "X", "m1"), scored("C", 0.8, "Y", "m2")]
    assert [s.product_id for s in scoring.diversify(items)] == ["A", "C", "B"]


def test_jaccard():
    assert scoring.jaccard(["a", "b"], ["b", "c"]) == pytest.approx(1 / 3)
    assert scoring.jaccard([], ["a"]) == 0.0


def test_trending_requires_minimum_activity():
    pool = [
        candidate("hot", views=50, upvotes=10),
        candidate("quiet", views=4, upvotes=10),
        candidate("unloved", views=50, upvotes=1),
    ]
    result = scoring.score_trending(pool, NOW)
    assert [s.product_id for s in result] == ["hot"]
    assert result[0].score == pytest.approx(1.0)


def test_new_only_covers_last_thirty_days():
    pool = [candidate("fresh"), candidate("week", age_days=7), candidate("stale", age_days=31)]
    result = scoring.score_new(pool, NOW)
    assert [s.product_id for s in result] == ["fresh", "week"]
    assert result[0].score == pytest.approx(0.7, abs=1e-3)


def test_personalized_scores_and_floor():
    pool = [
        candidate("same-maker", "AI/ML", "M", ["ai"]),
        candidate("other-maker", "AI/ML", "N", ["ai"]),
        candidate("design", "Design", "D", ["ui"]),
    ]
    result = scoring.score_personalized(
        pool, {"AI/ML": 0.4, "Design": 0.12}, {"ai": 0.4, "ui": 0.12}, {"M"}, {"AI/ML"},
    )
    assert [(s.product_id, round(s.score, 2)) for s in result] == [("same-maker", 0.64), ("other-maker", 0.56)]
    assert all(s.score >= scoring.MIN_SCORE for s in result)


def test_eligible_filters_own_unpublished_and_excluded():
    pool = [candidate("mine", maker="me"), candidate("hidden"), candidate("ok")]
    pool[1].status = "Draft"
    assert [c.id for c in scoring.eligible(pool, "me", {"nope"})] == ["ok"]
    assert [c.id for c in scoring.eligible(pool, None, {"ok"})] == ["mine"]


def test_compose_feed_dedupes_and_backfills():
    pools = {
        "trending": [scored("p1", 0.9, "X", "a"), scored("p2", 0.8, "Y", "b")],
        "new": [scored("p1", 0.95, "X", "a"), scored("p3", 0.7, "Z", "c")],
        "personalized": [scored("p4", 0.6, "W", "d")],
        "discovery": [],
    }
    feed = scoring.compose_feed(pools, 4)
    by_id = {s.product_id: s for s in feed}
    assert set(by_id) == {"p1", "p2", "p3", "p4"}
    assert by_id["p1"].score == 0.95
    assert by_id["p1"].strategy == "trending"


def test_full_pools_fill_the_feed_by_ratio():
    categories = ["AI/ML", "Design", "Fintech", "Tools"]
    pools = {
        strategy: [
            scored(f"{strategy}-{i}", 0.9 - i * 0.05, categories[i % 4], f"maker-{i % 5}", [f"t{i % 3}"])
            for i in range(12)
        ]
        for strategy in ("trending", "new", "personalized", "discovery")
    }
    # personalized also ranks two trending picks highly; they stay trending
    pools["personalized"][:0] = [
        scored("trending-0", 0.99, "AI/ML", "maker-0"),
        scored("trending-1", 0.98, "Design", "maker-1"),
    ]

    feed = scoring.compose_feed(pools, 10)
    assert len(feed) == 10
    assert len({s.product_id for s in feed}) == 10

    counts = {name: sum(1 for s in feed if s.strategy == name) for name in scoring.FEED_RATIOS}
    for name, expected in {"trending": 3, "new": 2, "personalized": 4, "discovery": 1}.items():
        assert abs(counts[name] - expected) <= 1, (name, counts)
    assert sum(1 for s in feed if s.product_id.startswith("personalized-")) == 4


# --- tracking ---

def test_engagement_quality():
    assert engagement_quality("click") == 3.0
    assert engagement_quality("click", 1.0) == 2.4
    assert engagement_quality("click", 11) == 3.0
    assert engagement_quality("remove_upvote", 4.0) == pytest.approx(1.2)
    assert engagement_quality("dismiss") == 0.0
    assert engagement_quality("mystery") == 2.0


@pytest.mark.parametrize(
    "name, expected",
    [("feed", "diversified"), ("discovery", "exploratory"), ("", "default"), (None, "default"),
     ("Personalized", "personalized"), ("popular", "trending"), ("whatever", "default")],
)
def test_normalize_strategy(name, expected):
    assert normalize_strategy(name) == expected


def test_nearest_impression():
    impressions = [
        ("old", NOW - timedelta(minutes=40)),
        ("recent", NOW - timedelta(minutes=5)),
        ("earlier", NOW - timedelta(minutes=20)),
        ("future", NOW + timedelta(minutes=1)),
    ]
    assert nearest_impression(impressions, NOW) == "recent"
    assert nearest_impression(impressions[:1], NOW) is None


# --- preferences ---

def test_build_preferences():
    signals = [Signal("view", "Design", ["ui"], NOW) for _ in range(3)]
    signals += [Signal("upvote", "AI/ML", ["ai"], NOW) for _ in range(2)]
    signals.append(Signal("dismiss", "Spam", ["junk"], NOW))
    categories, tags = build_preferences(signals)

    assert prefs_to_map(categories) == {"AI/ML": 0.4, "Design": 0.12}
    assert prefs_to_map(tags) == {"ai": 0.4, "ui": 0.12}
    assert categories[0]["count"] == 2
    assert categories[0]["lastInteraction"] == NOW.isoformat()


def test_declared_interests_count_toward_preferences():
    categories, tags = build_preferences([], [{"name": "Fintech", "strength": 10}, {"name": "Bad", "strength": "x"}])
    assert prefs_to_map(categories) == {"Fintech": 0.4}
    assert prefs_to_map(tags) == {"fintech": 0.5}


# --- API ---

@pytest.mark.asyncio
async def test_personalized_feed_follows_upvotes(client, ctx, session_maker, make_user, make_product, auth):
    me = await make_user()
    ai_maker = await make_user()
    other_maker = await make_user()
    designer = await make_user()

    designs = [await make_product(designer, f"Design Kit {i}", category="Design", tags=["ui"]) for i in range(1, 4)]
    liked = [await make_product(ai_maker, f"Model Hub {i}", category="AI/ML", tags=["ai"]) for i in range(1, 3)]
    unseen = await make_product(ai_maker, "Model Hub 3", category="AI/ML", tags=["ai"])
    elsewhere = await make_product(other_maker, "Agent Forge", category="AI/ML", tags=["ai"])

    for product in designs:
        await client.post(f"/api/v1/views/products/{product.id}", headers=auth(me))
        await ctx.tasks.join()
    for product in liked:
        await client.post(f"/api/v1/products/{product.slug}/upvote", headers=auth(me))
        await ctx.tasks.join()

    async with session_maker() as db:
        built = (await db.execute(
            select(RecommendationProfile).where(RecommendationProfile.user_id == me.id)
        )).scalar_one()
        assert built.total_interactions == 5
        assert prefs_to_map(built.category_prefs) == {"AI/ML": 0.4, "Design": 0.12}

    r = await client.post("/api/v1/recommendations/profile/rebuild", headers=auth(me))
    profile = r.json()["data"]
    assert profile["totalInteractions"] == 5
    assert prefs_to_map(profile["categoryPreferences"]) == {"AI/ML": 0.4, "Design": 0.12}

    r = await client.get("/api/v1/recommendations/personalized", headers=auth(me))
    items = r.json()["data"]
    assert [i["productId"] for i in items] == [unseen.id, elsewhere.id]
    assert items[0]["score"] == pytest.approx(0.64)
    assert items[0]["product"]["category"] == "AI/ML"

    r = await client.get("/api/v1/recommendations/feed", headers=auth(me))
    feed = r.json()["data"]
    picks = [i for i in feed if i["strategy"] == "personalized"]
    assert any(i["product"]["category"] == "AI/ML" and i["score"] >= 0.5 for i in picks)

    async with session_maker() as db:
        stored = (await db.execute(
            select(RecommendationProfile).where(RecommendationProfile.user_id == me.id)
        )).scalar_one()
        assert {r["productId"] for r in stored.recommended_products} >= {unseen.id, elsewhere.id}


@pytest.mark.asyncio
async def test_click_is_attributed_to_impression(client, ctx, make_user, make_product, auth):
    maker = await make_user()
    me = await make_user()
    product = await make_product(maker, "Seen In Feed")
    url = "/api/v1/recommendations/interactions"

    r = await client.post(
        url, json={"productId": product.id, "interactionType": "impression", "recommendationType": "feed", "position": 2},
        headers=auth(me),
    )
    assert r.status_code == 201
    impression = r.json()["data"]
    assert impression["recommendationType"] == "diversified"
    assert impression["engagementQuality"] == 1.0

    ctx.clock.advance(minutes=2)
    r = await client.post(url, json={"productId": product.id, "interactionType": "click"}, headers=auth(me))
    click = r.json()["data"]
    assert click["attributedImpressionId"] == impression["id"]
    assert click["engagementQuality"] == 2.4
    assert click["recommendationType"] == "default"

    ctx.clock.advance(minutes=31)
    r = await client.post(url, json={"productId": product.id, "interactionType": "click"}, headers=auth(me))
    assert r.json()["data"]["attributedImpressionId"] is None


@pytest.mark.asyncio
async def test_interaction_validation(client, make_user, make_product, auth):
    maker = await make_user()
    me = await make_user()
    product = await make_product(maker, "Strict")
    url = "/api/v1/recommendations/interactions"

    r = await client.post(url, json={"productId": product.id, "interactionType": "stare"}, headers=auth(me))
    assert r.status_code == 400
    r = await client.post(url, json={"productId": "missing", "interactionType": "view"}, headers=auth(me))
    assert r.status_code == 404
    r = await client.post(url, json={"productId": product.id, "interactionType": "view"})
    assert r.status_code == 401
    r = await client.get("/api/v1/recommendations/bogus")
    assert r.status_code == 400
    assert r.json()["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_dismissed_products_are_excluded(client, make_user, make_product, auth):
    maker = await make_user()
    me = await make_user()
    keep = await make_product(maker, "Keeper")
    drop = await make_product(maker, "Dropper")

    r = await client.get("/api/v1/recommendations/new", headers=auth(me))
    assert {i["productId"] for i in r.json()["data"]} == {keep.id, drop.id}

    r = await client.post(f"/api/v1/recommendations/dismiss/{drop.id}", headers=auth(me))
    assert r.json()["data"]["dismissedProducts"] == [drop.id]

    r = await client.get("/api/v1/recommendations/new", headers=auth(me))
    assert [i["productId"] for i in r.json()["data"]] == [keep.id]


@pytest.mark.asyncio
async def test_anonymous_strategies(client, ctx, make_user, make_product):
    maker = await make_user()
    await make_product(maker, "Brand New")

    r = await client.get("/api/v1/recommendations/collaborative")
    assert r.json()["data"] == []

    r = await client.get("/api/v1/recommendations/new")
    assert [i["product"]["slug"] for i in r.json()["data"]] == ["brand-new"]
    assert await ctx.redis.exists("recommendations:user:anon:new:10") == 1

    # no trending activity yet, so anonymous personalized falls back to an empty trending list
    r = await client.get("/api/v1/recommendations/personalized")
    assert r.json()["data"] == []


@pytest.mark.asyncio
async def test_similar_products(client, make_user, make_product):
    maker = await make_user()
    other = await make_user()
    target = await make_product(maker, "Vector DB", category="AI/ML", tags=["ai", "db"])
    twin = await make_product(maker, "Vector Cache", category="AI/ML", tags=["ai", "db"])
    await make_product(other, "Paint App", category="Design", tags=["art"])

    r = await client.get(f"/api/v1/recommendations/similar/{target.id}")
    items = r.json()["data"]
    assert [i["productId"] for i in items] == [twin.id]
    assert items[0]["score"] == pytest.approx(1.0)

    r = await client.get("/api/v1/recommendations/similar/nope")
    assert r.status_code == 404
