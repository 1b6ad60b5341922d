"""Recommendation engine: profile rebuilds, strategy runs, feed and interaction tracking.

Results are cached per user and strategy under
``recommendations:user:<uid|anon>:<strategy>:...`` so that a user's writes can
drop exactly their own entries.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import NotFoundError, ValidationError
from app.models.engagement import Bookmark, Upvote
from app.models.product import Product
from app.models.recommendation_interaction import INTERACTION_TYPES, RecommendationInteraction
from app.models.recommendation_profile import RecommendationProfile
from app.models.user import User
from app.models.view import View
from app.services import recommendation_scoring as scoring
from app.services.cache_service import generate_key
from app.services.clock import ensure_utc
from app.services.interest_profile_service import Signal, build_preferences, prefs_to_map
from app.services.recommendation_tracking import (
    ATTRIBUTED_TYPES,
    ATTRIBUTION_WINDOW,
    engagement_quality,
    nearest_impression,
    normalize_strategy,
)

logger = logging.getLogger(__name__)

CACHE_TTLS = {
    "trending": 3600,
    "new": 7200,
    "personalized": 43200,
    "collaborative": 43200,
    "similar": 3600,
    "discovery": 7200,
    "feed": 1800,
}
STRATEGIES = tuple(CACHE_TTLS)
TRENDING_WINDOW_DAYS = 90
CANDIDATE_LIMIT = 500
MAX_NEIGHBOURS = 200
RECOMMENDED_KEEP = 50


@dataclass
class UserContext:
    user_id: str | None
    dismissed: set[str] = field(default_factory=set)
    upvoted: set[str] = field(default_factory=set)
    bookmarked: set[str] = field(default_factory=set)
    category_prefs: dict[str, float] = field(default_factory=dict)
    tag_prefs: dict[str, float] = field(default_factory=dict)
    liked_makers: set[str] = field(default_factory=set)
    liked_categories: set[str] = field(default_factory=set)


def to_candidate(p: Product) -> scoring.Candidate:
    return scoring.Candidate(
        id=p.id,
        maker_id=p.maker_id,
        category=p.category,
        tags=list(p.tags or []),
        upvotes=p.upvote_count or 0,
        views=p.view_count or 0,
        created_at=ensure_utc(p.created_at),
        status=p.status,
        name=p.name,
        slug=p.slug,
    )


def product_summary(p: Product) -> dict:
    return {
        "id": p.id,
        "name": p.name,
        "slug": p.slug,
        "tagline": p.tagline,
        "category": p.category,
        "tags": list(p.tags or []),
        "makerId": p.maker_id,
        "upvotes": p.upvote_count,
        "bookmarks": p.bookmark_count,
        "views": p.view_count,
        "createdAt": p.created_at,
    }


def signal_queries(user_id: str):
    """Selects yielding (kind, category, tags, timestamp) rows for a user's signals."""
    views = (
        select(View.created_at, Product.category, Product.tags)
        .join(Product, Product.id == View.product_id)
        .where(View.user_id == user_id, View.is_bot.is_(False))
    )
    upvotes = (
        select(Upvote.created_at, Product.category, Product.tags)
        .join(Product, Product.id == Upvote.product_id)
        .where(Upvote.user_id == user_id)
    )
    bookmarks = (
        select(Bookmark.created_at, Product.category, Product.tags)
        .join(Product, Product.id == Bookmark.product_id)
        .where(Bookmark.user_id == user_id)
    )
    return {"view": views, "upvote": upvotes, "bookmark": bookmarks}


def apply_signals(profile: RecommendationProfile, rows_by_kind: dict, interests: list | None, now):
    signals = [
        Signal(kind, category, list(tags or []), ensure_utc(at))
        for kind, rows in rows_by_kind.items()
        for at, category, tags in rows
    ]
    profile.category_prefs, profile.tag_prefs = build_preferences(signals, interests)
    profile.total_interactions = len(signals)
    profile.last_updated_at = now


async def get_profile(db: AsyncSession, user_id: str) -> RecommendationProfile:
    profile = (await db.execute(
        select(RecommendationProfile).where(RecommendationProfile.user_id == user_id)
    )).scalar_one_or_none()
    if profile:
        return profile
    try:
        async with db.begin_nested():
            profile = RecommendationProfile(
                user_id=user_id, category_prefs=[], tag_prefs=[], recommended_products=[], dismissed_products=[],
            )
            db.add(profile)
    except IntegrityError:
        # another background task created it first
        logger.debug("Recommendation profile for %s already exists, reloading", user_id)
        profile = (await db.execute(
            select(RecommendationProfile).where(RecommendationProfile.user_id == user_id)
        )).scalar_one()
    return profile


async def rebuild_profile(db: AsyncSession, user_id: str, now) -> RecommendationProfile:
    profile = await get_profile(db, user_id)
    rows_by_kind = {}
    for kind, stmt in signal_queries(user_id).items():
        rows_by_kind[kind] = (await db.execute(stmt)).all()
    user = await db.get(User, user_id)
    apply_signals(profile, rows_by_kind, user.interests if user else None, now)
    await db.flush()
    logger.info(
        "Rebuilt recommendation profile for user %s (%d signals, %d categories, %d tags)",
        user_id, profile.total_interactions, len(profile.category_prefs), len(profile.tag_prefs),
    )
    return profile


async def load_user_context(db: AsyncSession, user_id: str | None) -> UserContext:
    ctx = UserContext(user_id)
    if not user_id:
        return ctx
    profile = (await db.execute(
        select(RecommendationProfile).where(RecommendationProfile.user_id == user_id)
    )).scalar_one_or_none()
    if profile:
        ctx.dismissed = set(profile.dismissed_products or [])
        ctx.category_prefs = prefs_to_map(profile.category_prefs)
        ctx.tag_prefs = prefs_to_map(profile.tag_prefs)

    for model, bucket in ((Upvote, ctx.upvoted), (Bookmark, ctx.bookmarked)):
        rows = await db.execute(
            select(Product.id, Product.maker_id, Product.category)
            .join(model, model.product_id == Product.id)
            .where(model.user_id == user_id)
        )
        for product_id, maker_id, category in rows.all():
            bucket.add(product_id)
            ctx.liked_makers.add(maker_id)
            if category:
                ctx.liked_categories.add(category)
    return ctx


async def load_candidates(db: AsyncSession, now, window_days: int | None = None) -> list[scoring.Candidate]:
    stmt = select(Product).where(Product.status == "Published")
    if window_days:
        stmt = stmt.where(Product.created_at >= now - timedelta(days=window_days))
    stmt = stmt.order_by(Product.created_at.desc()).limit(CANDIDATE_LIMIT)
    return [to_candidate(p) for p in (await db.execute(stmt)).scalars().all()]


async def _neighbour_upvotes(db: AsyncSession, user_id: str, upvoted: set[str]) -> dict[str, set[str]]:
    if not upvoted:
        return {}
    neighbours = (await db.execute(
        select(Upvote.user_id)
        .where(Upvote.product_id.in_(upvoted), Upvote.user_id != user_id)
        .distinct()
        .limit(MAX_NEIGHBOURS)
    )).scalars().all()
    if not neighbours:
        return {}
    result: dict[str, set[str]] = {}
    rows = await db.execute(select(Upvote.user_id, Upvote.product_id).where(Upvote.user_id.in_(neighbours)))
    for uid, pid in rows.all():
        result.setdefault(uid, set()).add(pid)
    return result


async def run_strategy(
    db: AsyncSession,
    strategy: str,
    user: UserContext,
    now,
    limit: int,
    product_id: str | None = None,
) -> list[scoring.Scored]:
    """Score candidates for one strategy without touching the cache."""
    exclude = set(user.dismissed)

    if strategy == "trending":
        pool = scoring.eligible(await load_candidates(db, now, TRENDING_WINDOW_DAYS), user.user_id, exclude)
        return scoring.score_trending(pool, now, limit)

    candidates = await load_candidates(db, now)
    if strategy == "new":
        return scoring.score_new(scoring.eligible(candidates, user.user_id, exclude), now, limit)

    if strategy == "personalized":
        if not user.user_id:
            return await run_strategy(db, "trending", user, now, limit)
        pool = scoring.eligible(candidates, user.user_id, exclude | user.upvoted | user.bookmarked)
        return scoring.score_personalized(
            pool, user.category_prefs, user.tag_prefs, user.liked_makers, user.liked_categories, limit,
        )

    if strategy == "similar":
        target = await db.get(Product, product_id) if product_id else None
        if not target:
            raise NotFoundError("Product not found")
        pool = scoring.eligible(candidates, user.user_id, exclude)
        return scoring.score_similar(to_candidate(target), pool, limit)

    if strategy == "collaborative":
        if not user.user_id:
            return []
        others = await _neighbour_upvotes(db, user.user_id, user.upvoted)
        pool = scoring.eligible(candidates, user.user_id, exclude | user.bookmarked)
        return scoring.score_collaborative(pool, user.upvoted, others, limit)

    if strategy == "discovery":
        pool = scoring.eligible(candidates, user.user_id, exclude)
        return scoring.score_discovery(pool, set(user.category_prefs), now, limit)

    if strategy == "feed":
        pools = {}
        for name in scoring.FEED_RATIOS:
            pools[name] = await run_strategy(db, name, user, now, limit * 3)
        return scoring.compose_feed(pools, limit)

    raise ValidationError(f"Unknown recommendation strategy '{strategy}'")


def cache_key(strategy: str, user_id: str | None, limit: int, product_id: str | None = None) -> str:
    variant = f"{strategy}:{limit}" + (f":{product_id}" if product_id else "")
    return generate_key("recommendations", f"user:{user_id or 'anon'}", variant)


async def _hydrate(db: AsyncSession, items: list[scoring.Scored]) -> list[dict]:
    if not items:
        return []
    products = {
        p.id: p for p in (await db.execute(
            select(Product).where(Product.id.in_([i.product_id for i in items]))
        )).scalars().all()
    }
    return [
        {**item.to_dict(), "product": product_summary(products[item.product_id])}
        for item in items
        if item.product_id in products
    ]


async def recommend(
    db: AsyncSession,
    ctx: AppContext,
    strategy: str,
    user_id: str | None,
    limit: int = 10,
    product_id: str | None = None,
) -> list[dict]:
    if strategy not in STRATEGIES:
        raise ValidationError(f"Unknown recommendation strategy '{strategy}'")
    key = cache_key(strategy, user_id, limit, product_id)
    cached = await ctx.cache.get(key)
    if cached is not None:
        return cached

    now = ctx.now()
    user = await load_user_context(db, user_id)
    items = await run_strategy(db, strategy, user, now, limit, product_id)
    result = await _hydrate(db, items)

    if user_id and strategy in ("feed", "personalized") and items:
        profile = await get_profile(db, user_id)
        stamp = now.isoformat()
        fresh = [{**i.to_dict(), "lastCalculated": stamp} for i in items]
        seen = {r["productId"] for r in fresh}
        kept = [r for r in (profile.recommended_products or []) if r.get("productId") not in seen]
        profile.recommended_products = (fresh + kept)[:RECOMMENDED_KEEP]
        await db.commit()

    tags = [f"user:{user_id}"] if user_id else None
    await ctx.cache.set(key, result, CACHE_TTLS[strategy], tags=tags)
    return result


async def warm_trending(ctx: AppContext, limit: int = 10) -> bool:
    """Refresh the anonymous trending list in the background if it is due."""

    async def fetch():
        async with ctx.session_factory() as db:
            items = await run_strategy(db, "trending", UserContext(None), ctx.now(), limit)
            return await _hydrate(db, items)

    return await ctx.cache.warm_cache(cache_key("trending", None, limit), fetch, CACHE_TTLS["trending"])


async def track_interaction(
    db: AsyncSession,
    ctx: AppContext,
    user_id: str,
    product_id: str,
    interaction_type: str,
    recommendation_type: str | None = None,
    position: int | None = None,
    metadata: dict | None = None,
) -> RecommendationInteraction:
    if interaction_type not in INTERACTION_TYPES:
        raise ValidationError(f"Unknown interaction type '{interaction_type}'")
    if not await db.get(Product, product_id):
        raise NotFoundError("Product not found")
    now = ctx.now()

    prior = (await db.execute(
        select(RecommendationInteraction.engagement_quality)
        .where(RecommendationInteraction.user_id == user_id, RecommendationInteraction.product_id == product_id)
        .order_by(RecommendationInteraction.created_at.desc())
        .limit(1)
    )).scalar_one_or_none()

    attributed = None
    if interaction_type in ATTRIBUTED_TYPES:
        impressions = (await db.execute(
            select(RecommendationInteraction.id, RecommendationInteraction.created_at)
            .where(
                RecommendationInteraction.user_id == user_id,
                RecommendationInteraction.product_id == product_id,
                RecommendationInteraction.interaction_type == "impression",
                RecommendationInteraction.created_at >= now - ATTRIBUTION_WINDOW,
                RecommendationInteraction.created_at <= now,
            )
        )).all()
        attributed = nearest_impression([(i, at) for i, at in impressions], now)

    interaction = RecommendationInteraction(
        user_id=user_id,
        product_id=product_id,
        recommendation_type=normalize_strategy(recommendation_type),
        interaction_type=interaction_type,
        position=position,
        engagement_quality=engagement_quality(interaction_type, prior),
        attributed_impression_id=attributed,
        extra_data=metadata or {},
        created_at=now,
    )
    db.add(interaction)
    await db.flush()
    return interaction


async def invalidate_user_recommendations(ctx: AppContext, user_id: str):
    await ctx.cache.smart_invalidate(
        [generate_key("recommendations", f"user:{user_id}", "*")], user_ids=[user_id], recursive=False,
    )


async def track_and_refresh(
    ctx: AppContext,
    user_id: str,
    product_id: str,
    interaction_type: str,
    recommendation_type: str | None = None,
):
    """Background path after a user interaction: log it, rebuild the profile, drop stale caches."""
    async with ctx.session_factory() as db:
        try:
            await track_interaction(db, ctx, user_id, product_id, interaction_type, recommendation_type)
            await rebuild_profile(db, user_id, ctx.now())
            await db.commit()
        except Exception:
            await db.rollback()
            raise
    await invalidate_user_recommendations(ctx, user_id)


async def dismiss_product(db: AsyncSession, ctx: AppContext, user_id: str, product_id: str) -> list[str]:
    if not await db.get(Product, product_id):
        raise NotFoundError("Product not found")
    profile = await get_profile(db, user_id)
    dismissed = list(profile.dismissed_products or [])
    if product_id not in dismissed:
        dismissed.append(product_id)
        profile.dismissed_products = dismissed
    profile.recommended_products = [
        r for r in (profile.recommended_products or []) if r.get("productId") != product_id
    ]
    await track_interaction(db, ctx, user_id, product_id, "dismiss")
    await db.commit()
    await invalidate_user_recommendations(ctx, user_id)
    return dismissed
