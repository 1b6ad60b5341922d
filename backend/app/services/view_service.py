"""Product view ingestion and analytics.

Bot views are stored for auditing but never counted. Totals, unique viewers
and the daily history are recomputed from the views table on every write;
analytics endpoints read the table directly so no figure depends on a
history bucket being present.
"""

import hashlib
import logging
from datetime import timedelta

from sqlalchemy import distinct, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import NotFoundError
from app.models.product import Product
from app.models.view import View
from app.services import user_agent as ua
from app.services.clock import ensure_utc
from app.services.recommendation_service import track_and_refresh

logger = logging.getLogger(__name__)

HISTORY_DAYS = 30
DEDUP_WINDOW = timedelta(minutes=30)
VIEW_SOURCES = ("direct", "search", "recommendation", "category", "tag", "profile", "social", "email", "external", "unknown")


def viewer_key(user_id: str | None, session_id: str | None, ip: str | None) -> str:
    """Stable identity of the viewer: the user id, else a hash of session or IP."""
    if user_id:
        return f"u:{user_id}"
    seed = session_id or ip or "unknown"
    return "a:" + hashlib.sha256(seed.encode("utf-8")).hexdigest()[:16]


def classify_source(source: str | None, referrer: str | None) -> str:
    if source and source in VIEW_SOURCES:
        return source
    ref = (referrer or "").lower()
    if not ref:
        return "direct"
    if any(s in ref for s in ("google.", "bing.", "duckduckgo.", "yahoo.")):
        return "search"
    if any(s in ref for s in ("twitter.", "x.com", "facebook.", "linkedin.", "reddit.", "t.co")):
        return "social"
    return "external"


async def _daily_counts(db: AsyncSession, product_id: str, since) -> dict[str, int]:
    rows = (await db.execute(
        select(View.created_at).where(View.product_id == product_id, View.is_bot.is_(False), View.created_at >= since)
    )).scalars().all()
    counts: dict[str, int] = {}
    for created in rows:
        day = ensure_utc(created).date().isoformat()
        counts[day] = counts.get(day, 0) + 1
    return counts


async def refresh_view_counters(db: AsyncSession, product_id: str, now) -> dict:
    """Recompute total, unique and the bounded daily history for a product."""
    total = (await db.execute(
        select(func.count(View.id)).where(View.product_id == product_id, View.is_bot.is_(False))
    )).scalar() or 0
    unique = (await db.execute(
        select(func.count(distinct(View.viewer_key))).where(View.product_id == product_id, View.is_bot.is_(False))
    )).scalar() or 0

    start = (now - timedelta(days=HISTORY_DAYS - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    daily = await _daily_counts(db, product_id, start)
    history = [{"date": day, "count": daily[day]} for day in sorted(daily)][-HISTORY_DAYS:]

    await db.execute(
        update(Product)
        .where(Product.id == product_id)
        .values(view_count=total, unique_view_count=unique, view_history=history)
        .execution_options(synchronize_session=False)
    )
    return {"total": total, "unique": unique, "history": history}


async def broadcast_view_update(ctx: AppContext, product: Product, counters: dict, now):
    """Push fresh totals to the product room and to its maker."""
    payload = {
        "productId": product.id,
        "count": counters["total"],
        "unique": counters["unique"],
        "makerId": product.maker_id,
        "viewType": "new",
        "timestamp": now.isoformat(),
    }
    await ctx.events.publish(f"product:{product.id}", "product:view:update", payload)
    if product.maker_id:
        await ctx.events.publish(f"user:{product.maker_id}", "product:view:update", payload)


async def record_view(
    db: AsyncSession,
    ctx: AppContext,
    product_id: str,
    user_id: str | None,
    session_id: str | None,
    user_agent_header: str | None,
    ip: str | None = None,
    source: str | None = None,
    referrer: str | None = None,
    country: str | None = None,
    device: str | None = None,
    duration: int | None = None,
    recommendation_type: str | None = None,
) -> dict:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    now = ctx.now()
    bot = ua.is_bot(user_agent_header)
    key = viewer_key(user_id, session_id, ip)

    if not bot:
        recent = (await db.execute(
            select(View.id).where(
                View.product_id == product_id,
                View.viewer_key == key,
                View.is_bot.is_(False),
                View.created_at >= now - DEDUP_WINDOW,
            ).limit(1)
        )).scalar_one_or_none()
        if recent:
            logger.debug("Duplicate view of %s by %s within window", product_id, key)
            return {
                "recorded": False,
                "isDuplicate": True,
                "isBot": False,
                "views": {"total": product.view_count, "unique": product.unique_view_count},
            }

    db.add(View(
        product_id=product_id,
        user_id=user_id,
        session_id=session_id,
        viewer_key=key,
        source=classify_source(source, referrer),
        referrer=referrer,
        device=device or ua.parse_device(user_agent_header),
        os=ua.parse_os(user_agent_header),
        browser=ua.parse_browser(user_agent_header),
        country=country,
        is_bot=bot,
        view_duration=duration if isinstance(duration, int) and duration >= 0 else None,
        created_at=now,
    ))
    await db.flush()

    if bot:
        await db.commit()
        logger.debug("Bot view stored for product %s", product_id)
        return {
            "recorded": True,
            "isDuplicate": False,
            "isBot": True,
            "views": {"total": product.view_count, "unique": product.unique_view_count},
        }

    counters = await refresh_view_counters(db, product_id, now)
    await db.commit()

    await ctx.cache.invalidate_view_caches(product_id, user_id)
    await broadcast_view_update(ctx, product, counters, now)
    if user_id:
        rec_type = recommendation_type
        ctx.tasks.submit(
            f"recommendation:view:{user_id}",
            lambda: track_and_refresh(ctx, user_id, product_id, "view", recommendation_type=rec_type),
        )
    return {
        "recorded": True,
        "isDuplicate": False,
        "isBot": False,
        "views": {"total": counters["total"], "unique": counters["unique"]},
    }


async def product_view_stats(db: AsyncSession, product_id: str, now, days: int = 30) -> dict:
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    days = max(1, min(days, 365))
    since = (now - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
    human = (View.product_id == product_id, View.is_bot.is_(False))

    total = (await db.execute(select(func.count(View.id)).where(*human))).scalar() or 0
    unique = (await db.execute(select(func.count(distinct(View.viewer_key))).where(*human))).scalar() or 0
    period_total = (await db.execute(
        select(func.count(View.id)).where(*human, View.created_at >= since)
    )).scalar() or 0

    daily = await _daily_counts(db, product_id, since)
    series = []
    for offset in range(days):
        day = (since + timedelta(days=offset)).date().isoformat()
        series.append({"date": day, "count": daily.get(day, 0)})

    async def breakdown(column):
        rows = await db.execute(
            select(column, func.count(View.id))
            .where(*human, View.created_at >= since)
            .group_by(column)
            .order_by(func.count(View.id).desc())
        )
        return [{"name": name or "unknown", "count": count} for name, count in rows.all()]

    bots = (await db.execute(
        select(func.count(View.id)).where(View.product_id == product_id, View.is_bot.is_(True))
    )).scalar() or 0
    avg_duration = (await db.execute(
        select(func.avg(View.view_duration)).where(*human, View.view_duration.isnot(None))
    )).scalar()

    return {
        "productId": product_id,
        "totals": {"views": total, "unique": unique, "periodViews": period_total, "botViews": bots},
        "averageDuration": round(float(avg_duration), 1) if avg_duration is not None else None,
        "daily": series,
        "sources": await breakdown(View.source),
        "devices": await breakdown(View.device),
        "browsers": await breakdown(View.browser),
        "os": await breakdown(View.os),
        "countries": await breakdown(View.country),
    }


async def user_view_history(db: AsyncSession, user_id: str, page: int = 1, limit: int = 20) -> tuple[list[dict], int]:
    base = (View.user_id == user_id, View.is_bot.is_(False))
    total = (await db.execute(select(func.count(View.id)).where(*base))).scalar() or 0
    rows = (await db.execute(
        select(View, Product)
        .join(Product, Product.id == View.product_id)
        .where(*base)
        .order_by(View.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()
    items = [
        {
            "viewId": view.id,
            "viewedAt": view.created_at,
            "source": view.source,
            "product": {"id": product.id, "name": product.name, "slug": product.slug, "category": product.category},
        }
        for view, product in rows
    ]
    return items, total


async def clear_user_history(db: AsyncSession, ctx: AppContext, user_id: str) -> int:
    """Detach the caller's views from their account; counters are unaffected."""
    result = await db.execute(
        update(View).where(View.user_id == user_id).values(user_id=None).execution_options(synchronize_session=False)
    )
    await db.commit()
    await ctx.cache.smart_invalidate([f"views:user:{user_id}:history:*"], recursive=False)
    return result.rowcount
