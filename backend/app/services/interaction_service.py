"""Upvote and bookmark toggles.

The (user, product) unique constraint serializes concurrent toggles; product
counters are recomputed from their tables inside the same transaction so
they always equal the row count once writes settle.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from app.context import AppContext
from app.errors import NotFoundError, ValidationError
from app.models.engagement import Bookmark, Upvote
from app.models.product import Product
from app.services.activity_service import record_activity
from app.services.cache_service import generate_key
from app.services.recommendation_service import track_and_refresh

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ToggleKind:
    model: type
    counter: str
    event: str
    added_action: str
    removed_action: str
    notification: str


UPVOTE = ToggleKind(Upvote, "upvote_count", "product:upvote", "upvote", "remove_upvote", "received a new upvote!")
BOOKMARK = ToggleKind(Bookmark, "bookmark_count", "product:bookmark", "bookmark", "remove_bookmark", "was bookmarked!")


async def get_product_by_slug(db: AsyncSession, slug: str) -> Product:
    product = (await db.execute(select(Product).where(Product.slug == slug))).scalar_one_or_none()
    if not product:
        raise NotFoundError("Product not found")
    return product


def ensure_interactable(product: Product, user_id: str, verb: str):
    if not product.is_published:
        raise ValidationError(f"Cannot {verb} a product that is not published")
    if product.maker_id == user_id:
        raise ValidationError(f"You cannot {verb} your own product")


async def recount(db: AsyncSession, product_id: str, model: type, counter: str) -> int:
    """Set ``products.<counter>`` to the current row count of ``model`` for the product."""
    subquery = select(func.count(model.id)).where(model.product_id == product_id).scalar_subquery()
    await db.execute(
        update(Product).where(Product.id == product_id).values({counter: subquery}).execution_options(synchronize_session=False)
    )
    return (await db.execute(select(getattr(Product, counter)).where(Product.id == product_id))).scalar_one()


async def _toggle(db: AsyncSession, ctx: AppContext, user_id: str, slug: str, kind: ToggleKind) -> tuple[Product, bool, int]:
    product = await get_product_by_slug(db, slug)
    ensure_interactable(product, user_id, kind.added_action)
    model = kind.model

    existing = (await db.execute(
        select(model.id).where(model.user_id == user_id, model.product_id == product.id)
    )).scalar_one_or_none()

    if existing:
        await db.execute(delete(model).where(model.id == existing))
        added = False
    else:
        try:
            db.add(model(user_id=user_id, product_id=product.id))
            await db.flush()
            added = True
        except IntegrityError:
            # a concurrent toggle inserted the row first; the relation is present
            await db.rollback()
            product = await get_product_by_slug(db, slug)
            added = True
            logger.info("Concurrent %s for user %s on %s resolved by constraint", kind.added_action, user_id, product.id)

    count = await recount(db, product.id, model, kind.counter)
    action = kind.added_action if added else kind.removed_action
    record_activity(
        db, user_id, action,
        f"{action.replace('_', ' ').capitalize()} {product.name}",
        reference_id=product.id, reference_type="product",
    )
    await db.commit()
    set_committed_value(product, kind.counter, count)
    return product, added, count


async def _after_toggle(ctx: AppContext, user_id: str, product: Product, added: bool, count: int, kind: ToggleKind):
    """Cache invalidation, real-time events and the recommendation update."""
    await ctx.cache.invalidate_product(product.id, product.slug, product.maker_id)
    await ctx.cache.smart_invalidate([generate_key("bookmarks", f"user:{user_id}", "*")], recursive=False)

    action = "add" if added else "remove"
    noun = "upvote" if kind is UPVOTE else "bookmark"
    await ctx.events.publish(
        f"product:{product.id}", kind.event,
        {"productId": product.id, "count": count, "userId": user_id, "action": action},
    )
    await ctx.events.publish(
        f"product:{product.id}", f"product:{product.id}:update",
        {f"{noun}Count": count, f"{noun}s": {"count": count}},
    )
    if added:
        await ctx.events.notify(
            product.maker_id, noun,
            f"Your product {product.name} {kind.notification}",
            {"productId": product.id, "slug": product.slug, "userId": user_id},
        )

    interaction = kind.added_action if added else kind.removed_action
    product_id = product.id
    ctx.tasks.submit(
        f"recommendation:{interaction}:{user_id}",
        lambda: track_and_refresh(ctx, user_id, product_id, interaction),
    )


async def toggle_upvote(db: AsyncSession, ctx: AppContext, user_id: str, slug: str) -> dict:
    product, added, count = await _toggle(db, ctx, user_id, slug, UPVOTE)
    await _after_toggle(ctx, user_id, product, added, count, UPVOTE)
    logger.info("User %s %s product %s (count=%d)", user_id, "upvoted" if added else "un-upvoted", product.id, count)
    return {"upvoted": added, "count": count}


async def toggle_bookmark(db: AsyncSession, ctx: AppContext, user_id: str, slug: str) -> dict:
    product, added, count = await _toggle(db, ctx, user_id, slug, BOOKMARK)
    await _after_toggle(ctx, user_id, product, added, count, BOOKMARK)
    logger.info("User %s %s product %s (count=%d)", user_id, "bookmarked" if added else "unbookmarked", product.id, count)
    return {"bookmarked": added, "count": count}
