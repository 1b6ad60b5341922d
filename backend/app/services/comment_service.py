"""Threaded comments: create, reply, like, edit, delete.

Replies keep the top-level comment as ``root_id``; depth is capped at
``MAX_COMMENT_DEPTH`` so deeper replies attach at the cap.
"""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.comment import MAX_COMMENT_DEPTH, Comment
from app.models.product import Product
from app.models.user import User
from app.services.activity_service import record_activity
from app.services.cache_service import generate_key
from app.services.interaction_service import get_product_by_slug, recount
from app.services.recommendation_service import track_and_refresh

logger = logging.getLogger(__name__)

MIN_LENGTH = 2
MAX_LENGTH = 1000


def clean_content(content: str | None) -> str:
    text = (content or "").strip()
    if len(text) < MIN_LENGTH:
        raise ValidationError(f"Comment must be at least {MIN_LENGTH} characters")
    if len(text) > MAX_LENGTH:
        raise ValidationError(f"Comment cannot exceed {MAX_LENGTH} characters")
    return text


def serialize_comment(comment: Comment, viewer_id: str | None = None) -> dict:
    return {
        "id": comment.id,
        "productId": comment.product_id,
        "userId": comment.user_id,
        "parentId": comment.parent_id,
        "rootId": comment.root_id,
        "replyingTo": comment.replying_to_id,
        "depth": comment.depth,
        "content": comment.content,
        "likes": {
            "count": comment.like_count,
            "isLiked": bool(viewer_id and viewer_id in (comment.liked_by or [])),
        },
        "isEdited": comment.is_edited,
        "createdAt": comment.created_at,
        "updatedAt": comment.updated_at,
    }


def comment_row_lock(comment_id: str):
    """Select a comment holding its row lock until commit, refreshing any loaded copy."""
    return (
        select(Comment)
        .where(Comment.id == comment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )


async def _get_comment(db: AsyncSession, product: Product, comment_id: str, lock: bool = False) -> Comment:
    if lock:
        comment = (await db.execute(comment_row_lock(comment_id))).scalar_one_or_none()
    else:
        comment = await db.get(Comment, comment_id)
    if not comment or comment.product_id != product.id:
        raise NotFoundError("Comment not found")
    return comment


async def _invalidate(ctx: AppContext, product: Product):
    await ctx.cache.smart_invalidate(
        [
            generate_key("products", f"detail:{product.slug}", "*"),
            generate_key("comments", f"product:{product.id}", "*"),
        ],
        product_ids=[product.id],
        recursive=False,
    )


async def add_comment(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    slug: str,
    content: str,
    parent_id: str | None = None,
) -> Comment:
    text = clean_content(content)
    product = await get_product_by_slug(db, slug)
    if not product.is_published:
        raise ValidationError("Cannot comment on a product that is not published")

    parent = None
    if parent_id:
        parent = await db.get(Comment, parent_id)
        if not parent or parent.product_id != product.id:
            raise NotFoundError("Parent comment not found on this product")
        if parent.user_id == user.id:
            raise ValidationError("You cannot reply to your own comment")

    comment = Comment(product_id=product.id, user_id=user.id, content=text, liked_by=[], like_count=0)
    if parent is None:
        comment.depth = 0
    else:
        comment.parent_id = parent.id
        comment.root_id = parent.root_id or parent.id
        comment.depth = min(parent.depth + 1, MAX_COMMENT_DEPTH)
        comment.replying_to_id = parent.user_id
    db.add(comment)
    await db.flush()

    count = await recount(db, product.id, Comment, "comment_count")
    is_reply = parent is not None
    record_activity(
        db, user.id, "reply" if is_reply else "comment",
        f"{'Replied to a comment on' if is_reply else 'Commented on'} {product.name}",
        reference_id=comment.id, reference_type="comment",
    )
    await db.commit()

    user_id = user.id
    product_id = product.id
    await _invalidate(ctx, product)
    await ctx.events.publish(
        f"product:{product_id}", "product:comment",
        {"productId": product_id, "commentId": comment.id, "parentId": comment.parent_id, "count": count},
    )
    if is_reply:
        await ctx.events.notify(
            parent.user_id, "reply", f"Someone replied to your comment on {product.name}",
            {"productId": product_id, "commentId": comment.id, "slug": product.slug},
        )
    elif product.maker_id != user_id:
        await ctx.events.notify(
            product.maker_id, "comment", f"New comment on your product {product.name}",
            {"productId": product_id, "commentId": comment.id, "slug": product.slug},
        )
    ctx.tasks.submit(
        f"recommendation:comment:{user_id}",
        lambda: track_and_refresh(ctx, user_id, product_id, "comment"),
    )
    logger.info("User %s added %s %s on product %s", user_id, "reply" if is_reply else "comment", comment.id, product_id)
    return comment


async def toggle_like(db: AsyncSession, ctx: AppContext, user: User, slug: str, comment_id: str) -> dict:
    product = await get_product_by_slug(db, slug)
    comment = await _get_comment(db, product, comment_id, lock=True)
    liked_by = list(comment.liked_by or [])
    if user.id in liked_by:
        liked_by.remove(user.id)
        liked = False
    else:
        liked_by.append(user.id)
        liked = True
    comment.liked_by = liked_by
    comment.like_count = len(liked_by)
    await db.commit()
    await _invalidate(ctx, product)
    return {"liked": liked, "count": comment.like_count}


async def edit_comment(db: AsyncSession, ctx: AppContext, user: User, slug: str, comment_id: str, content: str) -> Comment:
    text = clean_content(content)
    product = await get_product_by_slug(db, slug)
    comment = await _get_comment(db, product, comment_id)
    if comment.user_id != user.id and not user.has_role("admin"):
        raise ForbiddenError("You can only edit your own comments")
    comment.content = text
    comment.is_edited = True
    comment.updated_at = ctx.now()
    await db.commit()
    await _invalidate(ctx, product)
    return comment


def _descendant_ids(comment: Comment, thread: list[Comment]) -> list[str]:
    children: dict[str, list[str]] = {}
    for c in thread:
        if c.parent_id:
            children.setdefault(c.parent_id, []).append(c.id)
    found = []
    frontier = [comment.id]
    while frontier:
        current = frontier.pop()
        for child in children.get(current, ()):
            found.append(child)
            frontier.append(child)
    return found


async def delete_comment(db: AsyncSession, ctx: AppContext, user: User, slug: str, comment_id: str) -> int:
    """Hard-delete the comment and every reply beneath it. Returns rows removed."""
    product = await get_product_by_slug(db, slug)
    comment = await _get_comment(db, product, comment_id)
    if comment.user_id != user.id and product.maker_id != user.id and not user.has_role("admin"):
        raise ForbiddenError("Not authorized to delete this comment")

    if comment.is_root:
        ids = [comment.id] + list((await db.execute(
            select(Comment.id).where(Comment.root_id == comment.id)
        )).scalars().all())
    else:
        thread = (await db.execute(select(Comment).where(Comment.root_id == comment.root_id))).scalars().all()
        ids = [comment.id] + _descendant_ids(comment, thread)

    await db.execute(delete(Comment).where(Comment.id.in_(ids)).execution_options(synchronize_session=False))
    count = await recount(db, product.id, Comment, "comment_count")
    await db.commit()
    await _invalidate(ctx, product)
    await ctx.events.publish(
        f"product:{product.id}", "product:comment",
        {"productId": product.id, "commentId": comment_id, "deleted": True, "count": count},
    )
    logger.info("User %s deleted comment %s (%d rows) on product %s", user.id, comment_id, len(ids), product.id)
    return len(ids)


async def list_comments(
    db: AsyncSession, slug: str, viewer_id: str | None = None, page: int = 1, limit: int = 20
) -> tuple[list[dict], int]:
    """Root comments, newest first, each with its replies in thread order."""
    product = await get_product_by_slug(db, slug)
    base = select(Comment).where(Comment.product_id == product.id, Comment.parent_id.is_(None))
    total = (await db.execute(
        select(func.count(Comment.id)).where(Comment.product_id == product.id, Comment.parent_id.is_(None))
    )).scalar() or 0
    roots = (await db.execute(
        base.order_by(Comment.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )).scalars().all()

    replies_by_root: dict[str, list[Comment]] = {}
    if roots:
        replies = (await db.execute(
            select(Comment)
            .where(Comment.root_id.in_([r.id for r in roots]))
            .order_by(Comment.created_at.asc())
        )).scalars().all()
        for reply in replies:
            replies_by_root.setdefault(reply.root_id, []).append(reply)

    items = []
    for root in roots:
        data = serialize_comment(root, viewer_id)
        data["replies"] = [serialize_comment(r, viewer_id) for r in replies_by_root.get(root.id, [])]
        items.append(data)
    return items, total
