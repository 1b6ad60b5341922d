"""The caller's bookmarked products."""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.response_cache import CachedRoute, cache_response, query_context
from app.dependencies.auth import require_user
from app.models.base import get_db
from app.models.engagement import Bookmark
from app.models.product import Product
from app.models.user import User
from app.schemas import ok, paginate
from app.services.cache_service import generate_key
from app.services.recommendation_service import product_summary

router = APIRouter(prefix="/bookmarks", tags=["bookmarks"], route_class=CachedRoute)

SORTS = {
    "name": Product.name.asc(),
    "upvotes": Product.upvote_count.desc(),
    "views": Product.view_count.desc(),
    "createdAt": Bookmark.created_at.desc(),
}


def bookmarks_key(request: Request, user_id: str | None) -> str:
    return generate_key("bookmarks", f"user:{user_id or 'anon'}", query_context(request))


@router.get("")
@cache_response("30 minutes", key_builder=bookmarks_key)
async def list_bookmarks(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: str | None = Query(None),
    tag: str | None = Query(None),
    search: str | None = Query(None, min_length=1),
    sort: Literal["name", "upvotes", "views", "createdAt"] = Query("createdAt"),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Bookmarked products, filterable by category, tag and name search."""
    filters = [Bookmark.user_id == user.id]
    if category:
        filters.append(Product.category == category)
    if tag:
        filters.append(cast(Product.tags, String).icontains(f'"{tag.lower()}"', autoescape=True))
    if search:
        term = search.strip()
        filters.append(or_(
            Product.name.icontains(term, autoescape=True),
            Product.tagline.icontains(term, autoescape=True),
        ))

    query = select(Product, Bookmark.created_at).join(Bookmark, Bookmark.product_id == Product.id).where(*filters)
    total = (await db.execute(
        select(func.count(Bookmark.id)).join(Product, Product.id == Bookmark.product_id).where(*filters)
    )).scalar() or 0
    rows = (await db.execute(
        query.order_by(SORTS[sort], Product.id).offset((page - 1) * limit).limit(limit)
    )).all()

    items = [{**product_summary(p), "bookmarkedAt": bookmarked_at} for p, bookmarked_at in rows]
    return ok(items, pagination=paginate(page, limit, total))
