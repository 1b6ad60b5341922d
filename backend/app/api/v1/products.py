"""Product endpoints: create/read/update, upvote and bookmark toggles, comments."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.response_cache import CachedRoute, cache_response, query_context
from app.context import AppContext, get_context
from app.dependencies.auth import get_current_user, require_user
from app.errors import NotFoundError
from app.models.base import get_db
from app.models.user import User
from app.schemas import CommentCreate, CommentUpdate, ProductCreate, ProductUpdate, ok, paginate
from app.services import comment_service, interaction_service, product_service
from app.services.cache_service import generate_key

router = APIRouter(prefix="/products", tags=["products"], route_class=CachedRoute)


def _detail_key(request: Request, user_id: str | None) -> str:
    slug = request.path_params["slug"]
    return generate_key("products", f"detail:{slug}", user_id or "anon")


def _detail_tags(request: Request, user_id: str | None, body) -> list[str]:
    product_id = (body.get("data") or {}).get("id")
    return [f"product:{product_id}"] if product_id else []


def _comments_key(request: Request, user_id: str | None) -> str:
    slug = request.path_params["slug"]
    return generate_key("products", f"detail:{slug}:comments", f"{user_id or 'anon'}:{query_context(request)}")


@router.post("", status_code=201)
async def create_product(
    body: ProductCreate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    product = await product_service.create_product(db, ctx, user, body.model_dump())
    return ok(product_service.serialize_product(product), message="Product created")


@router.get("/{slug}")
@cache_response("1 hour", key_builder=_detail_key, tags=_detail_tags)
async def get_product(
    slug: str,
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    product = await interaction_service.get_product_by_slug(db, slug)
    is_owner = user is not None and (user.id == product.maker_id or user.has_role("admin"))
    if not product.is_published and not is_owner:
        raise NotFoundError("Product not found")
    return ok(product_service.serialize_product(product))


@router.patch("/{slug}")
async def update_product(
    slug: str,
    body: ProductUpdate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    product = await product_service.update_product(db, ctx, user, slug, body.model_dump(exclude_unset=True))
    return ok(product_service.serialize_product(product), message="Product updated")


@router.post("/{slug}/upvote")
async def toggle_upvote(
    slug: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    result = await interaction_service.toggle_upvote(db, ctx, user.id, slug)
    return ok(result, message="Upvote added" if result["upvoted"] else "Upvote removed")


@router.post("/{slug}/bookmark")
async def toggle_bookmark(
    slug: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    result = await interaction_service.toggle_bookmark(db, ctx, user.id, slug)
    return ok(result, message="Bookmark added" if result["bookmarked"] else "Bookmark removed")


# --- Comments ---

@router.get("/{slug}/comments")
@cache_response("10 minutes", key_builder=_comments_key)
async def list_comments(
    slug: str,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    items, total = await comment_service.list_comments(db, slug, user.id if user else None, page, limit)
    return ok(items, pagination=paginate(page, limit, total))


@router.post("/{slug}/comments", status_code=201)
async def add_comment(
    slug: str,
    body: CommentCreate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    comment = await comment_service.add_comment(db, ctx, user, slug, body.content, body.parent_id)
    return ok(comment_service.serialize_comment(comment, user.id), message="Comment added")


@router.post("/{slug}/comments/{comment_id}/reply", status_code=201)
async def reply_to_comment(
    slug: str,
    comment_id: str,
    body: CommentCreate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    comment = await comment_service.add_comment(db, ctx, user, slug, body.content, comment_id)
    return ok(comment_service.serialize_comment(comment, user.id), message="Reply added")


@router.put("/{slug}/comments/{comment_id}")
async def edit_comment(
    slug: str,
    comment_id: str,
    body: CommentUpdate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    comment = await comment_service.edit_comment(db, ctx, user, slug, comment_id, body.content)
    return ok(comment_service.serialize_comment(comment, user.id), message="Comment updated")


@router.delete("/{slug}/comments/{comment_id}")
async def delete_comment(
    slug: str,
    comment_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    removed = await comment_service.delete_comment(db, ctx, user, slug, comment_id)
    return ok({"deleted": removed}, message="Comment deleted")


@router.post("/{slug}/comments/{comment_id}/like")
async def like_comment(
    slug: str,
    comment_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    result = await comment_service.toggle_like(db, ctx, user, slug, comment_id)
    return ok(result)
