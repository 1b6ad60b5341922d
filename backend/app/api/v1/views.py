"""View ingestion and analytics endpoints."""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.response_cache import CachedRoute, cache_response, query_context
from app.context import AppContext, get_context
from app.dependencies.auth import get_current_user, require_user
from app.dependencies.rate_limit import client_identifier
from app.errors import ForbiddenError, NotFoundError
from app.models.base import get_db
from app.models.product import Product
from app.models.user import User
from app.schemas import ViewCreate, ok, paginate
from app.services import view_service
from app.services.cache_service import generate_key

router = APIRouter(prefix="/views", tags=["views"], route_class=CachedRoute)


def _stats_key(request: Request, user_id: str | None) -> str:
    product_id = request.path_params["product_id"]
    return generate_key("views", f"product:{product_id}:stats", f"{user_id or 'anon'}:{query_context(request)}")


def _history_key(request: Request, user_id: str | None) -> str:
    return generate_key("views", f"user:{user_id or 'anon'}:history", query_context(request))


@router.post("/products/{product_id}")
async def record_view(
    product_id: str,
    request: Request,
    body: ViewCreate | None = None,
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    body = body or ViewCreate()
    result = await view_service.record_view(
        db, ctx, product_id,
        user_id=user.id if user else None,
        session_id=body.session_id or request.cookies.get("sessionId"),
        user_agent_header=request.headers.get("user-agent"),
        ip=client_identifier(request),
        source=body.source,
        referrer=body.referrer or request.headers.get("referer"),
        country=body.country,
        device=body.device,
        duration=body.view_duration,
        recommendation_type=body.recommendation_type,
    )
    return ok(result)


@router.get("/products/{product_id}/stats")
@cache_response("15 minutes", key_builder=_stats_key)
async def product_stats(
    product_id: str,
    days: int = Query(30, ge=1, le=365),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Analytics for the product's maker (or an admin)."""
    product = await db.get(Product, product_id)
    if not product:
        raise NotFoundError("Product not found")
    if product.maker_id != user.id and not user.has_role("admin"):
        raise ForbiddenError("Only the maker can view product analytics")
    return ok(await view_service.product_view_stats(db, product_id, ctx.now(), days))


@router.get("/me/history")
@cache_response("5 minutes", key_builder=_history_key)
async def my_history(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    items, total = await view_service.user_view_history(db, user.id, page, limit)
    return ok(items, pagination=paginate(page, limit, total))


@router.delete("/me/history")
async def clear_history(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    cleared = await view_service.clear_user_history(db, ctx, user.id)
    return ok({"cleared": cleared}, message="View history cleared")
