"""Recommendation endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext, get_context
from app.dependencies.auth import get_current_user, require_user
from app.models.base import get_db
from app.models.user import User
from app.schemas import InteractionCreate, ok
from app.services import recommendation_service

router = APIRouter(prefix="/recommendations", tags=["recommendations"])

Strategy = Literal["feed", "trending", "new", "personalized", "collaborative", "discovery"]


@router.get("/similar/{product_id}")
async def similar_products(
    product_id: str,
    limit: int = Query(10, ge=1, le=50),
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    items = await recommendation_service.recommend(
        db, ctx, "similar", user.id if user else None, limit, product_id=product_id,
    )
    return ok(items)


@router.get("/{strategy}")
async def recommendations(
    strategy: Strategy,
    limit: int = Query(10, ge=1, le=50),
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Ranked products for one strategy; ``feed`` mixes several with diversity re-ranking."""
    items = await recommendation_service.recommend(db, ctx, strategy, user.id if user else None, limit)
    return ok(items)


@router.post("/interactions", status_code=201)
async def track_interaction(
    body: InteractionCreate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    interaction = await recommendation_service.track_interaction(
        db, ctx, user.id, body.product_id, body.interaction_type,
        recommendation_type=body.recommendation_type,
        position=body.position,
        metadata=body.metadata,
    )
    await db.commit()
    return ok({
        "id": interaction.id,
        "recommendationType": interaction.recommendation_type,
        "engagementQuality": interaction.engagement_quality,
        "attributedImpressionId": interaction.attributed_impression_id,
    })


@router.post("/dismiss/{product_id}")
async def dismiss(
    product_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    dismissed = await recommendation_service.dismiss_product(db, ctx, user.id, product_id)
    return ok({"dismissedProducts": dismissed}, message="Product dismissed")


@router.post("/profile/rebuild")
async def rebuild_profile(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    profile = await recommendation_service.rebuild_profile(db, user.id, ctx.now())
    await db.commit()
    await recommendation_service.invalidate_user_recommendations(ctx, user.id)
    return ok({
        "categoryPreferences": profile.category_prefs,
        "tagPreferences": profile.tag_prefs,
        "totalInteractions": profile.total_interactions,
        "lastUpdated": profile.last_updated_at,
    })
