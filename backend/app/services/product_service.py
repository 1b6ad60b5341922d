"""Product creation and updates."""

import logging
import re
import unicodedata

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import ForbiddenError, ValidationError
from app.models.product import PRODUCT_STATUSES, Product
from app.models.user import User
from app.services.interaction_service import get_product_by_slug
from app.services.recommendation_service import product_summary, warm_trending

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("name", "tagline", "description", "status", "category", "tags")
MAX_TAGS = 10


def slugify(text: str) -> str:
    text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    text = re.sub(r"[^a-zA-Z0-9\s-]", "", text).strip().lower()
    return re.sub(r"[\s_-]+", "-", text).strip("-")


async def unique_slug(db: AsyncSession, name: str, exclude_id: str | None = None) -> str:
    base = slugify(name) or "product"
    slug, n = base, 1
    while True:
        stmt = select(Product.id).where(Product.slug == slug)
        if exclude_id:
            stmt = stmt.where(Product.id != exclude_id)
        if (await db.execute(stmt)).scalar_one_or_none() is None:
            return slug
        n += 1
        slug = f"{base}-{n}"


def clean_tags(tags) -> list[str]:
    cleaned = []
    for tag in tags or []:
        tag = str(tag).strip().lower()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned[:MAX_TAGS]


def serialize_product(p: Product) -> dict:
    return {
        **product_summary(p),
        "description": p.description,
        "status": p.status,
        "comments": p.comment_count,
        "uniqueViews": p.unique_view_count,
        "viewHistory": p.view_history or [],
        "updatedAt": p.updated_at,
    }


async def _after_write(ctx: AppContext, product: Product, previous_slug: str | None = None):
    if previous_slug and previous_slug != product.slug:
        await ctx.cache.invalidate_product(product.id, previous_slug, product.maker_id)
    await ctx.cache.invalidate_product(product.id, product.slug, product.maker_id)
    await warm_trending(ctx)


async def create_product(db: AsyncSession, ctx: AppContext, maker: User, data: dict) -> Product:
    name = (data.get("name") or "").strip()
    if not name:
        raise ValidationError("Product name is required")
    status = data.get("status") or "Draft"
    if status not in PRODUCT_STATUSES:
        raise ValidationError(f"Invalid status '{status}'")

    product = Product(
        name=name,
        slug=await unique_slug(db, name),
        tagline=data.get("tagline"),
        description=data.get("description"),
        maker_id=maker.id,
        status=status,
        category=data.get("category"),
        tags=clean_tags(data.get("tags")),
        view_history=[],
    )
    db.add(product)
    await db.commit()
    logger.info("Product %s (%s) created by %s", product.id, product.slug, maker.id)
    await _after_write(ctx, product)
    return product


async def update_product(db: AsyncSession, ctx: AppContext, user: User, slug: str, data: dict) -> Product:
    product = await get_product_by_slug(db, slug)
    if product.maker_id != user.id and not user.has_role("admin"):
        raise ForbiddenError("Only the maker or an admin can update this product")

    previous_slug = product.slug
    for field in UPDATABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field == "name":
            value = value.strip()
            if not value:
                raise ValidationError("Product name is required")
            if value != product.name:
                product.slug = await unique_slug(db, value, exclude_id=product.id)
        elif field == "status" and value not in PRODUCT_STATUSES:
            raise ValidationError(f"Invalid status '{value}'")
        elif field == "tags":
            value = clean_tags(value)
        setattr(product, field, value)

    await db.commit()
    logger.info("Product %s updated by %s", product.id, user.id)
    await _after_write(ctx, product, previous_slug)
    return product
