"""Search history endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.dependencies.auth import require_user
from app.models.base import get_db
from app.models.user import User
from app.schemas import ok, paginate
from app.services import search_history_service

router = APIRouter(prefix="/search", tags=["search"])


@router.get("/history")
async def search_history(
    type: str | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    entries, total = await search_history_service.list_history(db, user.id, type, page, limit)
    items = [
        {"query": e.query, "type": e.type, "count": e.count, "lastSearchedAt": e.last_searched_at}
        for e in entries
    ]
    return ok(items, pagination=paginate(page, limit, total))


@router.delete("/history")
async def clear_search_history(
    type: str | None = Query(None),
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    cleared = await search_history_service.clear_history(db, user.id, type)
    return ok({"cleared": cleared}, message="Search history cleared")
