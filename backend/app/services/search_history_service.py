"""Search history: one row per (user, query, type), counting repeats."""

import logging

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.search_history import SearchHistory

logger = logging.getLogger(__name__)

SEARCH_TYPES = ("all", "products", "jobs", "projects", "users")
MAX_QUERY_LENGTH = 200


def normalize_query(query: str | None) -> str:
    return " ".join((query or "").split()).lower()[:MAX_QUERY_LENGTH]


async def record_search(db: AsyncSession, user_id: str, query: str, search_type: str, now) -> SearchHistory | None:
    query = normalize_query(query)
    if not query:
        return None
    if search_type not in SEARCH_TYPES:
        search_type = "all"

    stmt = select(SearchHistory).where(
        SearchHistory.user_id == user_id, SearchHistory.query == query, SearchHistory.type == search_type,
    )
    entry = (await db.execute(stmt)).scalar_one_or_none()
    if entry:
        entry.count = (entry.count or 0) + 1
        entry.last_searched_at = now
        await db.commit()
        return entry

    try:
        entry = SearchHistory(user_id=user_id, query=query, type=search_type, count=1, last_searched_at=now)
        db.add(entry)
        await db.commit()
    except IntegrityError:
        # the same search was recorded concurrently
        await db.rollback()
        entry = (await db.execute(stmt)).scalar_one()
        entry.count += 1
        entry.last_searched_at = now
        await db.commit()
    return entry


async def list_history(
    db: AsyncSession, user_id: str, search_type: str | None = None, page: int = 1, limit: int = 20
) -> tuple[list[SearchHistory], int]:
    filters = [SearchHistory.user_id == user_id]
    if search_type:
        filters.append(SearchHistory.type == search_type)
    total = (await db.execute(select(func.count(SearchHistory.id)).where(*filters))).scalar() or 0
    rows = (await db.execute(
        select(SearchHistory)
        .where(*filters)
        .order_by(SearchHistory.last_searched_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    return list(rows), total


async def clear_history(db: AsyncSession, user_id: str, search_type: str | None = None) -> int:
    stmt = delete(SearchHistory).where(SearchHistory.user_id == user_id)
    if search_type:
        stmt = stmt.where(SearchHistory.type == search_type)
    result = await db.execute(stmt)
    await db.commit()
    logger.info("Cleared %d search history entries for user %s", result.rowcount, user_id)
    return result.rowcount
