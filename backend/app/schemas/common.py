"""Response envelope helpers shared by all routers."""

from typing import Any

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    """Page metadata returned alongside list payloads."""

    page: int
    limit: int
    total: int
    pages: int
    has_more: bool = Field(serialization_alias="hasMore")


def paginate(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return Pagination(page=page, limit=limit, total=total, pages=pages, has_more=page < pages).model_dump(
        by_alias=True
    )


def ok(
    data: Any = None,
    message: str | None = None,
    pagination: dict | None = None,
    next_step: dict | None = None,
) -> dict:
    """Build the ``{"success": true, ...}`` envelope, omitting empty parts."""
    body: dict[str, Any] = {"success": True}
    if message:
        body["message"] = message
    if data is not None:
        body["data"] = data
    if pagination is not None:
        body["pagination"] = pagination
    if next_step is not None:
        body["nextStep"] = next_step
    return body
