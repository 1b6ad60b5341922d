"""Project endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.response_cache import CachedRoute, cache_response, invalidate_cache, query_context
from app.context import AppContext, get_context
from app.dependencies.auth import get_current_user, require_user
from app.models.base import get_db
from app.models.user import User
from app.schemas import ClickEvent, ProjectCreate, ProjectUpdate, ShareEvent, ok, paginate
from app.services import project_service
from app.services.cache_service import generate_key

router = APIRouter(prefix="/projects", tags=["projects"], route_class=CachedRoute)


def _list_key(request: Request, user_id: str | None) -> str:
    return generate_key("projects", "list", f"{user_id or 'anon'}:{query_context(request)}")


def _project_patterns(request: Request, user_id: str | None) -> list[str]:
    return [generate_key("projects", "list", "*")]


@router.get("")
@cache_response("10 minutes", key_builder=_list_key)
async def list_projects(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    category: str | None = Query(None),
    tag: str | None = Query(None),
    search: str | None = Query(None, min_length=1),
    owner: str | None = Query(None, description="Filter by owner id"),
    sort: Literal["newest", "oldest", "popular", "views", "title"] = Query("newest"),
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    projects, total = await project_service.list_projects(
        db, user, category=category, tag=tag, search=search, owner_id=owner, sort=sort, page=page, limit=limit,
    )
    viewer_id = user.id if user else None
    return ok(
        [project_service.serialize_project(p, viewer_id) for p in projects],
        pagination=paginate(page, limit, total),
    )


@router.get("/{id_or_slug}")
async def get_project(
    id_or_slug: str,
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.get_project(db, id_or_slug, user)
    if not user or user.id != project.owner_id:
        await project_service.record_project_view(db, project)
    return ok(project_service.serialize_project(project, user.id if user else None))


@router.post("", status_code=201)
@invalidate_cache(_project_patterns)
async def create_project(
    body: ProjectCreate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.create_project(db, user, body.model_dump())
    return ok(project_service.serialize_project(project, user.id), message="Project created")


@router.patch("/{project_id}")
@invalidate_cache(_project_patterns)
async def update_project(
    project_id: str,
    body: ProjectUpdate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.update_project(db, user, project_id, body.model_dump(exclude_unset=True))
    return ok(project_service.serialize_project(project, user.id), message="Project updated")


@router.delete("/{project_id}")
@invalidate_cache(_project_patterns)
async def delete_project(
    project_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await project_service.delete_project(db, user, project_id)
    return ok(message="Project deleted")


@router.post("/{project_id}/like")
@invalidate_cache(_project_patterns)
async def like_project(
    project_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    return ok(await project_service.toggle_like(db, ctx, user, project_id))


@router.post("/{project_id}/share")
async def share_project(
    project_id: str,
    body: ShareEvent | None = None,
    db: AsyncSession = Depends(get_db),
):
    shares = await project_service.track_share(db, project_id, body.platform if body else None)
    return ok({"shares": shares})


@router.post("/{project_id}/click")
async def click_project(
    project_id: str,
    body: ClickEvent | None = None,
    db: AsyncSession = Depends(get_db),
):
    clicks = await project_service.track_click(db, project_id, body.target if body else None)
    return ok({"clicks": clicks})


@router.get("/{project_id}/analytics")
async def project_analytics(
    project_id: str,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    return ok(await project_service.project_analytics(db, user, project_id))
