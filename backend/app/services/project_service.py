"""Portfolio projects: CRUD, likes, share/click tracking and owner analytics."""

import logging

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.project import Project
from app.models.user import User
from app.services.product_service import clean_tags, slugify

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "description", "category", "tags", "project_url", "is_public")
SORT_COLUMNS = {
    "newest": Project.created_at.desc(),
    "oldest": Project.created_at.asc(),
    "popular": Project.like_count.desc(),
    "views": Project.view_count.desc(),
    "title": Project.title.asc(),
}


def serialize_project(p: Project, viewer_id: str | None = None) -> dict:
    return {
        "id": p.id,
        "slug": p.slug,
        "title": p.title,
        "description": p.description,
        "category": p.category,
        "tags": list(p.tags or []),
        "projectUrl": p.project_url,
        "isPublic": p.is_public,
        "ownerId": p.owner_id,
        "likes": p.like_count,
        "shares": p.share_count,
        "clicks": p.click_count,
        "views": p.view_count,
        "isLiked": bool(viewer_id and viewer_id in (p.liked_by or [])),
        "createdAt": p.created_at,
        "updatedAt": p.updated_at,
    }


async def _unique_slug(db: AsyncSession, title: str, exclude_id: str | None = None) -> str:
    base = slugify(title) or "project"
    slug, n = base, 1
    while True:
        stmt = select(Project.id).where(Project.slug == slug)
        if exclude_id:
            stmt = stmt.where(Project.id != exclude_id)
        if (await db.execute(stmt)).scalar_one_or_none() is None:
            return slug
        n += 1
        slug = f"{base}-{n}"


def _can_manage(project: Project, user: User | None) -> bool:
    return bool(user and (project.owner_id == user.id or user.has_role("admin")))


async def get_project(db: AsyncSession, id_or_slug: str, viewer: User | None = None) -> Project:
    project = (await db.execute(
        select(Project).where(or_(Project.id == id_or_slug, Project.slug == id_or_slug))
    )).scalar_one_or_none()
    if not project or (not project.is_public and not _can_manage(project, viewer)):
        raise NotFoundError("Project not found")
    return project


async def list_projects(
    db: AsyncSession,
    viewer: User | None = None,
    category: str | None = None,
    tag: str | None = None,
    search: str | None = None,
    owner_id: str | None = None,
    sort: str = "newest",
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Project], int]:
    filters = []
    if owner_id:
        filters.append(Project.owner_id == owner_id)
        if not viewer or (viewer.id != owner_id and not viewer.has_role("admin")):
            filters.append(Project.is_public.is_(True))
    else:
        filters.append(Project.is_public.is_(True))
    if category:
        filters.append(Project.category == category)
    if tag:
        filters.append(cast(Project.tags, String).icontains(f'"{tag.lower()}"', autoescape=True))
    if search:
        term = search.strip()
        filters.append(or_(
            Project.title.icontains(term, autoescape=True),
            Project.description.icontains(term, autoescape=True),
        ))

    total = (await db.execute(select(func.count(Project.id)).where(*filters))).scalar() or 0
    rows = (await db.execute(
        select(Project)
        .where(*filters)
        .order_by(SORT_COLUMNS.get(sort, SORT_COLUMNS["newest"]), Project.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    return list(rows), total


async def create_project(db: AsyncSession, owner: User, data: dict) -> Project:
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("Project title is required")
    project = Project(
        owner_id=owner.id,
        title=title,
        slug=await _unique_slug(db, title),
        description=data.get("description"),
        category=data.get("category"),
        tags=clean_tags(data.get("tags")),
        project_url=data.get("project_url"),
        is_public=data.get("is_public", True),
        liked_by=[],
        share_platforms={},
        click_targets={},
    )
    db.add(project)
    await db.commit()
    logger.info("Project %s created by %s", project.id, owner.id)
    return project


async def update_project(db: AsyncSession, user: User, project_id: str, data: dict) -> Project:
    project = await get_project(db, project_id, user)
    if not _can_manage(project, user):
        raise ForbiddenError("You do not have permission to update this project")
    for field in EDITABLE_FIELDS:
        if field not in data or data[field] is None:
            continue
        value = data[field]
        if field == "title":
            value = value.strip()
            if not value:
                raise ValidationError("Project title is required")
            if value != project.title:
                project.slug = await _unique_slug(db, value, exclude_id=project.id)
        elif field == "tags":
            value = clean_tags(value)
        setattr(project, field, value)
    await db.commit()
    return project


async def delete_project(db: AsyncSession, user: User, project_id: str):
    project = await get_project(db, project_id, user)
    if not _can_manage(project, user):
        raise ForbiddenError("You do not have permission to delete this project")
    await db.delete(project)
    await db.commit()
    logger.info("Project %s deleted by %s", project_id, user.id)


async def toggle_like(db: AsyncSession, ctx: AppContext, user: User, project_id: str) -> dict:
    project = await get_project(db, project_id, user)
    liked_by = list(project.liked_by or [])
    if user.id in liked_by:
        liked_by.remove(user.id)
        liked = False
    else:
        liked_by.append(user.id)
        liked = True
    project.liked_by = liked_by
    project.like_count = len(liked_by)
    await db.commit()
    if liked and project.owner_id != user.id:
        await ctx.events.notify(
            project.owner_id, "system", f"Your project {project.title} received a new like",
            {"projectId": project.id, "userId": user.id},
        )
    return {"liked": liked, "likes": project.like_count}


def _bump(counts: dict | None, key: str | None) -> dict:
    counts = dict(counts or {})
    if key:
        counts[key] = counts.get(key, 0) + 1
    return counts


async def track_share(db: AsyncSession, project_id: str, platform: str | None = None) -> int:
    project = await get_project(db, project_id)
    project.share_count = (project.share_count or 0) + 1
    project.share_platforms = _bump(project.share_platforms, platform)
    await db.commit()
    return project.share_count


async def track_click(db: AsyncSession, project_id: str, target: str | None = None) -> int:
    project = await get_project(db, project_id)
    project.click_count = (project.click_count or 0) + 1
    project.click_targets = _bump(project.click_targets, target)
    await db.commit()
    return project.click_count


async def record_project_view(db: AsyncSession, project: Project):
    project.view_count = (project.view_count or 0) + 1
    await db.commit()


async def project_analytics(db: AsyncSession, user: User, project_id: str) -> dict:
    project = await get_project(db, project_id, user)
    if not _can_manage(project, user):
        raise ForbiddenError("You do not have permission to view project analytics")
    views = project.view_count or 0
    engaged = (project.like_count or 0) + (project.share_count or 0)
    return {
        "overview": {
            "views": views,
            "likes": project.like_count,
            "shares": project.share_count,
            "clicks": project.click_count,
        },
        "sharePlatforms": project.share_platforms or {},
        "clickTargets": project.click_targets or {},
        "engagementRate": round(engaged / views * 100, 2) if views else 0.0,
    }
