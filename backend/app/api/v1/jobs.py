"""Job listing API endpoints."""

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext, get_context
from app.dependencies.auth import get_current_user
from app.models.base import get_db
from app.models.user import User
from app.schemas import JobRead, JobSummary, ok, paginate
from app.services import job_service
from app.services.search_history_service import record_search

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.get("")
async def list_jobs(
    q: str | None = Query(None, description="Search text"),
    search_mode: Literal["strict", "flexible"] = Query("strict", alias="searchMode"),
    fields: str | None = Query(None, description="Comma-separated: title,description,skills,company.name"),
    location_type: str | None = Query(None, alias="locationType"),
    job_type: str | None = Query(None, alias="jobType"),
    experience_level: str | None = Query(None, alias="experienceLevel"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    user: User | None = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Search active jobs."""
    jobs, total = await job_service.search_jobs(
        db, q, search_mode, fields, location_type, job_type, experience_level, page, limit,
    )
    if user and q:
        await record_search(db, user.id, q, "jobs", ctx.now())
    return ok(
        [JobSummary.model_validate(j).model_dump(mode="json") for j in jobs],
        pagination=paginate(page, limit, total),
    )


@router.get("/{job_id}")
async def get_job(job_id: str, db: AsyncSession = Depends(get_db)):
    """Get a single job by ID."""
    job = await job_service.get_job(db, job_id)
    return ok(JobRead.model_validate(job).model_dump(mode="json"))
