"""Job listing search."""

from sqlalchemy import String, cast, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import NotFoundError, ValidationError
from app.models.job import Job

SEARCH_MODES = ("strict", "flexible")
SEARCH_FIELDS = {
    "title": Job.title,
    "description": Job.description,
    "skills": cast(Job.skills, String),
    "company.name": Job.company_name,
}
DEFAULT_FIELDS = ("title", "description", "skills", "company.name")


def parse_fields(fields: str | None) -> list[str]:
    if not fields:
        return list(DEFAULT_FIELDS)
    selected = [f.strip() for f in fields.split(",") if f.strip()]
    unknown = [f for f in selected if f not in SEARCH_FIELDS]
    if unknown:
        raise ValidationError(f"Unknown search fields: {', '.join(unknown)}")
    return selected or list(DEFAULT_FIELDS)


def search_clause(query: str, mode: str, fields: list[str]):
    """Strict: the whole phrase occurs in one field. Flexible: any word in any field."""
    if mode not in SEARCH_MODES:
        raise ValidationError(f"searchMode must be one of {', '.join(SEARCH_MODES)}")
    phrase = " ".join(query.split())
    terms = [phrase] if mode == "strict" else phrase.split(" ")
    return or_(*(SEARCH_FIELDS[f].icontains(t, autoescape=True) for f in fields for t in terms))


async def search_jobs(
    db: AsyncSession,
    q: str | None = None,
    search_mode: str = "strict",
    fields: str | None = None,
    location_type: str | None = None,
    job_type: str | None = None,
    experience_level: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Job], int]:
    filters = [Job.is_active.is_(True), Job.status == "Published"]
    if q and q.strip():
        filters.append(search_clause(q, search_mode, parse_fields(fields)))
    if location_type:
        filters.append(Job.location_type == location_type)
    if job_type:
        filters.append(Job.job_type == job_type)
    if experience_level:
        filters.append(Job.experience_level == experience_level)

    total = (await db.execute(select(func.count(Job.id)).where(*filters))).scalar() or 0
    rows = (await db.execute(
        select(Job)
        .where(*filters)
        .order_by(Job.created_at.desc(), Job.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )).scalars().all()
    return list(rows), total


async def get_job(db: AsyncSession, job_id: str) -> Job:
    job = await db.get(Job, job_id)
    if not job:
        raise NotFoundError("Job not found")
    return job
