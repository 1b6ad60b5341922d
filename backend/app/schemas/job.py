"""Pydantic schemas for Job model."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class JobRead(BaseModel):
    """Full job output."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    poster_id: str
    title: str
    description: str | None = None
    skills: list[str] = []
    company_name: str | None = None
    location: str | None = None
    location_type: str | None = None
    job_type: str | None = None
    experience_level: str | None = None
    salary_min: float | None = None
    salary_max: float | None = None
    application_url: str | None = None
    status: str
    is_active: bool
    closing_date: datetime | None = None
    created_at: datetime


class JobSummary(BaseModel):
    """Minimal job info for list views."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    company_name: str | None = None
    location: str | None = None
    location_type: str | None = None
    job_type: str | None = None
    skills: list[str] = []
    created_at: datetime
