"""Job listing model."""

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Index, String, Text

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Job(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "jobs"

    poster_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    # Core
    title = Column(String(200), nullable=False)
    description = Column(Text)
    skills = Column(JSONType, default=list, nullable=False)
    company_name = Column(String(200))
    location = Column(String(255))
    location_type = Column(String(20))  # remote, onsite, hybrid
    job_type = Column(String(30))  # full_time, part_time, contract, internship
    experience_level = Column(String(30))
    salary_min = Column(Float)
    salary_max = Column(Float)
    application_url = Column(Text)

    # Lifecycle
    status = Column(String(20), default="Published", nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    closing_date = Column(DateTime(timezone=True))

    __table_args__ = (
        Index("idx_jobs_status_created", "status", "created_at"),
    )
