"""Portfolio projects with like/share/click tracking."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class Project(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "projects"

    owner_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    title = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, nullable=False, index=True)
    description = Column(Text)
    category = Column(String(100))
    tags = Column(JSONType, default=list, nullable=False)
    project_url = Column(String(500))
    is_public = Column(Boolean, default=True, nullable=False)

    liked_by = Column(JSONType, default=list, nullable=False)
    like_count = Column(Integer, default=0, nullable=False)
    share_count = Column(Integer, default=0, nullable=False)
    click_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    share_platforms = Column(JSONType, default=dict, nullable=False)
    click_targets = Column(JSONType, default=dict, nullable=False)

    __table_args__ = (
        Index("idx_projects_owner", "owner_id"),
    )
