"""Per-user search history, one row per (user, query, type)."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from app.models.base import Base, TimestampMixin, UUIDMixin


class SearchHistory(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "search_history"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    query = Column(String(200), nullable=False)
    type = Column(String(20), default="all", nullable=False)
    count = Column(Integer, default=1, nullable=False)
    last_searched_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "query", "type", name="uq_search_history_user_query_type"),
    )
