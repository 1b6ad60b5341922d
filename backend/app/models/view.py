"""Raw product view events, including bot traffic."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String

from app.models.base import Base, UUIDMixin
from app.services.clock import utcnow


class View(UUIDMixin, Base):
    __tablename__ = "views"

    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36))
    session_id = Column(String(100))
    viewer_key = Column(String(40), nullable=False)  # u:<user id> or a:<hashed session/ip>
    source = Column(String(30), default="direct", nullable=False)
    referrer = Column(String(500))
    device = Column(String(20), default="unknown", nullable=False)
    os = Column(String(30), default="unknown", nullable=False)
    browser = Column(String(30), default="unknown", nullable=False)
    country = Column(String(60))
    is_bot = Column(Boolean, default=False, nullable=False)
    view_duration = Column(Integer)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_views_product_created", "product_id", "created_at"),
        Index("idx_views_user", "user_id"),
    )
