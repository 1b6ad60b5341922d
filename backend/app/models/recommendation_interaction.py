"""Recommendation interaction model: tracks how users respond to recommended products."""

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String

from app.models.base import Base, JSONType, UUIDMixin
from app.services.clock import utcnow

INTERACTION_TYPES = (
    "impression", "view", "click", "upvote", "remove_upvote",
    "bookmark", "remove_bookmark", "comment", "conversion", "dismiss",
)


class RecommendationInteraction(UUIDMixin, Base):
    __tablename__ = "recommendation_interactions"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    recommendation_type = Column(String(30), default="default", nullable=False)
    interaction_type = Column(String(20), nullable=False)
    position = Column(Integer)
    engagement_quality = Column(Float)
    attributed_impression_id = Column(String(36))
    extra_data = Column(JSONType, default=dict, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_rec_interactions_user_type", "user_id", "interaction_type"),
        Index("idx_rec_interactions_product", "product_id"),
        Index("idx_rec_interactions_user_product_created", "user_id", "product_id", "created_at"),
    )
