"""Recommendation profile: JSON preference lists used for product scoring."""

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin


class RecommendationProfile(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "recommendation_profiles"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)

    # Each entry: {"key": str, "score": float [0.0, 1.0], "count": int, "lastInteraction": iso}
    category_prefs = Column(JSONType, default=list, nullable=False)
    tag_prefs = Column(JSONType, default=list, nullable=False)

    # {"productId", "score", "reason", "lastCalculated"}
    recommended_products = Column(JSONType, default=list, nullable=False)
    dismissed_products = Column(JSONType, default=list, nullable=False)

    total_interactions = Column(Integer, default=0, nullable=False)
    last_updated_at = Column(DateTime(timezone=True))
