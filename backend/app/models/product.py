"""Product model with its denormalized engagement counters."""

from sqlalchemy import Column, ForeignKey, Index, Integer, String, Text

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin

PRODUCT_STATUSES = ("Draft", "Published", "Archived")


class Product(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "products"

    name = Column(String(200), nullable=False)
    slug = Column(String(220), unique=True, nullable=False, index=True)
    tagline = Column(String(300))
    description = Column(Text)
    maker_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    status = Column(String(20), default="Draft", nullable=False)
    category = Column(String(100))
    tags = Column(JSONType, default=list, nullable=False)

    # Counters, recomputed from their source tables on every write
    upvote_count = Column(Integer, default=0, nullable=False)
    bookmark_count = Column(Integer, default=0, nullable=False)
    comment_count = Column(Integer, default=0, nullable=False)
    view_count = Column(Integer, default=0, nullable=False)
    unique_view_count = Column(Integer, default=0, nullable=False)
    view_history = Column(JSONType, default=list, nullable=False)  # [{"date": "YYYY-MM-DD", "count": n}]

    __table_args__ = (
        Index("idx_products_status_created", "status", "created_at"),
        Index("idx_products_maker", "maker_id"),
        Index("idx_products_category", "category"),
    )

    @property
    def is_published(self) -> bool:
        return self.status == "Published"
