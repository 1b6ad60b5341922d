"""Threaded product comments."""

from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, Text

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin

MAX_COMMENT_DEPTH = 5


class Comment(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "comments"

    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    parent_id = Column(String(36))
    root_id = Column(String(36), index=True)
    replying_to_id = Column(String(36))
    depth = Column(Integer, default=0, nullable=False)
    content = Column(Text, nullable=False)
    liked_by = Column(JSONType, default=list, nullable=False)
    like_count = Column(Integer, default=0, nullable=False)
    is_edited = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_comments_product_created", "product_id", "created_at"),
    )

    @property
    def is_root(self) -> bool:
        return self.parent_id is None
