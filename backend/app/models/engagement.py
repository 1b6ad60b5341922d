"""Upvotes and bookmarks: one row per (user, product)."""

from sqlalchemy import Column, ForeignKey, String, UniqueConstraint

from app.models.base import Base, TimestampMixin, UUIDMixin


class Upvote(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "upvotes"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_upvotes_user_product"),
    )


class Bookmark(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "bookmarks"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True)

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_bookmarks_user_product"),
    )
