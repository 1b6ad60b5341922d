"""Refresh tokens and OTP request bookkeeping."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, String

from app.models.base import Base, TimestampMixin, UUIDMixin
from app.services.clock import ensure_utc


class RefreshToken(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "refresh_tokens"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    token_hash = Column(String(64), unique=True, nullable=False)
    created_by_ip = Column(String(64))
    user_agent = Column(String(512))
    provider = Column(String(20), default="otp", nullable=False)  # otp, password, refresh
    expires_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True))
    revoked_reason = Column(String(50))

    __table_args__ = (
        Index("idx_refresh_tokens_user", "user_id"),
    )

    def is_active(self, now) -> bool:
        return self.revoked_at is None and ensure_utc(self.expires_at) > now


class OtpRequest(UUIDMixin, TimestampMixin, Base):
    """Last OTP send per phone; covers phones that have no user row yet."""

    __tablename__ = "otp_requests"

    phone = Column(String(20), unique=True, nullable=False)
    purpose = Column(String(20), nullable=False)
    last_requested_at = Column(DateTime(timezone=True), nullable=False)
