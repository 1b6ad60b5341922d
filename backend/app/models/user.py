"""User accounts, role profiles and the activity log."""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint

from app.models.base import Base, JSONType, TimestampMixin, UUIDMixin
from app.services.clock import ensure_utc

USER_ROLES = ("user", "maker", "admin", "startupOwner", "investor", "agency", "freelancer", "jobseeker")

# Roles that may be chosen at registration, with the fields each profile needs
ROLE_REQUIRED_FIELDS = {
    "user": (),
    "startupOwner": ("companyName",),
    "investor": ("investorType",),
    "agency": ("companyName",),
    "freelancer": ("skills",),
    "jobseeker": ("jobTitle",),
}


class User(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "users"

    email = Column(String(255), unique=True, index=True)
    phone = Column(String(20), unique=True, index=True)
    username = Column(String(30), unique=True, nullable=False, index=True)
    first_name = Column(String(100))
    last_name = Column(String(100))
    hashed_password = Column(String(255))
    role = Column(String(20), default="user", nullable=False)
    secondary_roles = Column(JSONType, default=list, nullable=False)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    is_phone_verified = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    # Lockout state shared by OTP and password login
    lock_until = Column(DateTime(timezone=True))
    otp_failed_attempts = Column(Integer, default=0, nullable=False)
    last_otp_request = Column(DateTime(timezone=True))
    login_failed_attempts = Column(Integer, default=0, nullable=False)
    last_login_at = Column(DateTime(timezone=True))

    # Email verification
    email_verification_token = Column(String(64), index=True)
    email_verification_expires = Column(DateTime(timezone=True))
    last_email_verification_request = Column(DateTime(timezone=True))

    interests = Column(JSONType, default=list, nullable=False)  # [{"name": str, "strength": 1..10}]
    account_deletion_scheduled = Column(DateTime(timezone=True))

    def is_locked(self, now) -> bool:
        lock_until = ensure_utc(self.lock_until)
        return lock_until is not None and lock_until > now

    def has_role(self, role: str) -> bool:
        return self.role == role or role in (self.secondary_roles or [])


class RoleProfile(UUIDMixin, TimestampMixin, Base):
    """Role-specific details (startup, investor, agency, ...) keyed by role."""

    __tablename__ = "role_profiles"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    details = Column(JSONType, default=dict, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_role_profiles_user_role"),
    )


class UserActivity(UUIDMixin, TimestampMixin, Base):
    __tablename__ = "user_activities"

    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    action = Column(String(40), nullable=False)  # upvote, remove_upvote, bookmark, comment, reply, ...
    description = Column(Text)
    reference_id = Column(String(36))
    reference_type = Column(String(20))

    __table_args__ = (
        Index("idx_user_activities_user_created", "user_id", "created_at"),
    )
