"""Account lifecycle: sessions, password login, email verification and scheduled deletion."""

import logging
import secrets
from datetime import timedelta

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)
from app.models.token import RefreshToken
from app.models.user import User
from app.services.auth_service import find_refresh_token, hash_password, hash_token, verify_password
from app.services.clock import ensure_utc
from app.services.otp_service import minutes_left

logger = logging.getLogger(__name__)

MAX_LOGIN_ATTEMPTS = 5


async def revoke_access(
    db: AsyncSession,
    ctx: AppContext,
    user: User,
    current_token: str | None,
    token_id: str | None = None,
    revoke_all: bool = False,
    ip: str | None = None,
    current_session_id: str | None = None,
) -> int:
    """Revoke one session by id or every other session. Returns how many were revoked.

    The current session is recognised by its refresh cookie or, without one,
    by the session id in the access token.
    """
    if not token_id and not revoke_all:
        raise ValidationError("Specify either 'tokenId' to revoke or set 'revokeAll' to true.")
    now = ctx.now()
    current_hash = hash_token(current_token) if current_token else None

    if token_id:
        result = await db.execute(
            select(RefreshToken).where(RefreshToken.id == token_id, RefreshToken.user_id == user.id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise NotFoundError("Session not found.")
        if (current_hash and record.token_hash == current_hash) or record.id == current_session_id:
            raise ValidationError(
                "You cannot revoke your current active session using its ID. Log out instead.",
                "CANNOT_REVOKE_CURRENT",
            )
        if not record.is_active(now):
            return 0
        record.revoked_at = now
        record.revoked_reason = "revoked_by_user"
        await db.commit()
        logger.info("User %s revoked session %s from %s", user.id, token_id, ip)
        return 1

    stmt = (
        update(RefreshToken)
        .where(RefreshToken.user_id == user.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=now, revoked_reason="revoke_all_other_sessions")
    )
    if current_hash:
        stmt = stmt.where(RefreshToken.token_hash != current_hash)
    if current_session_id:
        stmt = stmt.where(RefreshToken.id != current_session_id)
    result = await db.execute(stmt)
    await db.commit()
    logger.info("User %s revoked %d other sessions", user.id, result.rowcount)
    return result.rowcount


async def rotate_refresh_token(db: AsyncSession, ctx: AppContext, raw: str | None) -> tuple[User, RefreshToken]:
    """Validate and revoke the presented refresh token. Returns its user and the old row."""
    now = ctx.now()
    record = await find_refresh_token(db, raw)
    if not record or not record.is_active(now):
        raise UnauthorizedError("Refresh token is invalid or expired.", "INVALID_REFRESH_TOKEN")
    user = await db.get(User, record.user_id)
    if not user or not user.is_active:
        raise UnauthorizedError("Refresh token is invalid or expired.", "INVALID_REFRESH_TOKEN")
    record.revoked_at = now
    record.revoked_reason = "rotated"
    await db.flush()
    return user, record


async def logout(db: AsyncSession, ctx: AppContext, raw: str | None) -> bool:
    record = await find_refresh_token(db, raw)
    if not record or record.revoked_at is not None:
        return False
    record.revoked_at = ctx.now()
    record.revoked_reason = "logout"
    await db.commit()
    return True


async def list_sessions(
    db: AsyncSession, ctx: AppContext, user: User, current_token: str | None, current_session_id: str | None = None,
) -> list[dict]:
    now = ctx.now()
    current_hash = hash_token(current_token) if current_token else None
    result = await db.execute(
        select(RefreshToken)
        .where(RefreshToken.user_id == user.id, RefreshToken.revoked_at.is_(None))
        .order_by(RefreshToken.created_at.desc())
    )
    return [
        {
            "id": t.id,
            "createdAt": t.created_at,
            "expiresAt": t.expires_at,
            "createdByIp": t.created_by_ip,
            "userAgent": t.user_agent,
            "provider": t.provider,
            "isCurrent": t.token_hash == current_hash if current_hash else t.id == current_session_id,
        }
        for t in result.scalars().all()
        if t.is_active(now)
    ]


async def password_login(db: AsyncSession, ctx: AppContext, identifier: str, password: str) -> User:
    """Email/username + password login with the shared lockout fields."""
    now = ctx.now()
    identifier = (identifier or "").strip().lower()
    result = await db.execute(
        select(User).where((User.email == identifier) | (User.username == identifier))
    )
    user = result.scalar_one_or_none()
    if not user or not user.hashed_password:
        raise UnauthorizedError("Invalid credentials.", "INVALID_CREDENTIALS")
    if user.is_locked(now):
        left = minutes_left(user.lock_until, now)
        raise UnauthorizedError(f"Account locked. Try again in {left} minutes.", "ACCOUNT_LOCKED", {"retryAfterMinutes": left})
    if not user.is_active:
        raise ForbiddenError("This account has been deactivated.")

    if not verify_password(password, user.hashed_password):
        user.login_failed_attempts = (user.login_failed_attempts or 0) + 1
        if user.login_failed_attempts >= MAX_LOGIN_ATTEMPTS:
            user.lock_until = now + timedelta(minutes=ctx.settings.otp_lock_minutes)
            user.login_failed_attempts = 0
            logger.warning("User %s locked after failed password logins", user.id)
        await db.commit()
        raise UnauthorizedError("Invalid credentials.", "INVALID_CREDENTIALS")

    user.login_failed_attempts = 0
    user.lock_until = None
    user.last_login_at = now
    await db.flush()
    return user


async def set_password(db: AsyncSession, user: User, password: str, current_password: str | None = None):
    if len(password or "") < 8:
        raise ValidationError("Password must be at least 8 characters.")
    if user.hashed_password and not verify_password(current_password or "", user.hashed_password):
        raise UnauthorizedError("Current password is incorrect.", "INVALID_CREDENTIALS")
    user.hashed_password = hash_password(password)
    await db.commit()


async def set_email(db: AsyncSession, user: User, email: str):
    email = email.strip().lower()
    taken = (await db.execute(select(User.id).where(User.email == email, User.id != user.id))).scalar_one_or_none()
    if taken:
        raise ConflictError("Email is already in use.", "EMAIL_EXISTS")
    if user.email != email:
        user.email = email
        user.is_email_verified = False
    await db.flush()


async def send_email_verification(db: AsyncSession, ctx: AppContext, user: User) -> bool:
    """Issue a fresh verification link. Rate limited per user."""
    if not user.email:
        raise ValidationError("Add an email address before requesting verification.", "EMAIL_REQUIRED")
    if user.is_email_verified:
        return False
    now = ctx.now()
    settings = ctx.settings
    last = ensure_utc(user.last_email_verification_request)
    if last and (now - last).total_seconds() < settings.email_verification_resend_seconds:
        wait = int(settings.email_verification_resend_seconds - (now - last).total_seconds())
        raise RateLimitedError(
            f"Please wait {wait} seconds before requesting another verification email.",
            "RATE_LIMIT_EXCEEDED",
        )

    token = secrets.token_urlsafe(32)
    user.email_verification_token = hash_token(token)
    user.email_verification_expires = now + timedelta(hours=settings.email_verification_ttl_hours)
    user.last_email_verification_request = now
    await db.commit()

    link = f"{settings.client_url.rstrip('/')}/auth/verify-email/{token}"
    ctx.send_email(
        user.email,
        "Verify your email",
        f"<p>Confirm your email address for ProductBazar:</p><p><a href=\"{link}\">{link}</a></p>",
    )
    return True


async def confirm_email(db: AsyncSession, ctx: AppContext, token: str) -> User:
    now = ctx.now()
    result = await db.execute(select(User).where(User.email_verification_token == hash_token(token)))
    user = result.scalar_one_or_none()
    if not user or not user.email_verification_expires or ensure_utc(user.email_verification_expires) < now:
        raise ValidationError("Verification link is invalid or has expired.", "INVALID_VERIFICATION_TOKEN")
    user.is_email_verified = True
    user.email_verification_token = None
    user.email_verification_expires = None
    await db.commit()
    logger.info("Email verified for user %s", user.id)
    return user


async def request_deletion(db: AsyncSession, ctx: AppContext, user: User):
    scheduled = ctx.now() + timedelta(days=ctx.settings.account_deletion_grace_days)
    user.account_deletion_scheduled = scheduled
    await db.commit()
    logger.info("Account deletion scheduled for user %s at %s", user.id, scheduled.isoformat())
    if user.is_email_verified:
        ctx.send_email(
            user.email,
            "Your account is scheduled for deletion",
            f"<p>Your ProductBazar account will be deleted on {scheduled:%d %b %Y}. "
            "Log in and cancel the request to keep it.</p>",
        )
    return scheduled


async def cancel_deletion(db: AsyncSession, ctx: AppContext, user: User):
    if not user.account_deletion_scheduled:
        raise ValidationError("No account deletion is scheduled.", "NO_DELETION_SCHEDULED")
    user.account_deletion_scheduled = None
    await db.commit()
    logger.info("Account deletion cancelled for user %s", user.id)
    if user.is_email_verified:
        ctx.send_email(
            user.email,
            "Account deletion cancelled",
            "<p>Your ProductBazar account deletion request has been cancelled.</p>",
        )
