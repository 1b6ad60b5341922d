"""OTP request/verify state machine: idle -> awaiting-otp -> (verified | locked).

Provider calls are time-boxed. Timestamps that feed the rate limiter are
written only after the provider accepted the send.
"""

import asyncio
import logging
import math
import re
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext
from app.errors import (
    AppError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
    UpstreamError,
    ValidationError,
)
from app.models.token import OtpRequest
from app.models.user import ROLE_REQUIRED_FIELDS, RoleProfile, User
from app.services.auth_service import generate_username
from app.services.clock import ensure_utc
from app.services.otp_provider import OtpProviderError
from app.services.phone import mask_phone, normalize_phone

logger = logging.getLogger(__name__)

OTP_TYPES = ("register", "login", "verify")
_OTP_CODE = re.compile(r"^\d{6}$")


def _normalize_or_fail(phone: str) -> str:
    normalized = normalize_phone(phone)
    if not normalized:
        raise ValidationError(
            "Invalid phone number format. Please include country code (e.g., +91).",
            "INVALID_PHONE",
        )
    return normalized


def _check_type(otp_type: str):
    if otp_type not in OTP_TYPES:
        raise ValidationError("Invalid request type. Use 'register', 'login', or 'verify'.", "INVALID_OTP_TYPE")


def minutes_left(lock_until, now) -> int:
    return max(1, math.ceil((ensure_utc(lock_until) - now).total_seconds() / 60))


def _locked_error(user: User, now) -> UnauthorizedError:
    left = minutes_left(user.lock_until, now)
    return UnauthorizedError(
        f"Account locked. Try again in {left} minutes.",
        "ACCOUNT_LOCKED_OTP",
        {"retryAfterMinutes": left},
    )


async def _user_by_phone(db: AsyncSession, phone: str) -> User | None:
    result = await db.execute(select(User).where(User.phone == phone))
    return result.scalar_one_or_none()


def _map_send_error(error: OtpProviderError) -> AppError:
    if error.status == 429:
        return RateLimitedError("Too many OTP requests to the provider. Please try again later.", "PROVIDER_RATE_LIMIT")
    if error.code == 60200:
        return ValidationError("Invalid phone number for the SMS provider. Please check the number.", "INVALID_PROVIDER_PHONE")
    if error.code == 60203:
        return RateLimitedError("Maximum send attempts reached. Please try again later.", "MAX_SEND_ATTEMPTS")
    return UpstreamError("Failed to send OTP. Please try again later.", "OTP_SEND_FAILED")


async def request_otp(db: AsyncSession, ctx: AppContext, phone: str, otp_type: str) -> dict:
    _check_type(otp_type)
    normalized = _normalize_or_fail(phone)
    now = ctx.now()
    settings = ctx.settings

    user = await _user_by_phone(db, normalized)
    if otp_type == "register" and user:
        raise ValidationError("Phone number already registered. Please log in instead.", "PHONE_EXISTS_REGISTER")
    if otp_type in ("login", "verify") and not user:
        raise NotFoundError("Phone number not found. Please register first.", "PHONE_NOT_FOUND_LOGIN")

    record = (await db.execute(select(OtpRequest).where(OtpRequest.phone == normalized))).scalar_one_or_none()
    last = ensure_utc(record.last_requested_at) if record else None
    if user and user.last_otp_request:
        user_last = ensure_utc(user.last_otp_request)
        last = max(last, user_last) if last else user_last
    if last is not None:
        elapsed = (now - last).total_seconds()
        if elapsed < settings.otp_rate_limit_seconds:
            wait = math.ceil(settings.otp_rate_limit_seconds - elapsed)
            raise RateLimitedError(
                f"Please wait {wait} seconds before requesting another OTP.",
                "RATE_LIMIT_EXCEEDED",
                {"retryAfterSeconds": wait},
            )

    try:
        await asyncio.wait_for(ctx.otp_provider.send(normalized), timeout=settings.otp_provider_timeout)
    except asyncio.TimeoutError:
        logger.error("OTP send timed out for %s", mask_phone(normalized))
        raise UpstreamError("OTP provider timed out. Please try again.", "OTP_SEND_FAILED")
    except OtpProviderError as e:
        logger.error("OTP send failed for %s: %s (status=%s code=%s)", mask_phone(normalized), e, e.status, e.code)
        raise _map_send_error(e)

    if record is None:
        db.add(OtpRequest(phone=normalized, purpose=otp_type, last_requested_at=now))
    else:
        record.purpose = otp_type
        record.last_requested_at = now
    if user:
        user.last_otp_request = now
        user.otp_failed_attempts = 0
    await db.commit()

    logger.info("OTP sent to %s for %s", mask_phone(normalized), otp_type)
    return {"phone": mask_phone(normalized), "expiresIn": 600}


def _validate_role(role: str | None, role_details: dict | None) -> tuple[str, dict]:
    role = role or "user"
    if role not in ROLE_REQUIRED_FIELDS:
        raise ValidationError(f"Invalid role '{role}'.", "INVALID_ROLE")
    required = ROLE_REQUIRED_FIELDS[role]
    if not required:
        return role, {}
    if not isinstance(role_details, dict):
        raise ValidationError(f"Role details object is required for the '{role}' role.", "MISSING_ROLE_DETAILS")
    for name in required:
        value = role_details.get(name)
        if value is None or (isinstance(value, (str, list)) and not (value.strip() if isinstance(value, str) else value)):
            raise ValidationError(f"{name} is required within roleDetails for the '{role}' role.", "MISSING_ROLE_DETAILS")
    details = dict(role_details)
    if role == "freelancer" and isinstance(details.get("skills"), str):
        details["skills"] = [s.strip() for s in details["skills"].split(",") if s.strip()]
    return role, details


async def _register_user(db: AsyncSession, phone: str, role: str | None, role_details: dict | None, now) -> User:
    role, details = _validate_role(role, role_details)
    user = User(
        phone=phone,
        username=await generate_username(db, phone=phone),
        role=role,
        is_phone_verified=True,
        last_login_at=now,
    )
    db.add(user)
    try:
        await db.flush()
        if role != "user":
            db.add(RoleProfile(user_id=user.id, role=role, details=details))
            await db.flush()
    except Exception:
        await db.rollback()
        logger.exception("Registration failed for %s, user rolled back", mask_phone(phone))
        raise ValidationError(f"Registration failed: could not create {role} profile.", "MISSING_ROLE_DETAILS")
    logger.info("Registered user %s via OTP (%s)", user.id, role)
    return user


async def verify_otp(
    db: AsyncSession,
    ctx: AppContext,
    phone: str,
    code: str,
    otp_type: str,
    role: str | None = None,
    role_details: dict | None = None,
) -> User:
    """Check ``code`` and return the authenticated (or newly registered) user."""
    _check_type(otp_type)
    normalized = _normalize_or_fail(phone)
    if not code or not _OTP_CODE.match(code):
        raise ValidationError("Invalid OTP format. Please enter 6 digits.", "INVALID_OTP_FORMAT")
    now = ctx.now()
    settings = ctx.settings

    user = await _user_by_phone(db, normalized)
    if otp_type == "register" and user:
        raise ValidationError("Phone number already registered. Please log in instead.", "PHONE_EXISTS_REGISTER")
    if otp_type in ("login", "verify") and not user:
        raise NotFoundError("Phone number not found. Please register first.", "PHONE_NOT_FOUND_LOGIN")
    if user and user.is_locked(now):
        raise _locked_error(user, now)
    if otp_type == "register":
        # validate before spending a provider check on a doomed registration
        _validate_role(role, role_details)

    try:
        valid = await asyncio.wait_for(
            ctx.otp_provider.check(normalized, code), timeout=settings.otp_provider_timeout
        )
    except asyncio.TimeoutError:
        logger.error("OTP check timed out for %s", mask_phone(normalized))
        raise UpstreamError("OTP provider timed out. Please try again.", "OTP_VERIFY_FAILED")
    except OtpProviderError as e:
        logger.error("OTP check failed for %s: %s (status=%s code=%s)", mask_phone(normalized), e, e.status, e.code)
        if e.status == 404 or e.code == 20404:
            if user:
                user.otp_failed_attempts = (user.otp_failed_attempts or 0) + 1
                await db.commit()
            raise ValidationError("OTP has expired or is invalid. Please request a new one.", "OTP_EXPIRED_OR_NOT_FOUND")
        if e.status == 429:
            if user:
                user.otp_failed_attempts = settings.otp_max_failed_attempts
                user.lock_until = now + timedelta(minutes=settings.otp_lock_minutes)
                await db.commit()
            raise UnauthorizedError(
                "Maximum verification attempts reached. Please request a new OTP.", "MAX_VERIFY_ATTEMPTS"
            )
        raise UpstreamError("Failed to verify OTP due to a provider issue.", "OTP_VERIFY_FAILED")

    if not valid:
        if user:
            user.otp_failed_attempts = (user.otp_failed_attempts or 0) + 1
            logger.warning("Invalid OTP for user %s (attempt %d)", user.id, user.otp_failed_attempts)
            if user.otp_failed_attempts >= settings.otp_max_failed_attempts:
                user.lock_until = now + timedelta(minutes=settings.otp_lock_minutes)
                await db.commit()
                logger.warning("User %s locked after failed OTP attempts", user.id)
                raise UnauthorizedError(
                    f"Too many failed OTP attempts. Account locked for {settings.otp_lock_minutes} minutes.",
                    "ACCOUNT_LOCKED_OTP",
                    {"retryAfterMinutes": settings.otp_lock_minutes},
                )
            await db.commit()
        raise ValidationError("Invalid OTP. Please try again.", "INVALID_OTP")

    if otp_type == "register":
        user = await _register_user(db, normalized, role, role_details, now)
    else:
        user.otp_failed_attempts = 0
        user.login_failed_attempts = 0
        user.lock_until = None
        user.last_login_at = now
        user.is_phone_verified = True
        logger.info("User %s %s via OTP", user.id, "logged in" if otp_type == "login" else "verified phone")
    await db.flush()
    return user
