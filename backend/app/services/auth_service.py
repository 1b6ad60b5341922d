"""Authentication helpers: bcrypt passwords, JWT access tokens and refresh-token sessions."""

import hashlib
import logging
import re
import secrets
from datetime import timedelta
from typing import Any

import bcrypt
from fastapi import Response
from jose import JWTError, jwt
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.errors import UnauthorizedError
from app.models.token import RefreshToken
from app.models.user import User

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_COOKIE = "refreshToken"
USERNAME_MAX_LENGTH = 30


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: str | None) -> bool:
    """Check a plaintext password against a bcrypt hash."""
    if not hashed:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(settings: Settings, user: User, now, session_id: str | None = None) -> str:
    expires_at = now + timedelta(minutes=settings.access_token_expire_minutes)
    claims: dict[str, Any] = {
        "sub": user.id,
        "role": user.role,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if session_id:
        claims["sid"] = session_id
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(settings: Settings, token: str) -> dict:
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as exc:
        raise UnauthorizedError("Invalid or expired access token", "INVALID_TOKEN") from exc
    if payload.get("type") != ACCESS_TOKEN_TYPE or not payload.get("sub"):
        raise UnauthorizedError("Invalid access token", "INVALID_TOKEN")
    return payload


async def issue_refresh_token(
    db: AsyncSession,
    settings: Settings,
    user: User,
    now,
    ip: str | None = None,
    user_agent: str | None = None,
    provider: str = "otp",
) -> tuple[str, RefreshToken]:
    """Persist a new refresh session and return (raw token, row). Only the hash is stored."""
    raw = secrets.token_urlsafe(48)
    record = RefreshToken(
        user_id=user.id,
        token_hash=hash_token(raw),
        created_by_ip=ip,
        user_agent=(user_agent or "Unknown")[:512],
        provider=provider,
        expires_at=now + timedelta(days=settings.refresh_token_expire_days),
    )
    db.add(record)
    await db.flush()
    return raw, record


async def find_refresh_token(db: AsyncSession, raw: str | None) -> RefreshToken | None:
    if not raw:
        return None
    result = await db.execute(select(RefreshToken).where(RefreshToken.token_hash == hash_token(raw)))
    return result.scalar_one_or_none()


async def issue_session(db: AsyncSession, settings: Settings, user: User, now, ip=None, user_agent=None, provider="otp") -> dict:
    raw, record = await issue_refresh_token(db, settings, user, now, ip, user_agent, provider)
    return {
        "access_token": create_access_token(settings, user, now, session_id=record.id),
        "refresh_token": raw,
        "session_id": record.id,
    }


def set_refresh_cookie(response: Response, settings: Settings, token: str):
    response.set_cookie(
        REFRESH_COOKIE,
        token,
        httponly=True,
        secure=settings.is_production,
        samesite="none" if settings.is_production else "lax",
        path="/",
        max_age=settings.refresh_token_expire_days * 24 * 3600,
    )


def clear_refresh_cookie(response: Response, settings: Settings):
    response.delete_cookie(
        REFRESH_COOKIE,
        path="/",
        secure=settings.is_production,
        httponly=True,
        samesite="none" if settings.is_production else "lax",
    )


async def generate_username(db: AsyncSession, phone: str | None = None, email: str | None = None) -> str:
    """``user<last 6 phone digits>`` (or the email local part), suffixed until unique."""
    if phone:
        base = "user" + re.sub(r"\D", "", phone)[-6:]
    elif email:
        base = re.sub(r"[^a-z0-9_]", "", email.split("@")[0].lower()) or "user"
    else:
        base = "user"
    base = base[:USERNAME_MAX_LENGTH]

    candidate = base
    attempt = 0
    while True:
        taken = (await db.execute(
            select(func.count(User.id)).where(User.username == candidate)
        )).scalar()
        if not taken:
            return candidate
        attempt += 1
        suffix = str(attempt) if attempt < 10 else secrets.token_hex(3)
        candidate = base[:USERNAME_MAX_LENGTH - len(suffix)] + suffix
