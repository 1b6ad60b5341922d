"""Authentication dependencies for FastAPI routes."""

from fastapi import Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext, get_context
from app.errors import UnauthorizedError
from app.models.base import get_db
from app.models.user import User
from app.services.auth_service import decode_access_token


def bearer_token(request: Request) -> str | None:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token.strip():
        return token.strip()
    return None


async def user_from_token(db: AsyncSession, ctx: AppContext, token: str) -> User:
    return await user_from_claims(db, ctx, decode_access_token(ctx.settings, token))


async def user_from_claims(db: AsyncSession, ctx: AppContext, payload: dict) -> User:
    result = await db.execute(select(User).where(User.id == payload["sub"]))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        raise UnauthorizedError("User no longer exists or is inactive", "INVALID_TOKEN")
    if user.is_locked(ctx.now()):
        raise UnauthorizedError("Account is temporarily locked", "ACCOUNT_LOCKED")
    return user


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
) -> User | None:
    """Return the authenticated user, or None when no bearer token is sent."""
    token = bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(ctx.settings, token)
    user = await user_from_claims(db, ctx, payload)
    request.state.user_id = user.id
    request.state.session_id = payload.get("sid")
    return user


async def require_user(user: User | None = Depends(get_current_user)) -> User:
    """Return the authenticated user or raise 401."""
    if not user:
        raise UnauthorizedError("Authentication required", "AUTH_REQUIRED")
    return user


def current_session_id(request: Request) -> str | None:
    """Refresh-session id carried by the caller's access token, if any."""
    return getattr(request.state, "session_id", None)
