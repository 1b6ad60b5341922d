"""Authentication endpoints: OTP, password login, sessions, email verification and deletion."""

import logging
from typing import Literal

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from app.context import AppContext, get_context
from app.dependencies.auth import current_session_id, require_user
from app.dependencies.rate_limit import client_identifier, rate_limit
from app.errors import UnauthorizedError
from app.models.base import get_db
from app.models.user import User
from app.schemas import (
    EmailUpdate,
    OtpRequest,
    OtpVerify,
    PasswordLogin,
    PasswordSet,
    RevokeAccess,
    ok,
    user_payload,
)
from app.services import account_service, otp_service
from app.services.auth_service import (
    REFRESH_COOKIE,
    clear_refresh_cookie,
    issue_session,
    set_refresh_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

OtpType = Literal["register", "login", "verify"]


async def _start_session(
    request: Request, response: Response, db: AsyncSession, ctx: AppContext, user: User, provider: str
) -> dict:
    session = await issue_session(
        db, ctx.settings, user, ctx.now(),
        ip=client_identifier(request),
        user_agent=request.headers.get("user-agent"),
        provider=provider,
    )
    await db.commit()
    set_refresh_cookie(response, ctx.settings, session["refresh_token"])
    return {"accessToken": session["access_token"], "user": user_payload(user)}


@router.post("/{otp_type}/request-otp", dependencies=[Depends(rate_limit("otp"))])
async def request_otp(
    otp_type: OtpType,
    body: OtpRequest,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Send a one-time code by SMS."""
    data = await otp_service.request_otp(db, ctx, body.phone, otp_type)
    return ok(data, message="OTP sent successfully")


@router.post("/{otp_type}/verify-otp", dependencies=[Depends(rate_limit("otp"))])
async def verify_otp(
    otp_type: OtpType,
    body: OtpVerify,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Verify the code; registers, logs in or confirms the phone, then opens a session."""
    user = await otp_service.verify_otp(db, ctx, body.phone, body.code, otp_type, body.role, body.role_details)
    data = await _start_session(request, response, db, ctx, user, provider="otp")
    next_step = None
    if otp_type == "register":
        next_step = {"type": "complete_profile", "message": "Complete your profile to get started"}
    elif not user.email:
        next_step = {"type": "add_email", "message": "Add an email address to secure your account"}
    messages = {"register": "Registration successful", "login": "Login successful", "verify": "Phone verified"}
    return ok(data, message=messages[otp_type], next_step=next_step)


@router.post("/login")
async def password_login(
    body: PasswordLogin,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    user = await account_service.password_login(db, ctx, body.identifier, body.password)
    data = await _start_session(request, response, db, ctx, user, provider="password")
    return ok(data, message="Login successful")


@router.post("/password")
async def set_password(
    body: PasswordSet,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    await account_service.set_password(db, user, body.password, body.current_password)
    return ok(message="Password updated")


@router.post("/email")
async def update_email(
    body: EmailUpdate,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Set or change the account email and send a verification link."""
    await account_service.set_email(db, user, body.email)
    await db.commit()
    sent = await account_service.send_email_verification(db, ctx, user)
    return ok({"user": user_payload(user), "verificationSent": sent}, message="Email updated")


@router.post("/refresh-token")
async def refresh_token(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    """Rotate the refresh cookie and return a new access token."""
    raw = request.cookies.get(REFRESH_COOKIE)
    if not raw:
        raise UnauthorizedError("Refresh token missing.", "REFRESH_TOKEN_MISSING")
    user, old = await account_service.rotate_refresh_token(db, ctx, raw)
    data = await _start_session(request, response, db, ctx, user, provider=old.provider or "otp")
    return ok(data, message="Token refreshed")


@router.post("/logout")
async def logout(
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    await account_service.logout(db, ctx, request.cookies.get(REFRESH_COOKIE))
    clear_refresh_cookie(response, ctx.settings)
    return ok(message="Logged out")


@router.get("/sessions")
async def list_sessions(
    request: Request,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    sessions = await account_service.list_sessions(
        db, ctx, user, request.cookies.get(REFRESH_COOKIE), current_session_id(request),
    )
    return ok(sessions)


@router.post("/revoke-access")
async def revoke_access(
    body: RevokeAccess,
    request: Request,
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    revoked = await account_service.revoke_access(
        db, ctx, user, request.cookies.get(REFRESH_COOKIE),
        token_id=body.token_id, revoke_all=body.revoke_all, ip=client_identifier(request),
        current_session_id=current_session_id(request),
    )
    return ok({"revoked": revoked}, message=f"Revoked {revoked} session(s)")


@router.get("/me")
async def me(user: User = Depends(require_user)):
    return ok(user_payload(user))


@router.post("/verify-email/resend")
async def resend_verification(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    sent = await account_service.send_email_verification(db, ctx, user)
    return ok({"sent": sent}, message="Verification email sent" if sent else "Email already verified")


@router.get("/verify-email/{token}")
async def verify_email(
    token: str,
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    user = await account_service.confirm_email(db, ctx, token)
    return ok({"user": user_payload(user)}, message="Email verified")


@router.post("/request-deletion")
async def request_deletion(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    scheduled = await account_service.request_deletion(db, ctx, user)
    return ok({"scheduledFor": scheduled.isoformat()}, message="Account deletion scheduled")


@router.post("/cancel-deletion")
async def cancel_deletion(
    user: User = Depends(require_user),
    db: AsyncSession = Depends(get_db),
    ctx: AppContext = Depends(get_context),
):
    await account_service.cancel_deletion(db, ctx, user)
    return ok(message="Account deletion cancelled")
