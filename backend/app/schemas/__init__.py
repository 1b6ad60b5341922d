"""Pydantic schemas package."""

from app.schemas.auth import (
    EmailUpdate,
    OtpRequest,
    OtpVerify,
    PasswordLogin,
    PasswordSet,
    RevokeAccess,
    UserRead,
    user_payload,
)
from app.schemas.common import Pagination, ok, paginate
from app.schemas.job import JobRead, JobSummary
from app.schemas.product import CommentCreate, CommentUpdate, ProductCreate, ProductUpdate, ViewCreate
from app.schemas.project import ClickEvent, ProjectCreate, ProjectUpdate, ShareEvent
from app.schemas.recommendation import InteractionCreate

__all__ = [
    # Envelope
    "Pagination",
    "ok",
    "paginate",
    # Auth
    "EmailUpdate",
    "OtpRequest",
    "OtpVerify",
    "PasswordLogin",
    "PasswordSet",
    "RevokeAccess",
    "UserRead",
    "user_payload",
    # Products
    "CommentCreate",
    "CommentUpdate",
    "ProductCreate",
    "ProductUpdate",
    "ViewCreate",
    # Recommendations
    "InteractionCreate",
    # Projects
    "ClickEvent",
    "ProjectCreate",
    "ProjectUpdate",
    "ShareEvent",
    # Jobs
    "JobRead",
    "JobSummary",
]
