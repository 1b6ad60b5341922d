"""Request and response schemas for authentication."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class OtpRequest(BaseModel):
    phone: str = Field(min_length=6, max_length=20)


class OtpVerify(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone: str = Field(min_length=6, max_length=20)
    code: str
    role: str | None = None
    role_details: dict | None = Field(default=None, alias="roleDetails")


class PasswordLogin(BaseModel):
    """Log in with an email, phone or username plus password."""

    identifier: str = Field(min_length=1)
    password: str = Field(min_length=1)


class PasswordSet(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    password: str = Field(min_length=8, max_length=128)
    current_password: str | None = Field(default=None, alias="currentPassword")


class EmailUpdate(BaseModel):
    email: str = Field(min_length=3, max_length=255, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class RevokeAccess(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    token_id: str | None = Field(default=None, alias="tokenId")
    revoke_all: bool = Field(default=False, alias="revokeAll")


class UserRead(BaseModel):
    """Public view of the authenticated user."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    email: str | None = None
    phone: str | None = None
    first_name: str | None = Field(default=None, serialization_alias="firstName")
    last_name: str | None = Field(default=None, serialization_alias="lastName")
    role: str
    secondary_roles: list[str] = Field(default_factory=list, serialization_alias="secondaryRoles")
    is_email_verified: bool = Field(serialization_alias="isEmailVerified")
    is_phone_verified: bool = Field(serialization_alias="isPhoneVerified")
    account_deletion_scheduled: datetime | None = Field(default=None, serialization_alias="accountDeletionScheduled")
    created_at: datetime = Field(serialization_alias="createdAt")


def user_payload(user) -> dict:
    return UserRead.model_validate(user).model_dump(by_alias=True, mode="json")
