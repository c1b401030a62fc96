"""Pydantic schemas for the auth endpoints."""
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from app.store.schemas import IdentityRecord

USERNAME_PATTERN = r"^[a-zA-Z0-9][a-zA-Z0-9._-]{2,29}$"


class SignupRequest(BaseModel):
    """Request body for POST /api/auth/signup."""
    username: str = Field(..., pattern=USERNAME_PATTERN)
    password: str = Field(..., min_length=6, max_length=128)
    displayName: Optional[str] = Field(default=None, max_length=50)

    @field_validator("username", mode="before")
    @classmethod
    def _strip_username(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("displayName")
    @classmethod
    def _display_name_not_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("displayName must be 1-50 characters")
        return value


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class UserOut(BaseModel):
    """Public view of a user; never includes the password hash."""
    id: str
    username: str
    displayName: str
    avatarUrl: Optional[str] = None

    @classmethod
    def from_record(cls, record: IdentityRecord) -> "UserOut":
        return cls(
            id=record.id,
            username=record.username,
            displayName=record.display_name or record.username,
            avatarUrl=record.avatar_url,
        )


class AuthResponse(BaseModel):
    message: str
    user: UserOut
    token: str
