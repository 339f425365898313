"""Request/response schemas for authentication endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator


class SignupRequest(BaseModel):
    """Email + password registration."""

    name: str = Field(..., min_length=1, max_length=128)
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class LoginRequest(BaseModel):
    """Login with email + password."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=256)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Normalize email to lowercase."""
        return v.lower().strip()


class RefreshRequest(BaseModel):
    """Refresh token rotation request."""

    refresh_token: str


class LogoutRequest(BaseModel):
    """Logout (revoke refresh token)."""

    refresh_token: str


class UserResponse(BaseModel):
    id: int
    name: str
    email: str
    bio: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    last_login: datetime | None = None
    login_count: int = 0

    model_config = {"from_attributes": True}


class TokenResponse(BaseModel):
    """Token response returned after successful auth."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 3600
    user: UserResponse
