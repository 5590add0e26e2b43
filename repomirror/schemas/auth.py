"""Authentication schemas."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Login request."""

    username: str = Field(min_length=1, max_length=50)
    password: str = Field(min_length=1, max_length=200)


class TokenResponse(BaseModel):
    """JWT access token response."""

    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class PersonalAccessTokenCreateRequest(BaseModel):
    """Request to create a personal access token."""

    name: str = Field(min_length=1, max_length=100)
    expires_days: int | None = Field(default=30, ge=1, le=3650)


class PersonalAccessTokenResponse(BaseModel):
    """Personal access token metadata."""

    id: int
    name: str
    created_at: str
    expires_at: str | None = None
    last_used_at: str | None = None
    revoked_at: str | None = None


class PersonalAccessTokenCreateResponse(PersonalAccessTokenResponse):
    """Created token metadata including the one-time plaintext token."""

    token: str


class UserResponse(BaseModel):
    """User info response."""

    id: int
    username: str
    display_name: str | None = None
    is_admin: bool = False
