"""Pydantic schemas for the authentication API."""

from datetime import datetime

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Credentials submitted at login."""

    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)
    scopes: list[str] = Field(default_factory=list)
    device_id: str | None = Field(
        None,
        max_length=255,
        pattern=r"^[a-zA-Z0-9_-]+$",
        description="Stable client-chosen device identifier. Derived from the User-Agent if omitted.",
    )
    device_name: str | None = Field(None, min_length=1, max_length=255)


class TokenResponse(BaseModel):
    """Response with JWT tokens."""

    access_token: str
    refresh_token: str
    token_type: str = "Bearer"
    expires_in: int = Field(description="Access token expiry in seconds")
    refresh_expires_in: int = Field(description="Refresh token expiry in seconds")


class LoginResponse(TokenResponse):
    """Token pair plus the identity it was issued to."""

    user_id: int
    email: str
    expires_at: datetime
    session_id: str = Field(description="JTI of the refresh token backing this login")


class RefreshRequest(BaseModel):
    """Request for token refresh."""

    refresh_token: str = Field(..., min_length=1)
    device_id: str | None = Field(None, min_length=1, max_length=255, pattern=r"^[a-zA-Z0-9_-]+$")


class LogoutRequest(BaseModel):
    """Request for logout with optional refresh token revocation."""

    refresh_token: str | None = Field(
        None,
        description="Refresh token to revoke alongside the access token.",
    )
    revoke_all: bool = Field(
        False,
        description="Revoke every refresh token of the user (log out all devices).",
    )


class IntrospectionResponse(BaseModel):
    """Validated claims of the presented access token."""

    active: bool
    user_id: int
    jti: str
    issued_at: datetime
    expires_at: datetime
    expires_in: int
    device_id: str | None = None
    scopes: list[str] = Field(default_factory=list)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str
