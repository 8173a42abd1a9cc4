"""Access/refresh token pair returned to clients."""

import re
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

_JWT_FORMAT = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]*$")
MAX_EXPIRY_SEPARATION = timedelta(days=365)


class TokenPair(BaseModel):
    """An issued access token together with its refresh token.

    Construction fails unless both tokens are still valid and the refresh
    token outlives the access token.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str = Field(min_length=16, max_length=2000)
    access_token_expires_at: datetime
    refresh_token_expires_at: datetime
    token_type: Literal["Bearer", "Basic", "Digest"] = "Bearer"

    @field_validator("access_token")
    @classmethod
    def validate_access_token(cls, v: str) -> str:
        if not v:
            raise ValueError("Access token cannot be empty")
        if not _JWT_FORMAT.match(v):
            raise ValueError("Access token must be a valid JWT format (header.payload.signature)")
        return v

    @model_validator(mode="after")
    def validate_expiration_times(self) -> "TokenPair":
        now = datetime.now(UTC)
        if self.access_token_expires_at <= now:
            raise ValueError("Access token expiration time must be in the future")
        if self.refresh_token_expires_at <= now:
            raise ValueError("Refresh token expiration time must be in the future")
        if self.refresh_token_expires_at <= self.access_token_expires_at:
            raise ValueError(
                "Refresh token expiration time must be after access token expiration time"
            )
        if self.refresh_token_expires_at - self.access_token_expires_at > MAX_EXPIRY_SEPARATION:
            raise ValueError("Time interval between tokens cannot exceed 1 year")
        return self

    def access_expires_in(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return max(0, int((self.access_token_expires_at - now).total_seconds()))

    def refresh_expires_in(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return max(0, int((self.refresh_token_expires_at - now).total_seconds()))

    def is_access_token_expired(self, now: datetime | None = None) -> bool:
        return self.access_token_expires_at <= (now or datetime.now(UTC))

    def is_refresh_token_expired(self, now: datetime | None = None) -> bool:
        return self.refresh_token_expires_at <= (now or datetime.now(UTC))

    def can_refresh(self, now: datetime | None = None) -> bool:
        return not self.is_refresh_token_expired(now)

    def is_access_token_near_expiry(
        self, threshold_seconds: int = 300, now: datetime | None = None
    ) -> bool:
        if threshold_seconds < 0:
            raise ValueError("Threshold seconds must be non-negative")
        expires_in = self.access_expires_in(now)
        return 0 < expires_in <= threshold_seconds

    @property
    def authorization_header(self) -> str:
        return f"{self.token_type} {self.access_token}"

    def to_api_response(self, include_refresh: bool = True) -> dict[str, Any]:
        response: dict[str, Any] = {
            "access_token": self.access_token,
            "token_type": self.token_type,
            "expires_in": self.access_expires_in(),
        }
        if include_refresh:
            response["refresh_token"] = self.refresh_token
            response["refresh_expires_in"] = self.refresh_expires_in()
        return response

    def __repr__(self) -> str:
        # Never render raw tokens
        return (
            f"TokenPair(type={self.token_type}, "
            f"access_expires_at={self.access_token_expires_at.isoformat()}, "
            f"refresh_expires_at={self.refresh_token_expires_at.isoformat()})"
        )
