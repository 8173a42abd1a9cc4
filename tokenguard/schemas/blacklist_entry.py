"""Blacklist entry value object and reason taxonomy."""

import json
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_METADATA_BYTES = 65536


class TokenKind(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class BlacklistReason(str, Enum):
    USER_LOGOUT = "user_logout"
    TOKEN_REVOKED = "token_revoked"
    SECURITY_BREACH = "security_breach"
    PASSWORD_CHANGED = "password_changed"
    ACCOUNT_SUSPENDED = "account_suspended"
    MANUAL_REVOCATION = "manual_revocation"
    TOKEN_EXPIRED = "token_expired"
    INVALID_SIGNATURE = "invalid_signature"
    DEVICE_LOST = "device_lost"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"

    @property
    def description(self) -> str:
        return _REASON_DESCRIPTIONS[self]


_REASON_DESCRIPTIONS = {
    BlacklistReason.USER_LOGOUT: "User logged out",
    BlacklistReason.TOKEN_REVOKED: "Token manually revoked",
    BlacklistReason.SECURITY_BREACH: "Security breach detected",
    BlacklistReason.PASSWORD_CHANGED: "Password changed",
    BlacklistReason.ACCOUNT_SUSPENDED: "Account suspended",
    BlacklistReason.MANUAL_REVOCATION: "Manual revocation",
    BlacklistReason.TOKEN_EXPIRED: "Token expired",
    BlacklistReason.INVALID_SIGNATURE: "Invalid signature",
    BlacklistReason.DEVICE_LOST: "Device reported lost",
    BlacklistReason.SUSPICIOUS_ACTIVITY: "Suspicious activity detected",
}

SECURITY_REASONS = frozenset(
    {
        BlacklistReason.SECURITY_BREACH,
        BlacklistReason.SUSPICIOUS_ACTIVITY,
        BlacklistReason.DEVICE_LOST,
        BlacklistReason.INVALID_SIGNATURE,
    }
)
USER_INITIATED_REASONS = frozenset(
    {
        BlacklistReason.USER_LOGOUT,
        BlacklistReason.MANUAL_REVOCATION,
        BlacklistReason.DEVICE_LOST,
    }
)
SYSTEM_INITIATED_REASONS = frozenset(
    {
        BlacklistReason.TOKEN_EXPIRED,
        BlacklistReason.ACCOUNT_SUSPENDED,
        BlacklistReason.SECURITY_BREACH,
        BlacklistReason.PASSWORD_CHANGED,
    }
)
# Reasons that warrant a warning-level log line when blacklisted
HIGH_PRIORITY_REASONS = frozenset(
    {
        BlacklistReason.SECURITY_BREACH,
        BlacklistReason.SUSPICIOUS_ACTIVITY,
        BlacklistReason.ACCOUNT_SUSPENDED,
        BlacklistReason.MANUAL_REVOCATION,
    }
)


class TokenBlacklistEntry(BaseModel):
    """A single revoked token, as written to and read from the blacklist store."""

    model_config = ConfigDict(frozen=True)

    jti: str = Field(min_length=1, max_length=255)
    token_type: TokenKind
    expires_at: datetime
    blacklisted_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    reason: BlacklistReason
    user_id: int | None = Field(default=None, gt=0)
    device_id: str | None = Field(default=None, min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("metadata")
    @classmethod
    def validate_metadata(cls, v: dict[str, Any]) -> dict[str, Any]:
        try:
            encoded = json.dumps(v)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Metadata must be JSON serializable: {e}") from e
        if len(encoded.encode("utf-8")) > MAX_METADATA_BYTES:
            raise ValueError("Metadata cannot exceed 64KB when serialized")
        return v

    @model_validator(mode="after")
    def validate_blacklisted_at(self) -> "TokenBlacklistEntry":
        now = datetime.now(UTC)
        if self.blacklisted_at < now - timedelta(days=365):
            raise ValueError("Blacklisted time cannot be more than 1 year ago")
        if self.blacklisted_at > now + timedelta(days=365):
            raise ValueError("Blacklisted time cannot be more than 1 year in the future")
        return self

    @classmethod
    def for_user_logout(
        cls,
        jti: str,
        token_type: TokenKind | str,
        expires_at: datetime,
        user_id: int,
        device_id: str | None = None,
    ) -> "TokenBlacklistEntry":
        return cls(
            jti=jti,
            token_type=token_type,
            expires_at=expires_at,
            reason=BlacklistReason.USER_LOGOUT,
            user_id=user_id,
            device_id=device_id,
        )

    @classmethod
    def for_security_breach(
        cls,
        jti: str,
        token_type: TokenKind | str,
        expires_at: datetime,
        security_reason: BlacklistReason | str,
        user_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> "TokenBlacklistEntry":
        """Build a security entry; non-security reasons collapse to security_breach."""
        try:
            reason = BlacklistReason(security_reason)
        except ValueError:
            reason = BlacklistReason.SECURITY_BREACH
        if reason not in SECURITY_REASONS:
            reason = BlacklistReason.SECURITY_BREACH
        return cls(
            jti=jti,
            token_type=token_type,
            expires_at=expires_at,
            reason=reason,
            user_id=user_id,
            metadata=metadata or {},
        )

    @classmethod
    def for_account_change(
        cls,
        jti: str,
        token_type: TokenKind | str,
        expires_at: datetime,
        user_id: int,
        change_type: BlacklistReason | str,
    ) -> "TokenBlacklistEntry":
        allowed = (BlacklistReason.PASSWORD_CHANGED, BlacklistReason.ACCOUNT_SUSPENDED)
        if change_type not in [r.value for r in allowed]:
            raise ValueError(
                f"Change type must be one of: {', '.join(r.value for r in allowed)}"
            )
        return cls(
            jti=jti,
            token_type=token_type,
            expires_at=expires_at,
            reason=BlacklistReason(change_type),
            user_id=user_id,
        )

    @property
    def is_security_related(self) -> bool:
        return self.reason in SECURITY_REASONS

    @property
    def is_user_initiated(self) -> bool:
        return self.reason in USER_INITIATED_REASONS

    @property
    def is_system_initiated(self) -> bool:
        return self.reason in SYSTEM_INITIATED_REASONS

    @property
    def is_high_priority(self) -> bool:
        return self.reason in HIGH_PRIORITY_REASONS

    def is_active(self, now: datetime | None = None) -> bool:
        """Entry still matters while the underlying token has not expired."""
        return self.expires_at > (now or datetime.now(UTC))

    def can_be_cleaned_up(self, now: datetime | None = None) -> bool:
        return not self.is_active(now)

    def priority(self, now: datetime | None = None) -> int:
        """Cleanup priority; lower numbers are purged first."""
        if self.can_be_cleaned_up(now):
            return 1
        if self.is_security_related:
            return 2
        if self.is_user_initiated:
            return 3
        return 4

    def to_dict(self) -> dict[str, Any]:
        return {
            "jti": self.jti,
            "token_type": self.token_type.value,
            "expires_at": self.expires_at.isoformat(),
            "blacklisted_at": self.blacklisted_at.isoformat(),
            "reason": self.reason.value,
            "reason_description": self.reason.description,
            "user_id": self.user_id,
            "device_id": self.device_id,
            "metadata": self.metadata,
            "is_security_related": self.is_security_related,
            "is_user_initiated": self.is_user_initiated,
            "is_active": self.is_active(),
            "priority": self.priority(),
        }
