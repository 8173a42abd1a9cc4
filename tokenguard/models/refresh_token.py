"""RefreshToken model - server-side record of every issued refresh token."""

from datetime import UTC, datetime

from sqlalchemy import DateTime, Enum, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from tokenguard.models.base import BaseModel

# Record status
RefreshTokenStatus = Enum(
    "active",
    "revoked",
    "expired",
    name="refresh_token_status",
    create_constraint=True,
)


class RefreshToken(BaseModel):
    """Persisted refresh token.

    Only a SHA-256 hash of the raw token is stored. Rotation links each
    successor to its predecessor through parent_token_jti, forming a
    token family rooted at the login that created it.
    """

    __tablename__ = "refresh_tokens"

    jti: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    token_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # Device snapshot taken at issuance
    device_id: Mapped[str] = mapped_column(String(255), nullable=False)
    device_name: Mapped[str] = mapped_column(String(255), nullable=False)
    device_type: Mapped[str] = mapped_column(String(20), nullable=False, default="desktop")
    platform: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(RefreshTokenStatus, nullable=False, default="active")
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    revoked_reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Rotation lineage
    parent_token_jti: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)

    __table_args__ = (
        Index("ix_refresh_tokens_user_status", "user_id", "status"),
        Index("ix_refresh_tokens_user_device", "user_id", "device_id"),
        Index("ix_refresh_tokens_expires_at", "expires_at"),
    )

    @property
    def is_revoked(self) -> bool:
        return self.status == "revoked"

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at <= (now or datetime.now(UTC))

    def is_valid(self, now: datetime | None = None) -> bool:
        return self.status == "active" and not self.is_expired(now)

    def __repr__(self) -> str:
        return f"<RefreshToken {self.jti} user={self.user_id} status={self.status}>"
