"""Blacklisted JWT tokens - survives process restarts."""

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Enum, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from tokenguard.core.database import Base

BlacklistTokenType = Enum(
    "access",
    "refresh",
    name="blacklist_token_type",
    create_constraint=True,
)


class TokenBlacklist(Base):
    """A revoked JWT identified by its JTI claim.

    Entries are created on logout/revocation and purged by the cleanup job
    once the underlying token has expired or the retention window passed.
    """

    __tablename__ = "token_blacklist"

    jti: Mapped[str] = mapped_column(String(255), primary_key=True)
    token_type: Mapped[str] = mapped_column(BlacklistTokenType, nullable=False)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    device_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    reason: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    blacklisted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    # "metadata" is reserved on declarative classes
    entry_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )

    __table_args__ = (Index("ix_token_blacklist_reason_blacklisted", "reason", "blacklisted_at"),)

    def __repr__(self) -> str:
        return f"<TokenBlacklist {self.jti} reason={self.reason}>"
