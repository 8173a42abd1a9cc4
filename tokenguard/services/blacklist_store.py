"""Persistence for the token blacklist."""

from collections.abc import Iterable
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import Select, case, delete, func, select, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenguard.models.refresh_token import RefreshToken
from tokenguard.models.token_blacklist import TokenBlacklist
from tokenguard.schemas.blacklist_entry import (
    SECURITY_REASONS,
    SYSTEM_INITIATED_REASONS,
    USER_INITIATED_REASONS,
    BlacklistReason,
    TokenBlacklistEntry,
    TokenKind,
)

# Rough on-disk footprint of one row, used for size estimates
ESTIMATED_ENTRY_BYTES = 200

SEARCH_CRITERIA = frozenset({"user_id", "device_id", "token_type", "reason", "date_from", "date_to"})


def _values(reasons: Iterable[BlacklistReason]) -> list[str]:
    return [r.value for r in reasons]


class BlacklistStore(Protocol):
    """Storage contract for revoked-token entries."""

    async def add(self, entry: TokenBlacklistEntry) -> bool: ...

    async def is_blacklisted(self, jti: str) -> bool: ...

    async def batch_is_blacklisted(self, jtis: list[str]) -> dict[str, bool]: ...

    async def remove(self, jti: str) -> bool: ...

    async def batch_remove(self, jtis: list[str]) -> int: ...

    async def blacklist_all_user_tokens(
        self, user_id: int, reason: BlacklistReason, exclude_jti: str | None = None
    ) -> int: ...

    async def blacklist_all_device_tokens(self, device_id: str, reason: BlacklistReason) -> int: ...

    async def cleanup_expired_entries(self, batch_size: int | None = None) -> int: ...

    async def cleanup_old_entries(self, days: int = 90, batch_size: int | None = None) -> int: ...

    async def get_blacklist_stats(self) -> dict[str, Any]: ...

    async def get_user_blacklist_stats(self, user_id: int) -> dict[str, Any]: ...

    async def get_high_priority_entries(self, limit: int = 50) -> list[TokenBlacklistEntry]: ...

    async def search(
        self, criteria: dict[str, Any], limit: int | None = None, offset: int = 0
    ) -> list[TokenBlacklistEntry]: ...

    async def count_search(self, criteria: dict[str, Any]) -> int: ...

    async def is_size_exceeded(self, max_size: int = 100000) -> bool: ...

    async def get_size_info(self) -> dict[str, Any]: ...

    async def optimize(self) -> None: ...


class SqlBlacklistStore:
    """BlacklistStore backed by the token_blacklist table (PostgreSQL)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def add(self, entry: TokenBlacklistEntry) -> bool:
        """Insert an entry. Returns False if the jti was already blacklisted."""
        if await self.db.get(TokenBlacklist, entry.jti) is not None:
            return False

        row = TokenBlacklist(
            jti=entry.jti,
            token_type=entry.token_type.value,
            user_id=entry.user_id,
            device_id=entry.device_id,
            reason=entry.reason.value,
            expires_at=entry.expires_at,
            blacklisted_at=entry.blacklisted_at,
            entry_metadata=entry.metadata or None,
        )
        try:
            # Savepoint so a concurrent insert of the same jti does not poison the transaction
            async with self.db.begin_nested():
                self.db.add(row)
        except IntegrityError:
            return False
        return True

    async def is_blacklisted(self, jti: str) -> bool:
        result = await self.db.execute(
            select(func.count())
            .select_from(TokenBlacklist)
            .where(TokenBlacklist.jti == jti, TokenBlacklist.expires_at > datetime.now(UTC))
        )
        return result.scalar_one() > 0

    async def batch_is_blacklisted(self, jtis: list[str]) -> dict[str, bool]:
        if not jtis:
            return {}
        result = await self.db.execute(
            select(TokenBlacklist.jti).where(
                TokenBlacklist.jti.in_(jtis), TokenBlacklist.expires_at > datetime.now(UTC)
            )
        )
        found = set(result.scalars().all())
        return {jti: jti in found for jti in jtis}

    async def remove(self, jti: str) -> bool:
        result = await self.db.execute(delete(TokenBlacklist).where(TokenBlacklist.jti == jti))
        return result.rowcount > 0

    async def batch_remove(self, jtis: list[str]) -> int:
        if not jtis:
            return 0
        result = await self.db.execute(delete(TokenBlacklist).where(TokenBlacklist.jti.in_(jtis)))
        return result.rowcount

    async def blacklist_all_user_tokens(
        self, user_id: int, reason: BlacklistReason, exclude_jti: str | None = None
    ) -> int:
        """Blacklist every live refresh token the user holds."""
        query = select(RefreshToken).where(
            RefreshToken.user_id == user_id,
            RefreshToken.status == "active",
            RefreshToken.expires_at > datetime.now(UTC),
        )
        if exclude_jti is not None:
            query = query.where(RefreshToken.jti != exclude_jti)
        return await self._blacklist_refresh_records(query, reason)

    async def blacklist_all_device_tokens(self, device_id: str, reason: BlacklistReason) -> int:
        query = select(RefreshToken).where(
            RefreshToken.device_id == device_id,
            RefreshToken.status == "active",
            RefreshToken.expires_at > datetime.now(UTC),
        )
        return await self._blacklist_refresh_records(query, reason)

    async def _blacklist_refresh_records(
        self, query: Select[tuple[RefreshToken]], reason: BlacklistReason
    ) -> int:
        result = await self.db.execute(query)
        count = 0
        for record in result.scalars().all():
            entry = TokenBlacklistEntry(
                jti=record.jti,
                token_type=TokenKind.REFRESH,
                expires_at=record.expires_at,
                reason=reason,
                user_id=record.user_id,
                device_id=record.device_id,
            )
            if await self.add(entry):
                count += 1
        return count

    async def cleanup_expired_entries(self, batch_size: int | None = None) -> int:
        return await self._delete_in_batches(
            TokenBlacklist.expires_at <= datetime.now(UTC), batch_size
        )

    async def cleanup_old_entries(self, days: int = 90, batch_size: int | None = None) -> int:
        cutoff = datetime.now(UTC) - timedelta(days=days)
        return await self._delete_in_batches(TokenBlacklist.blacklisted_at <= cutoff, batch_size)

    async def _delete_in_batches(self, condition: Any, batch_size: int | None) -> int:
        if batch_size is None:
            result = await self.db.execute(delete(TokenBlacklist).where(condition))
            return result.rowcount

        total = 0
        while True:
            batch = select(TokenBlacklist.jti).where(condition).limit(batch_size)
            result = await self.db.execute(
                delete(TokenBlacklist).where(TokenBlacklist.jti.in_(batch.scalar_subquery()))
            )
            total += result.rowcount
            if result.rowcount < batch_size:
                return total

    async def get_blacklist_stats(self) -> dict[str, Any]:
        total = await self._count()
        by_type = await self._grouped_counts(TokenBlacklist.token_type)
        by_reason = await self._grouped_counts(TokenBlacklist.reason)
        return {
            "total": total,
            "by_token_type": by_type,
            "by_reason": by_reason,
            "security_related": sum(by_reason.get(r, 0) for r in _values(SECURITY_REASONS)),
            "user_initiated": sum(by_reason.get(r, 0) for r in _values(USER_INITIATED_REASONS)),
            "system_initiated": sum(
                by_reason.get(r, 0) for r in _values(SYSTEM_INITIATED_REASONS)
            ),
        }

    async def get_user_blacklist_stats(self, user_id: int) -> dict[str, Any]:
        result = await self.db.execute(
            select(
                func.count(),
                func.count(case((TokenBlacklist.token_type == "access", 1))),
                func.count(case((TokenBlacklist.token_type == "refresh", 1))),
                func.count(case((TokenBlacklist.reason.in_(_values(SECURITY_REASONS)), 1))),
                func.max(TokenBlacklist.blacklisted_at),
            ).where(TokenBlacklist.user_id == user_id)
        )
        total, access, refresh, security, last = result.one()
        return {
            "total": total,
            "access_tokens": access,
            "refresh_tokens": refresh,
            "security_related": security,
            "last_blacklisted": last,
        }

    async def get_high_priority_entries(self, limit: int = 50) -> list[TokenBlacklistEntry]:
        result = await self.db.execute(
            select(TokenBlacklist)
            .where(TokenBlacklist.reason.in_(_values(SECURITY_REASONS)))
            .order_by(TokenBlacklist.blacklisted_at.desc())
            .limit(limit)
        )
        return [self._to_entry(row) for row in result.scalars().all()]

    async def search(
        self, criteria: dict[str, Any], limit: int | None = None, offset: int = 0
    ) -> list[TokenBlacklistEntry]:
        query = self._apply_criteria(select(TokenBlacklist), criteria)
        query = query.order_by(TokenBlacklist.blacklisted_at.desc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [self._to_entry(row) for row in result.scalars().all()]

    async def count_search(self, criteria: dict[str, Any]) -> int:
        query = self._apply_criteria(select(func.count()).select_from(TokenBlacklist), criteria)
        result = await self.db.execute(query)
        return result.scalar_one()

    async def is_size_exceeded(self, max_size: int = 100000) -> bool:
        return await self._count() > max_size

    async def get_size_info(self) -> dict[str, Any]:
        now = datetime.now(UTC)
        result = await self.db.execute(
            select(
                func.count(),
                func.count(case((TokenBlacklist.expires_at > now, 1))),
                func.count(case((TokenBlacklist.expires_at <= now, 1))),
            ).select_from(TokenBlacklist)
        )
        total, active, expired = result.one()
        return {
            "total_entries": total,
            "active_entries": active,
            "expired_entries": expired,
            "cleanable_entries": expired,
            "estimated_size_mb": round(total * ESTIMATED_ENTRY_BYTES / (1024 * 1024), 2),
        }

    async def optimize(self) -> None:
        """Refresh planner statistics after large deletions."""
        await self.db.execute(text("ANALYZE token_blacklist"))

    async def _count(self) -> int:
        result = await self.db.execute(select(func.count()).select_from(TokenBlacklist))
        return result.scalar_one()

    async def _grouped_counts(self, column: Any) -> dict[str, int]:
        result = await self.db.execute(select(column, func.count()).group_by(column))
        return {key: count for key, count in result.all()}

    @staticmethod
    def _apply_criteria(query: Select, criteria: dict[str, Any]) -> Select:
        unknown = set(criteria) - SEARCH_CRITERIA
        if unknown:
            raise ValueError(f"Unsupported search criteria: {', '.join(sorted(unknown))}")

        if criteria.get("user_id") is not None:
            query = query.where(TokenBlacklist.user_id == criteria["user_id"])
        if criteria.get("device_id"):
            query = query.where(TokenBlacklist.device_id == criteria["device_id"])
        if criteria.get("token_type"):
            query = query.where(TokenBlacklist.token_type == TokenKind(criteria["token_type"]).value)
        if criteria.get("reason"):
            query = query.where(TokenBlacklist.reason == BlacklistReason(criteria["reason"]).value)
        if criteria.get("date_from") is not None:
            query = query.where(TokenBlacklist.blacklisted_at >= criteria["date_from"])
        if criteria.get("date_to") is not None:
            query = query.where(TokenBlacklist.blacklisted_at <= criteria["date_to"])
        return query

    @staticmethod
    def _to_entry(row: TokenBlacklist) -> TokenBlacklistEntry:
        return TokenBlacklistEntry(
            jti=row.jti,
            token_type=row.token_type,
            expires_at=row.expires_at,
            blacklisted_at=row.blacklisted_at,
            reason=row.reason,
            user_id=row.user_id,
            device_id=row.device_id,
            metadata=row.entry_metadata or {},
        )
