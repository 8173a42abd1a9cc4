"""Persistence for refresh token records."""

from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenguard.models.refresh_token import RefreshToken
from tokenguard.schemas.device import DeviceInfo


class RefreshTokenStore(Protocol):
    """Storage contract for server-side refresh token records."""

    async def create(
        self,
        *,
        jti: str,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        device_info: DeviceInfo,
        parent_token_jti: str | None = None,
    ) -> RefreshToken: ...

    async def find_by_jti(self, jti: str) -> RefreshToken | None: ...

    async def find_by_token_hash(self, token_hash: str) -> RefreshToken | None: ...

    async def find_by_user_id(
        self, user_id: int, active_only: bool = True
    ) -> list[RefreshToken]: ...

    async def find_by_user_and_device(self, user_id: int, device_id: str) -> list[RefreshToken]: ...

    async def update_last_used(self, jti: str, used_at: datetime | None = None) -> bool: ...

    async def revoke(self, jti: str, reason: str) -> bool: ...

    async def revoke_all_by_user_id(
        self, user_id: int, reason: str, exclude_jti: str | None = None
    ) -> int: ...

    async def revoke_all_by_device(
        self, device_id: str, reason: str, user_id: int | None = None
    ) -> int: ...

    async def delete(self, jti: str) -> bool: ...

    async def cleanup(self, before: datetime | None = None) -> int: ...

    async def cleanup_revoked(self, days: int = 30) -> int: ...

    async def get_user_token_stats(self, user_id: int) -> dict[str, Any]: ...

    async def get_token_family(self, root_jti: str) -> list[RefreshToken]: ...


class SqlRefreshTokenStore:
    """RefreshTokenStore backed by the refresh_tokens table.

    Writes are flushed but not committed; the caller owns the transaction
    (see core.database.get_db).
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create(
        self,
        *,
        jti: str,
        user_id: int,
        token_hash: str,
        expires_at: datetime,
        device_info: DeviceInfo,
        parent_token_jti: str | None = None,
    ) -> RefreshToken:
        record = RefreshToken(
            jti=jti,
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            device_id=device_info.device_id,
            device_name=device_info.device_name,
            device_type=device_info.device_class.value,
            platform=device_info.platform.value,
            browser=device_info.browser.value,
            user_agent=device_info.user_agent,
            ip_address=device_info.ip_address,
            status="active",
            parent_token_jti=parent_token_jti,
        )
        self.db.add(record)
        await self.db.flush()
        await self.db.refresh(record)
        return record

    async def find_by_jti(self, jti: str) -> RefreshToken | None:
        result = await self.db.execute(select(RefreshToken).where(RefreshToken.jti == jti))
        return result.scalar_one_or_none()

    async def find_by_token_hash(self, token_hash: str) -> RefreshToken | None:
        result = await self.db.execute(
            select(RefreshToken).where(RefreshToken.token_hash == token_hash)
        )
        return result.scalar_one_or_none()

    async def find_by_user_id(self, user_id: int, active_only: bool = True) -> list[RefreshToken]:
        """List a user's records, oldest first (creation order)."""
        query = select(RefreshToken).where(RefreshToken.user_id == user_id)
        if active_only:
            query = query.where(
                RefreshToken.status == "active",
                RefreshToken.expires_at > datetime.now(UTC),
            )
        result = await self.db.execute(
            query.order_by(RefreshToken.created_at.asc(), RefreshToken.id.asc())
        )
        return list(result.scalars().all())

    async def find_by_user_and_device(self, user_id: int, device_id: str) -> list[RefreshToken]:
        result = await self.db.execute(
            select(RefreshToken)
            .where(
                RefreshToken.user_id == user_id,
                RefreshToken.device_id == device_id,
                RefreshToken.status == "active",
            )
            .order_by(RefreshToken.created_at.asc(), RefreshToken.id.asc())
        )
        return list(result.scalars().all())

    async def update_last_used(self, jti: str, used_at: datetime | None = None) -> bool:
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.jti == jti)
            .values(last_used_at=used_at or datetime.now(UTC))
        )
        return result.rowcount > 0

    async def revoke(self, jti: str, reason: str) -> bool:
        """Mark an active record revoked. Returns False if unknown or already revoked."""
        result = await self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.jti == jti, RefreshToken.status == "active")
            .values(status="revoked", revoked_reason=reason, revoked_at=datetime.now(UTC))
        )
        return result.rowcount > 0

    async def revoke_all_by_user_id(
        self, user_id: int, reason: str, exclude_jti: str | None = None
    ) -> int:
        query = update(RefreshToken).where(
            RefreshToken.user_id == user_id, RefreshToken.status == "active"
        )
        if exclude_jti is not None:
            query = query.where(RefreshToken.jti != exclude_jti)
        result = await self.db.execute(
            query.values(status="revoked", revoked_reason=reason, revoked_at=datetime.now(UTC))
        )
        return result.rowcount

    async def revoke_all_by_device(
        self, device_id: str, reason: str, user_id: int | None = None
    ) -> int:
        query = update(RefreshToken).where(
            RefreshToken.device_id == device_id, RefreshToken.status == "active"
        )
        if user_id is not None:
            query = query.where(RefreshToken.user_id == user_id)
        result = await self.db.execute(
            query.values(status="revoked", revoked_reason=reason, revoked_at=datetime.now(UTC))
        )
        return result.rowcount

    async def delete(self, jti: str) -> bool:
        result = await self.db.execute(delete(RefreshToken).where(RefreshToken.jti == jti))
        return result.rowcount > 0

    async def cleanup(self, before: datetime | None = None) -> int:
        """Hard-delete records that expired at or before the cutoff."""
        cutoff = before or datetime.now(UTC)
        result = await self.db.execute(delete(RefreshToken).where(RefreshToken.expires_at <= cutoff))
        return result.rowcount

    async def cleanup_revoked(self, days: int = 30) -> int:
        """Hard-delete records revoked more than `days` ago."""
        cutoff = datetime.now(UTC) - timedelta(days=days)
        result = await self.db.execute(
            delete(RefreshToken).where(
                RefreshToken.status == "revoked",
                RefreshToken.revoked_at <= cutoff,
            )
        )
        return result.rowcount

    async def get_user_token_stats(self, user_id: int) -> dict[str, Any]:
        now = datetime.now(UTC)
        result = await self.db.execute(
            select(RefreshToken.status, RefreshToken.device_id, RefreshToken.expires_at).where(
                RefreshToken.user_id == user_id
            )
        )
        rows = result.all()

        by_status: Counter[str] = Counter()
        by_device: Counter[str] = Counter()
        for status, device_id, expires_at in rows:
            effective = "expired" if status == "active" and expires_at <= now else status
            by_status[effective] += 1
            if effective == "active":
                by_device[device_id] += 1

        return {
            "total": len(rows),
            "active": by_status.get("active", 0),
            "revoked": by_status.get("revoked", 0),
            "expired": by_status.get("expired", 0),
            "by_status": dict(by_status),
            "by_device": dict(by_device),
        }

    async def get_token_family(self, root_jti: str) -> list[RefreshToken]:
        """Return the root record and every descendant linked by rotation."""
        root = await self.find_by_jti(root_jti)
        if root is None:
            return []

        family = [root]
        frontier = [root_jti]
        while frontier:
            result = await self.db.execute(
                select(RefreshToken)
                .where(RefreshToken.parent_token_jti.in_(frontier))
                .order_by(RefreshToken.created_at.asc(), RefreshToken.id.asc())
            )
            children = list(result.scalars().all())
            family.extend(children)
            frontier = [child.jti for child in children]
        return family

