"""Blacklist service - revocation bookkeeping, cleanup policy and health."""

import logging
import time
from datetime import datetime
from typing import Any

from tokenguard.core.config import settings
from tokenguard.schemas.blacklist_entry import (
    BlacklistReason,
    TokenBlacklistEntry,
    TokenKind,
)
from tokenguard.services.blacklist_cache import BlacklistCache, blacklist_cache
from tokenguard.services.blacklist_store import BlacklistStore

logger = logging.getLogger(__name__)

# Health thresholds
EXPIRED_ENTRIES_WARNING = 1000
SECURITY_ENTRIES_WARNING = 100


def _log_context(entry: TokenBlacklistEntry) -> dict[str, Any]:
    return {
        "jti": entry.jti,
        "user_id": entry.user_id,
        "device_id": entry.device_id,
        "reason": entry.reason.value,
    }


def _parse_token_type(token_type: TokenKind | str) -> TokenKind:
    try:
        return TokenKind(token_type)
    except ValueError:
        raise ValueError(
            f"Token type must be one of: {', '.join(t.value for t in TokenKind)}"
        ) from None


def _parse_reason(reason: BlacklistReason | str) -> BlacklistReason:
    try:
        return BlacklistReason(reason)
    except ValueError:
        raise ValueError(
            f"Reason must be one of: {', '.join(r.value for r in BlacklistReason)}"
        ) from None


class BlacklistService:
    """Denylist operations on top of a BlacklistStore.

    Read paths fail closed: if the store cannot answer, a token is treated
    as blacklisted. Write and maintenance paths never raise on store
    failures; they log and report False/0 instead.
    """

    def __init__(
        self,
        store: BlacklistStore,
        cache: BlacklistCache | None = None,
        max_size: int | None = None,
        retention_days: int | None = None,
        cleanup_batch_size: int | None = None,
    ):
        self.store = store
        self.cache = cache if cache is not None else blacklist_cache
        self.max_size = max_size or settings.blacklist_max_size
        self.retention_days = retention_days or settings.blacklist_retention_days
        self.cleanup_batch_size = cleanup_batch_size or settings.blacklist_cleanup_batch_size

    async def blacklist_token(
        self,
        jti: str,
        token_type: TokenKind | str,
        user_id: int | None,
        expires_at: datetime,
        reason: BlacklistReason | str,
        device_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Add a token to the blacklist.

        Raises:
            ValueError: If token_type or reason is not recognised. Raised
                before anything is written.
        """
        kind = _parse_token_type(token_type)
        parsed_reason = _parse_reason(reason)

        entry = TokenBlacklistEntry(
            jti=jti,
            token_type=kind,
            expires_at=expires_at,
            reason=parsed_reason,
            user_id=user_id,
            device_id=device_id,
            metadata=metadata or {},
        )
        return await self.blacklist_entry(entry)

    async def blacklist_entry(self, entry: TokenBlacklistEntry) -> bool:
        """Persist a prebuilt entry. Returns False if the store write failed."""
        try:
            added = await self.store.add(entry)
        except Exception as e:
            logger.error(f"Failed to blacklist token {entry.jti}: {e}")
            return False

        if entry.is_high_priority:
            logger.warning(
                f"High priority token blacklisted: jti={entry.jti} reason={entry.reason.value} "
                f"user_id={entry.user_id} device_id={entry.device_id}",
                extra=_log_context(entry),
            )
        elif added:
            logger.info(
                f"Token blacklisted: jti={entry.jti} reason={entry.reason.value}",
                extra=_log_context(entry),
            )
        return True

    async def is_token_blacklisted(self, jti: str, cache_until: float | None = None) -> bool:
        """Fail-closed membership check.

        A hit confirmed by the store is cached until cache_until (the token's
        exp as a Unix timestamp) when given. Writes never fill the cache, so a
        rolled back revocation is not remembered.
        """
        if not jti:
            return False
        if self.cache.contains(jti):
            return True
        try:
            blacklisted = await self.store.is_blacklisted(jti)
        except Exception as e:
            logger.error(f"Blacklist lookup failed for {jti}, failing closed: {e}")
            return True
        if blacklisted and cache_until is not None:
            self.cache.add(jti, cache_until)
        return blacklisted

    async def is_recorded(self, jti: str) -> bool:
        """Whether the store holds an entry for jti. Store errors propagate."""
        if not jti:
            return False
        return await self.store.is_blacklisted(jti)

    async def batch_check_blacklist(self, jtis: list[str]) -> dict[str, bool]:
        jtis = [jti for jti in jtis if jti]
        if not jtis:
            return {}
        try:
            return await self.store.batch_is_blacklisted(jtis)
        except Exception as e:
            logger.error(f"Batch blacklist lookup failed, failing closed: {e}")
            return {jti: True for jti in jtis}

    async def blacklist_user_tokens(
        self,
        user_id: int,
        reason: BlacklistReason | str,
        exclude_jti: str | None = None,
    ) -> int:
        if user_id <= 0:
            raise ValueError("User ID must be positive")
        parsed_reason = _parse_reason(reason)

        try:
            count = await self.store.blacklist_all_user_tokens(user_id, parsed_reason, exclude_jti)
        except Exception as e:
            logger.error(f"Failed to blacklist tokens for user {user_id}: {e}")
            return 0

        logger.info(f"Blacklisted {count} tokens for user {user_id} ({parsed_reason.value})")
        return count

    async def blacklist_device_tokens(self, device_id: str, reason: BlacklistReason | str) -> int:
        if not device_id:
            raise ValueError("Device ID cannot be empty")
        parsed_reason = _parse_reason(reason)

        try:
            count = await self.store.blacklist_all_device_tokens(device_id, parsed_reason)
        except Exception as e:
            logger.error(f"Failed to blacklist tokens for device {device_id}: {e}")
            return 0

        logger.info(f"Blacklisted {count} tokens for device {device_id} ({parsed_reason.value})")
        return count

    async def remove_from_blacklist(self, jti: str) -> bool:
        if not jti:
            return False
        self.cache.discard(jti)
        try:
            return await self.store.remove(jti)
        except Exception as e:
            logger.error(f"Failed to remove {jti} from blacklist: {e}")
            return False

    async def batch_remove_from_blacklist(self, jtis: list[str]) -> int:
        jtis = [jti for jti in jtis if jti]
        if not jtis:
            return 0
        for jti in jtis:
            self.cache.discard(jti)
        try:
            return await self.store.batch_remove(jtis)
        except Exception as e:
            logger.error(f"Failed to remove {len(jtis)} entries from blacklist: {e}")
            return 0

    async def auto_cleanup(self, batch_size: int | None = None) -> dict[str, Any]:
        """Purge expired entries, then entries past the retention window.

        Never raises; failures are reported with success=False.
        """
        batch_size = batch_size or self.cleanup_batch_size
        start = time.monotonic()
        total_cleaned = 0

        try:
            expired_cleaned = await self.store.cleanup_expired_entries(batch_size)
            total_cleaned += expired_cleaned

            old_cleaned = await self.store.cleanup_old_entries(self.retention_days, batch_size)
            total_cleaned += old_cleaned
        except Exception as e:
            result = {
                "total_cleaned": total_cleaned,
                "execution_time": round(time.monotonic() - start, 3),
                "success": False,
                "error": str(e),
            }
            logger.error(f"Blacklist auto cleanup failed: {e}")
            return result

        self.cache.cleanup_expired()
        result = {
            "total_cleaned": total_cleaned,
            "expired_cleaned": expired_cleaned,
            "old_cleaned": old_cleaned,
            "execution_time": round(time.monotonic() - start, 3),
            "success": True,
        }
        if total_cleaned > 0:
            logger.info(
                f"Blacklist cleanup removed {total_cleaned} entries "
                f"({expired_cleaned} expired, {old_cleaned} past retention)"
            )
        return result

    async def get_statistics(self) -> dict[str, Any]:
        try:
            stats = await self.store.get_blacklist_stats()
            size_info = await self.store.get_size_info()
            size_exceeded = await self.store.is_size_exceeded(self.max_size)
        except Exception as e:
            logger.error(f"Failed to get blacklist statistics: {e}")
            return {"error": "Unable to retrieve statistics"}

        return {**stats, "size_info": size_info, "is_size_exceeded": size_exceeded}

    async def get_user_statistics(self, user_id: int) -> dict[str, Any]:
        if user_id <= 0:
            raise ValueError("User ID must be positive")
        try:
            return await self.store.get_user_blacklist_stats(user_id)
        except Exception as e:
            logger.error(f"Failed to get blacklist statistics for user {user_id}: {e}")
            return {"user_id": user_id, "error": "Unable to retrieve user statistics"}

    async def search_blacklist_entries(
        self,
        criteria: dict[str, Any],
        limit: int | None = None,
        offset: int = 0,
    ) -> dict[str, Any]:
        if offset < 0:
            raise ValueError("Offset must be non-negative")
        if limit is not None and limit <= 0:
            raise ValueError("Limit must be positive")

        try:
            entries = await self.store.search(criteria, limit, offset)
            total = await self.store.count_search(criteria)
        except Exception as e:
            logger.error(f"Failed to search blacklist entries ({criteria}): {e}")
            return {"entries": [], "total": 0, "error": "Search failed"}

        return {
            "entries": entries,
            "total": total,
            "limit": limit,
            "offset": offset,
            "has_more": limit is not None and offset + len(entries) < total,
        }

    async def get_recent_high_priority_entries(self, limit: int = 50) -> list[TokenBlacklistEntry]:
        try:
            return await self.store.get_high_priority_entries(limit)
        except Exception as e:
            logger.error(f"Failed to get high priority blacklist entries: {e}")
            return []

    async def optimize(self) -> dict[str, Any]:
        """Purge expired entries and refresh storage statistics."""
        start = time.monotonic()
        try:
            cleaned = await self.store.cleanup_expired_entries(self.cleanup_batch_size)
            await self.store.optimize()
        except Exception as e:
            logger.error(f"Blacklist optimization failed: {e}")
            return {"success": False, "error": str(e)}

        result = {
            "success": True,
            "cleaned_entries": cleaned,
            "execution_time": round(time.monotonic() - start, 3),
        }
        logger.info(f"Blacklist optimization completed: {result}")
        return result

    async def get_health_status(self) -> dict[str, Any]:
        try:
            size_info = await self.store.get_size_info()
            size_exceeded = await self.store.is_size_exceeded(self.max_size)
            stats = await self.store.get_blacklist_stats()
        except Exception as e:
            logger.error(f"Failed to get blacklist health status: {e}")
            return {"healthy": False, "error": "Unable to determine health status"}

        total_entries = size_info.get("total_entries", 0)
        expired_entries = size_info.get("expired_entries", 0)
        security_issues = stats.get("security_related", 0)
        too_large = total_entries > self.max_size

        recommendations = []
        if size_exceeded:
            recommendations.append("Run cleanup to reduce blacklist size")
        if too_large:
            recommendations.append("Blacklist size exceeds recommended limit, consider cleanup")
        if expired_entries > EXPIRED_ENTRIES_WARNING:
            recommendations.append("High number of expired entries, consider cleanup")
        if security_issues > SECURITY_ENTRIES_WARNING:
            recommendations.append("High security-related blacklist entries detected")

        return {
            "healthy": not size_exceeded and not too_large,
            "size_exceeded": size_exceeded,
            "too_large": too_large,
            "max_recommended_size": self.max_size,
            "total_entries": total_entries,
            "active_entries": size_info.get("active_entries", 0),
            "expired_entries": expired_entries,
            "cleanable_entries": size_info.get("cleanable_entries", 0),
            "security_issues": security_issues,
            "recommendations": recommendations,
        }
