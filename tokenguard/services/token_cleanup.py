"""Token cleanup service - periodically purges expired and revoked token state."""

import asyncio
import threading
from typing import Any, Optional

from tokenguard.core import async_session_maker, settings
from tokenguard.core.logging import get_logger
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.blacklist_store import SqlBlacklistStore
from tokenguard.services.refresh_token_store import SqlRefreshTokenStore

logger = get_logger("token_cleanup")

# Delay before the first run so startup is not slowed down
STARTUP_DELAY_SECONDS = 60


class TokenCleanupService:
    """Background service that purges expired refresh records and blacklist entries."""

    _instance: Optional["TokenCleanupService"] = None
    _instance_lock: threading.Lock = threading.Lock()
    _task: asyncio.Task | None = None

    def __init__(
        self,
        interval_seconds: int | None = None,
        revoked_retention_days: int | None = None,
    ):
        self._running = False
        self._interval_seconds = interval_seconds or settings.cleanup_interval_seconds
        self._revoked_retention_days = (
            revoked_retention_days or settings.revoked_token_retention_days
        )

    @classmethod
    def get_instance(cls) -> "TokenCleanupService":
        """Get singleton instance of the cleanup service (thread-safe)."""
        if cls._instance is None:
            with cls._instance_lock:
                # Double-check locking pattern
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @property
    def interval_seconds(self) -> int:
        return self._interval_seconds

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the background cleanup task."""
        if self._running:
            logger.warning("Token cleanup service is already running")
            return

        self._running = True
        TokenCleanupService._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"Token cleanup service started (interval: {self._interval_seconds}s, "
            f"revoked retention: {self._revoked_retention_days} days)"
        )

    async def stop(self):
        """Stop the background cleanup task."""
        self._running = False
        if TokenCleanupService._task:
            TokenCleanupService._task.cancel()
            try:
                await TokenCleanupService._task
            except asyncio.CancelledError:
                pass
            TokenCleanupService._task = None
        logger.info("Token cleanup service stopped")

    async def _cleanup_loop(self):
        """Main loop that periodically runs cleanup."""
        await asyncio.sleep(STARTUP_DELAY_SECONDS)

        while self._running:
            try:
                await self._run_cleanup()
            except Exception as e:
                logger.error(f"Error in token cleanup: {e}")

            await asyncio.sleep(self._interval_seconds)

    async def _run_cleanup(self) -> dict[str, Any]:
        """Execute a single cleanup run in its own transaction."""
        async with async_session_maker() as db:
            try:
                refresh_store = SqlRefreshTokenStore(db)
                expired_refresh = await refresh_store.cleanup()
                revoked_refresh = await refresh_store.cleanup_revoked(self._revoked_retention_days)

                blacklist = BlacklistService(SqlBlacklistStore(db))
                blacklist_result = await blacklist.auto_cleanup()
                if not blacklist_result["success"]:
                    raise RuntimeError(blacklist_result.get("error", "blacklist cleanup failed"))

                await db.commit()
            except Exception as e:
                logger.exception(f"Error during token cleanup: {e}")
                await db.rollback()
                raise  # Propagate to _cleanup_loop which handles logging

        result = {
            "expired_refresh_tokens": expired_refresh,
            "revoked_refresh_tokens": revoked_refresh,
            "blacklist_entries": blacklist_result["total_cleaned"],
        }
        if any(result.values()):
            logger.info(f"Token cleanup: {result}")
        return result

    async def run_cleanup_now(self) -> dict[str, Any]:
        """Manually trigger a cleanup run.

        Returns:
            Number of refresh records and blacklist entries removed
        """
        return await self._run_cleanup()
