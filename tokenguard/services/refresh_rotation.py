"""Refresh token rotation - per-user limits, rotation lineage and revocation."""

import logging
from datetime import datetime
from typing import Any

from tokenguard.core.config import settings
from tokenguard.core.exceptions import (
    AuthenticationError,
    AuthenticationReason,
    InvalidTokenError,
    InvalidTokenReason,
    RefreshTokenError,
    RefreshTokenReason,
    TokenExpiredError,
)
from tokenguard.models.refresh_token import RefreshToken
from tokenguard.schemas.blacklist_entry import BlacklistReason, TokenKind
from tokenguard.schemas.device import DeviceInfo
from tokenguard.schemas.token_pair import TokenPair
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.refresh_token_store import RefreshTokenStore
from tokenguard.services.token import TokenService

logger = logging.getLogger(__name__)

# Reasons recorded on revoked refresh token records
REVOKE_REASON_MANUAL = "manual_revocation"
REVOKE_REASON_LOGOUT = "user_logout"
REVOKE_REASON_LOGOUT_ALL = "logout_all_sessions"
REVOKE_REASON_ROTATION = "token_rotation"
REVOKE_REASON_LIMIT = "max_tokens_exceeded"
REVOKE_REASON_SECURITY = "security_revocation"
REVOKE_REASON_FAMILY = "family_revoked"


def _blacklist_reason(reason: str) -> BlacklistReason:
    try:
        return BlacklistReason(reason)
    except ValueError:
        return BlacklistReason.TOKEN_REVOKED


class RefreshRotationEngine:
    """Lifecycle of server-side refresh token records.

    Rotation is strict: once a refresh token has been exchanged its record
    is revoked, and presenting it again fails validation.
    """

    def __init__(
        self,
        token_service: TokenService,
        refresh_store: RefreshTokenStore,
        blacklist: BlacklistService,
        max_tokens_per_user: int | None = None,
        revoked_retention_days: int | None = None,
    ):
        self.token_service = token_service
        self.refresh_store = refresh_store
        self.blacklist = blacklist
        self.max_tokens_per_user = max_tokens_per_user or settings.max_refresh_tokens_per_user
        self.revoked_retention_days = (
            revoked_retention_days or settings.revoked_token_retention_days
        )

    async def create_refresh_token(
        self,
        user_id: int,
        device_info: DeviceInfo,
        parent_jti: str | None = None,
        custom_claims: dict[str, Any] | None = None,
    ) -> TokenPair:
        """Issue a new pair after making room under the per-user limit.

        Raises:
            RefreshTokenError: creation_failed, wrapping the underlying error.
        """
        try:
            await self.enforce_token_limits(user_id)
            pair = await self.token_service.generate_token_pair(
                user_id, device_info, custom_claims, parent_jti=parent_jti
            )
        except Exception as e:
            logger.error(
                f"Failed to create refresh token for user {user_id} "
                f"on device {device_info.device_id}: {e}"
            )
            raise RefreshTokenError(
                f"Failed to create refresh token: {e}", RefreshTokenReason.CREATION_FAILED
            ) from e

        logger.info(f"Refresh token created for user {user_id} on device {device_info.device_id}")
        return pair

    async def enforce_token_limits(self, user_id: int) -> int:
        """Revoke the oldest active tokens so one more can be issued.

        Returns:
            Number of records revoked
        """
        active = await self.refresh_store.find_by_user_id(user_id, active_only=True)
        excess = len(active) - self.max_tokens_per_user + 1
        if excess <= 0:
            return 0

        revoked = 0
        for record in active[:excess]:
            if await self.refresh_store.revoke(record.jti, REVOKE_REASON_LIMIT):
                revoked += 1
        logger.info(
            f"User {user_id} reached {self.max_tokens_per_user} refresh tokens, "
            f"revoked {revoked} oldest"
        )
        return revoked

    async def refresh_access_token(
        self,
        refresh_token: str,
        device_info: DeviceInfo,
        rotate: bool = True,
    ) -> TokenPair:
        """Exchange a refresh token for a new access token.

        With rotate=True a child refresh token is issued and the presented
        one is revoked. Otherwise the presented refresh token is returned
        alongside a new access token.

        Raises:
            InvalidTokenError: Token invalid, revoked or not active.
            TokenExpiredError: Token expired.
            AuthenticationError: device_mismatch.
            RefreshTokenError: Issuing the new pair failed.
        """
        payload = await self.token_service.validate_refresh_token(refresh_token)

        record = await self.refresh_store.find_by_jti(payload.jti)
        if record is None or not record.is_valid():
            raise InvalidTokenError(
                "Refresh token is not active", InvalidTokenReason.REVOKED, token_type="refresh"
            )

        if record.device_id != device_info.device_id or record.ip_address != device_info.ip_address:
            logger.warning(
                f"Device mismatch on refresh for user {record.user_id}: "
                f"expected device {record.device_id}, got {device_info.device_id} "
                f"from {device_info.masked_ip}"
            )
            raise AuthenticationError(
                AuthenticationReason.DEVICE_MISMATCH, "Device mismatch detected"
            )

        try:
            if rotate:
                pair = await self.create_refresh_token(
                    record.user_id, device_info, parent_jti=record.jti
                )
                await self.refresh_store.revoke(record.jti, REVOKE_REASON_ROTATION)
            else:
                access_token, access_payload = self.token_service.issue_access_token(
                    record.user_id, device_info
                )
                await self.refresh_store.update_last_used(record.jti)
                pair = TokenPair(
                    access_token=access_token,
                    refresh_token=refresh_token,
                    access_token_expires_at=access_payload.exp,
                    refresh_token_expires_at=record.expires_at,
                )
        except (InvalidTokenError, TokenExpiredError, AuthenticationError, RefreshTokenError):
            raise
        except Exception as e:
            logger.error(f"Failed to refresh access token for user {record.user_id}: {e}")
            raise RefreshTokenError(
                f"Failed to refresh access token: {e}", RefreshTokenReason.ROTATION_FAILED
            ) from e

        logger.info(
            f"Access token refreshed for user {record.user_id} "
            f"(jti={record.jti}, rotated={rotate})"
        )
        return pair

    async def revoke_token(self, refresh_token: str, reason: str = REVOKE_REASON_MANUAL) -> bool:
        """Revoke a refresh token record and blacklist the token. Never raises."""
        try:
            payload = self.token_service.get_token_payload(refresh_token)
            revoked = await self.refresh_store.revoke(payload.jti, reason)
            if revoked:
                await self.blacklist.blacklist_token(
                    jti=payload.jti,
                    token_type=TokenKind.REFRESH,
                    user_id=payload.user_id,
                    expires_at=payload.exp,
                    reason=_blacklist_reason(reason),
                    device_id=payload.get_claim("device_id"),
                )
                logger.info(f"Refresh token revoked: jti={payload.jti} reason={reason}")
            return revoked
        except Exception as e:
            logger.error(f"Failed to revoke refresh token ({reason}): {e}")
            return False

    async def revoke_all_user_tokens(
        self,
        user_id: int,
        except_jti: str | None = None,
        reason: str = REVOKE_REASON_LOGOUT_ALL,
    ) -> int:
        try:
            count = await self.refresh_store.revoke_all_by_user_id(user_id, reason, except_jti)
        except Exception as e:
            logger.error(f"Failed to revoke tokens for user {user_id}: {e}")
            return 0

        logger.info(f"Revoked {count} refresh tokens for user {user_id} ({reason})")
        return count

    async def revoke_device_tokens(
        self,
        user_id: int,
        device_id: str,
        reason: str = REVOKE_REASON_SECURITY,
    ) -> int:
        try:
            count = await self.refresh_store.revoke_all_by_device(device_id, reason, user_id)
        except Exception as e:
            logger.error(f"Failed to revoke tokens for device {device_id}: {e}")
            return 0

        logger.info(f"Revoked {count} refresh tokens for device {device_id} ({reason})")
        return count

    async def cleanup_expired_tokens(self, before: datetime | None = None) -> int:
        try:
            count = await self.refresh_store.cleanup(before)
        except Exception as e:
            logger.error(f"Failed to clean up expired refresh tokens: {e}")
            return 0

        if count > 0:
            logger.info(f"Cleaned up {count} expired refresh tokens")
        return count

    async def cleanup_revoked_tokens(self, days: int | None = None) -> int:
        days = days or self.revoked_retention_days
        try:
            count = await self.refresh_store.cleanup_revoked(days)
        except Exception as e:
            logger.error(f"Failed to clean up revoked refresh tokens: {e}")
            return 0

        if count > 0:
            logger.info(f"Cleaned up {count} refresh tokens revoked more than {days} days ago")
        return count

    async def get_token_family(self, jti: str) -> list[RefreshToken]:
        return await self.refresh_store.get_token_family(jti)

    async def revoke_token_family(self, root_jti: str, reason: str = REVOKE_REASON_FAMILY) -> int:
        """Revoke a token and every token rotated from it.

        Raises:
            RefreshTokenError: family_revocation_failed.
        """
        try:
            family = await self.refresh_store.get_token_family(root_jti)
            revoked = 0
            for record in family:
                if record.status == "active" and await self.refresh_store.revoke(
                    record.jti, reason
                ):
                    revoked += 1
        except Exception as e:
            logger.error(f"Failed to revoke token family {root_jti}: {e}")
            raise RefreshTokenError(
                f"Failed to revoke token family: {e}",
                RefreshTokenReason.FAMILY_REVOCATION_FAILED,
            ) from e

        if revoked:
            logger.warning(f"Revoked {revoked} tokens in family {root_jti} ({reason})")
        return revoked

    async def get_user_token_stats(self, user_id: int) -> dict[str, Any]:
        try:
            return await self.refresh_store.get_user_token_stats(user_id)
        except Exception as e:
            logger.error(f"Failed to get token stats for user {user_id}: {e}")
            return {
                "total": 0,
                "active": 0,
                "revoked": 0,
                "expired": 0,
                "by_status": {},
                "by_device": {},
            }
