"""Authentication service - login, refresh and logout on top of the token services."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from tokenguard.core.exceptions import (
    AuthenticationError,
    AuthenticationReason,
    InvalidTokenError,
    TokenError,
    TokenExpiredError,
)
from tokenguard.schemas.auth import LoginRequest, LoginResponse, TokenResponse
from tokenguard.schemas.blacklist_entry import BlacklistReason
from tokenguard.schemas.device import DeviceInfo
from tokenguard.services.refresh_rotation import (
    REVOKE_REASON_LOGOUT,
    REVOKE_REASON_LOGOUT_ALL,
    REVOKE_REASON_MANUAL,
    RefreshRotationEngine,
)
from tokenguard.services.token import TokenService
from tokenguard.services.token_codec import REFRESH_TOKEN
from tokenguard.services.user_directory import UserDirectory

logger = logging.getLogger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid credentials"


@dataclass
class LogoutResult:
    """Outcome of a logout; failures are reported, never raised."""

    success: bool
    access_token_revoked: bool = False
    refresh_tokens_revoked: int = 0
    error: str | None = None


class AuthenticationService:
    """Service for authentication operations."""

    def __init__(
        self,
        users: UserDirectory,
        token_service: TokenService,
        rotation: RefreshRotationEngine,
    ):
        self.users = users
        self.token_service = token_service
        self.rotation = rotation

    async def login(self, request: LoginRequest, device_info: DeviceInfo) -> LoginResponse:
        """Authenticate a user and issue a token pair.

        Raises AuthenticationError(invalid_credentials) for both "user not
        found" and "wrong password" to prevent user enumeration.
        """
        user = await self.users.validate_credentials(request.email, request.password)
        if user is None:
            logger.info(f"Failed login for {request.email} from {device_info.masked_ip}")
            raise AuthenticationError(
                AuthenticationReason.INVALID_CREDENTIALS, INVALID_CREDENTIALS_MESSAGE
            )

        if user.is_disabled or not user.is_active:
            logger.warning(f"Login attempt on disabled account {user.id}")
            raise AuthenticationError(
                AuthenticationReason.ACCOUNT_DISABLED, "Account has been disabled"
            )

        await self.rotation.cleanup_expired_tokens()
        await self.rotation.enforce_token_limits(user.id)

        pair = await self.token_service.generate_token_pair(
            user.id,
            device_info,
            {"email": user.email, "scopes": request.scopes},
        )
        await self.users.update_last_login(user.id)

        refresh_payload = self.token_service.get_token_payload(pair.refresh_token)
        logger.info(f"User {user.id} logged in on device {device_info.device_id}")

        return LoginResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.access_expires_in(),
            refresh_expires_in=pair.refresh_expires_in(),
            user_id=user.id,
            email=user.email,
            expires_at=pair.access_token_expires_at,
            session_id=refresh_payload.jti,
        )

    async def refresh(self, refresh_token: str, device_info: DeviceInfo) -> TokenResponse:
        """Rotate a refresh token into a new pair.

        Raises:
            AuthenticationError: invalid_refresh_token for invalid or expired
                tokens, token_refresh_failed for anything else. Errors that
                are already AuthenticationErrors pass through unchanged.
        """
        try:
            pair = await self.rotation.refresh_access_token(refresh_token, device_info)
        except AuthenticationError:
            raise
        except (InvalidTokenError, TokenExpiredError) as e:
            raise AuthenticationError(
                AuthenticationReason.INVALID_REFRESH_TOKEN, f"Invalid refresh token: {e}"
            ) from e
        except Exception as e:
            logger.error(f"Token refresh failed: {e}")
            raise AuthenticationError(
                AuthenticationReason.TOKEN_REFRESH_FAILED, "Token refresh failed"
            ) from e

        return TokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.access_expires_in(),
            refresh_expires_in=pair.refresh_expires_in(),
        )

    async def logout(
        self,
        access_token: str,
        refresh_token: str | None = None,
        revoke_all: bool = False,
    ) -> LogoutResult:
        """Revoke the presented tokens. Never raises.

        The acting user is taken from the verified access token. A refresh
        token is only revoked when it verifies and belongs to that user.
        """
        refresh_revoked = 0
        try:
            # Blacklist skipped so a repeated logout stays idempotent
            user_id = (
                await self.token_service.validate_access_token(access_token, check_blacklist=False)
            ).user_id
            if revoke_all:
                refresh_revoked = await self.rotation.revoke_all_user_tokens(
                    user_id, reason=REVOKE_REASON_LOGOUT_ALL
                )
            elif refresh_token and self._owns_refresh_token(refresh_token, user_id):
                if await self.rotation.revoke_token(refresh_token, REVOKE_REASON_LOGOUT):
                    refresh_revoked = 1

            access_result = await self.token_service.revoke_token(
                access_token, BlacklistReason.USER_LOGOUT
            )
        except Exception as e:
            logger.error(f"Logout failed: {e}")
            return LogoutResult(
                success=False, refresh_tokens_revoked=refresh_revoked, error=str(e)
            )

        if access_result.error:
            return LogoutResult(
                success=False,
                refresh_tokens_revoked=refresh_revoked,
                error=access_result.error,
            )
        return LogoutResult(
            success=True,
            access_token_revoked=access_result.revoked,
            refresh_tokens_revoked=refresh_revoked,
        )

    def _owns_refresh_token(self, refresh_token: str, user_id: int) -> bool:
        try:
            payload = self.token_service.codec.validate_token(refresh_token, REFRESH_TOKEN)
        except TokenError as e:
            logger.warning(f"Ignoring unverifiable refresh token at logout: {e}")
            return False
        if payload.user_id != user_id:
            logger.warning(
                f"Refresh token of user {payload.user_id} presented at logout by user {user_id}"
            )
            return False
        return True

    async def validate_access_token(self, access_token: str) -> bool:
        try:
            await self.token_service.validate_access_token(access_token)
            return True
        except TokenError:
            return False

    async def validate_refresh_token(self, refresh_token: str) -> bool:
        try:
            await self.token_service.validate_refresh_token(refresh_token)
            return True
        except TokenError:
            return False

    async def get_user_from_token(self, access_token: str) -> dict[str, Any] | None:
        """Token details of a valid access token, or None."""
        try:
            payload = await self.token_service.validate_access_token(access_token)
        except TokenError:
            return None

        return {
            "user_id": payload.user_id,
            "subject": payload.sub,
            "email": payload.get_claim("email"),
            "scopes": payload.get_claim("scopes", []),
            "issued_at": payload.iat,
            "expires_at": payload.exp,
            "token_id": payload.jti,
            "device_id": payload.get_claim("device_id"),
            "custom_claims": dict(payload.custom_claims),
        }

    async def revoke_refresh_token(
        self, refresh_token: str, reason: str = REVOKE_REASON_MANUAL
    ) -> bool:
        return await self.rotation.revoke_token(refresh_token, reason)

    async def revoke_all_user_tokens(
        self,
        user_id: int,
        exclude_jti: str | None = None,
        reason: str = REVOKE_REASON_LOGOUT_ALL,
    ) -> int:
        return await self.rotation.revoke_all_user_tokens(user_id, exclude_jti, reason)

    async def revoke_device_tokens(
        self, user_id: int, device_id: str, reason: str = "device_logout"
    ) -> int:
        return await self.rotation.revoke_device_tokens(user_id, device_id, reason)

    async def get_user_token_stats(self, user_id: int) -> dict[str, Any]:
        return await self.rotation.get_user_token_stats(user_id)

    async def cleanup_expired_tokens(self, before: datetime | None = None) -> int:
        return await self.rotation.cleanup_expired_tokens(before)

    async def cleanup_revoked_tokens(self, days: int = 30) -> int:
        return await self.rotation.cleanup_revoked_tokens(days)
