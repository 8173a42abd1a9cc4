"""Token service - issues, validates and revokes access/refresh token pairs."""

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from tokenguard.core.config import settings
from tokenguard.core.exceptions import (
    InvalidTokenError,
    InvalidTokenReason,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenguard.schemas.blacklist_entry import BlacklistReason
from tokenguard.schemas.device import DeviceInfo
from tokenguard.schemas.jwt_payload import JwtPayload
from tokenguard.schemas.token_pair import TokenPair
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.refresh_token_store import RefreshTokenStore
from tokenguard.services.token_codec import ACCESS_TOKEN, REFRESH_TOKEN, TokenCodec

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """SHA-256 hex digest stored in place of the raw refresh token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass
class RevocationResult:
    """Outcome of a single revocation attempt."""

    revoked: bool
    already_revoked: bool = False
    error: str | None = None


class TokenService:
    """Issue and validate token pairs.

    Refresh tokens are stateful: every issued refresh token has a record in
    the RefreshTokenStore, written before the pair is handed out. Access
    tokens are stateless and are only rejected early through the blacklist.
    """

    def __init__(
        self,
        codec: TokenCodec,
        refresh_store: RefreshTokenStore,
        blacklist: BlacklistService,
        near_expiry_threshold: int | None = None,
    ):
        self.codec = codec
        self.refresh_store = refresh_store
        self.blacklist = blacklist
        self.near_expiry_threshold = near_expiry_threshold or settings.token_near_expiry_threshold

    def _access_claims(
        self,
        user_id: int,
        device_info: DeviceInfo,
        custom_claims: Mapping[str, Any] | None,
    ) -> dict[str, Any]:
        claims = dict(custom_claims or {})
        claims.update(
            {
                "sub": str(user_id),
                "device_id": device_info.device_id,
                "device_name": device_info.device_name,
                "ip_address": device_info.ip_address,
                "user_agent": device_info.user_agent,
                "platform": device_info.platform.value,
                "browser": device_info.browser.value,
                "device_class": device_info.device_class.value,
            }
        )
        return claims

    def issue_access_token(
        self,
        user_id: int,
        device_info: DeviceInfo,
        custom_claims: Mapping[str, Any] | None = None,
    ) -> tuple[str, JwtPayload]:
        """Sign a standalone access token. Nothing is persisted."""
        token = self.codec.generate_access_token(
            self._access_claims(user_id, device_info, custom_claims)
        )
        return token, self._issued_payload(token)

    def _issued_payload(self, token: str) -> JwtPayload:
        """Claims of a token this service just signed."""
        try:
            return self.codec.extract_payload(token)
        except InvalidTokenError as e:
            raise TokenGenerationError(
                f"Issued token failed claim validation: {e}",
                TokenGenerationReason.ENCODING_FAILED,
            ) from e

    async def generate_token_pair(
        self,
        user_id: int,
        device_info: DeviceInfo,
        custom_claims: Mapping[str, Any] | None = None,
        parent_jti: str | None = None,
    ) -> TokenPair:
        """Sign an access/refresh pair and persist the refresh record.

        The pair is only returned once the refresh record has been written,
        so every refresh token a client holds can be looked up and revoked.

        Raises:
            TokenGenerationError: If signing (encoding_failed) or persisting
                the refresh record (resource_exhausted) fails.
        """
        if user_id <= 0:
            raise TokenGenerationError(
                "User ID must be a positive integer", TokenGenerationReason.PAYLOAD_INVALID
            )

        access_token, access_payload = self.issue_access_token(user_id, device_info, custom_claims)
        refresh_token = self.codec.generate_refresh_token(
            {"sub": str(user_id), "device_id": device_info.device_id}
        )
        refresh_payload = self._issued_payload(refresh_token)

        try:
            await self.refresh_store.create(
                jti=refresh_payload.jti,
                user_id=user_id,
                token_hash=hash_token(refresh_token),
                expires_at=refresh_payload.exp,
                device_info=device_info,
                parent_token_jti=parent_jti,
            )
        except Exception as e:
            logger.error(f"Failed to persist refresh token for user {user_id}: {e}")
            raise TokenGenerationError(
                f"Failed to store refresh token: {e}", TokenGenerationReason.RESOURCE_EXHAUSTED
            ) from e

        logger.debug(
            f"Issued token pair for user {user_id} on device {device_info.device_id} "
            f"(refresh jti={refresh_payload.jti})"
        )
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            access_token_expires_at=access_payload.exp,
            refresh_token_expires_at=refresh_payload.exp,
        )

    async def _reject_if_blacklisted(self, token: str, token_type: str) -> None:
        claims = self.codec.parse_unsafe(token)
        jti = claims.get("jti")
        exp = claims.get("exp")
        cache_until = float(exp) if isinstance(exp, int | float) else None
        if not jti or await self.blacklist.is_token_blacklisted(jti, cache_until):
            raise InvalidTokenError(
                "Token has been revoked", InvalidTokenReason.BLACKLISTED, token_type=token_type
            )

    async def validate_access_token(self, token: str, check_blacklist: bool = True) -> JwtPayload:
        """Validate an access token.

        Raises:
            InvalidTokenError: Malformed, badly signed, blacklisted or not an access token.
            TokenExpiredError: Token has expired.
        """
        if check_blacklist:
            await self._reject_if_blacklisted(token, ACCESS_TOKEN)
        return self.codec.validate_token(token, ACCESS_TOKEN)

    async def validate_refresh_token(self, token: str, check_blacklist: bool = True) -> JwtPayload:
        """Validate a refresh token against its signature and its stored record.

        Raises:
            InvalidTokenError: As for access tokens, or if the record is
                missing, revoked or does not match the presented token.
            TokenExpiredError: Token has expired.
        """
        if check_blacklist:
            await self._reject_if_blacklisted(token, REFRESH_TOKEN)
        payload = self.codec.validate_token(token, REFRESH_TOKEN)

        record = await self.refresh_store.find_by_jti(payload.jti)
        if record is None or record.is_revoked or record.token_hash != hash_token(token):
            raise InvalidTokenError(
                "Refresh token has been revoked",
                InvalidTokenReason.REVOKED,
                token_type=REFRESH_TOKEN,
            )
        return payload

    async def refresh_tokens(self, refresh_token: str, device_info: DeviceInfo) -> TokenPair:
        """Exchange a refresh token for a brand new pair; the old record is deleted."""
        payload = await self.validate_refresh_token(refresh_token)
        await self.refresh_store.delete(payload.jti)
        return await self.generate_token_pair(payload.user_id, device_info)

    async def revoke_token(
        self,
        token: str,
        reason: BlacklistReason | str = BlacklistReason.MANUAL_REVOCATION,
    ) -> RevocationResult:
        """Blacklist a token (and drop its refresh record). Never raises."""
        try:
            payload = self.codec.extract_payload(token)
        except InvalidTokenError as e:
            return RevocationResult(revoked=False, error=str(e))

        try:
            # Store errors fall through to the except below and report an error
            if await self.blacklist.is_recorded(payload.jti):
                return RevocationResult(revoked=True, already_revoked=True)

            token_type = payload.token_type or ACCESS_TOKEN
            added = await self.blacklist.blacklist_token(
                jti=payload.jti,
                token_type=token_type,
                user_id=payload.user_id,
                expires_at=payload.exp,
                reason=reason,
                device_id=payload.get_claim("device_id"),
            )
            if not added:
                return RevocationResult(revoked=False, error="Failed to write blacklist entry")

            if token_type == REFRESH_TOKEN:
                await self.refresh_store.delete(payload.jti)
        except Exception as e:
            logger.error(f"Failed to revoke token {payload.jti}: {e}")
            return RevocationResult(revoked=False, error=str(e))

        return RevocationResult(revoked=True)

    async def revoke_all_user_tokens(self, user_id: int, reason: str = "revoke_all_sessions") -> int:
        return await self.refresh_store.revoke_all_by_user_id(user_id, reason)

    async def is_token_revoked(self, token: str) -> bool:
        """True if the token is blacklisted or cannot be parsed at all."""
        try:
            payload = self.codec.extract_payload(token)
        except InvalidTokenError:
            return True
        return await self.blacklist.is_token_blacklisted(payload.jti, payload.exp.timestamp())

    def get_token_payload(self, token: str) -> JwtPayload:
        """Claims of a token without signature verification."""
        return self.codec.extract_payload(token)

    def get_token_remaining_time(self, token: str) -> int:
        try:
            payload = self.codec.extract_payload(token)
        except InvalidTokenError:
            return 0
        return max(0, int((payload.exp - datetime.now(UTC)).total_seconds()))

    def is_token_near_expiry(self, token: str, threshold_seconds: int | None = None) -> bool:
        if threshold_seconds is None:
            threshold_seconds = self.near_expiry_threshold
        remaining = self.get_token_remaining_time(token)
        return 0 < remaining <= threshold_seconds

    def is_token_owned_by(self, token: str, user_id: int) -> bool:
        try:
            return self.codec.extract_payload(token).user_id == user_id
        except InvalidTokenError:
            return False

    def is_token_from_device(self, token: str, device_info: DeviceInfo) -> bool:
        try:
            payload = self.codec.extract_payload(token)
        except InvalidTokenError:
            return False
        return payload.get_claim("device_id") == device_info.device_id

    def get_algorithm(self) -> str:
        return self.codec.algorithm

    def get_access_token_ttl(self) -> int:
        return self.codec.access_token_ttl

    def get_refresh_token_ttl(self) -> int:
        return self.codec.refresh_token_ttl
