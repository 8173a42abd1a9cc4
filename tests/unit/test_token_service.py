"""Unit tests for TokenService issuance, validation and revocation."""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest

from tokenguard.core.exceptions import (
    InvalidTokenError,
    InvalidTokenReason,
    TokenExpiredError,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenguard.schemas.blacklist_entry import BlacklistReason
from tokenguard.services.token import hash_token

pytestmark = pytest.mark.asyncio


class TestGenerateTokenPair:
    """Tests for TokenService.generate_token_pair()."""

    async def test_pair_contents(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info, {"email": "a@example.com"})

        access = await token_service.validate_access_token(pair.access_token)
        refresh = await token_service.validate_refresh_token(pair.refresh_token)

        assert access.sub == "42"
        assert refresh.sub == "42"
        assert access.jti != refresh.jti
        assert access.get_claim("email") == "a@example.com"
        assert access.get_claim("device_id") == "laptop-1"
        assert access.get_claim("platform") == "Windows"
        assert refresh.get_claim("device_id") == "laptop-1"
        assert pair.refresh_token_expires_at > pair.access_token_expires_at

    async def test_refresh_record_persisted_before_return(
        self, token_service, refresh_store, device_info
    ):
        """The refresh record exists, hashed, as soon as the pair is returned."""
        pair = await token_service.generate_token_pair(42, device_info)
        jti = token_service.get_token_payload(pair.refresh_token).jti

        record = refresh_store.records[jti]
        assert record.user_id == 42
        assert record.token_hash == hash_token(pair.refresh_token)
        assert record.token_hash != pair.refresh_token
        assert record.device_id == "laptop-1"
        assert record.ip_address == "203.0.113.10"
        assert record.status == "active"

    async def test_invalid_user_id(self, token_service, device_info):
        with pytest.raises(TokenGenerationError) as exc_info:
            await token_service.generate_token_pair(0, device_info)

        assert exc_info.value.reason == TokenGenerationReason.PAYLOAD_INVALID

    async def test_store_failure_issues_nothing(self, token_service, refresh_store, device_info):
        refresh_store.fail_on_create = True

        with pytest.raises(TokenGenerationError) as exc_info:
            await token_service.generate_token_pair(42, device_info)

        assert exc_info.value.reason == TokenGenerationReason.RESOURCE_EXHAUSTED
        assert refresh_store.records == {}

    async def test_custom_claims_cannot_spoof_subject(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info, {"sub": "1"})

        payload = await token_service.validate_access_token(pair.access_token)

        assert payload.user_id == 42

    async def test_pair_payloads_carry_user(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        assert token_service.get_token_payload(pair.access_token).user_id == 42
        assert token_service.get_token_payload(pair.refresh_token).user_id == 42

    async def test_unreadable_issued_claims_raise_generation_error(
        self, token_service, refresh_store, device_info
    ):
        """A signed token whose claims cannot be read back is an encoding failure."""
        failure = InvalidTokenError("bad claims", InvalidTokenReason.CLAIMS_INVALID)
        with patch.object(token_service.codec, "extract_payload", side_effect=failure):
            with pytest.raises(TokenGenerationError) as exc_info:
                await token_service.generate_token_pair(42, device_info)

        assert exc_info.value.reason == TokenGenerationReason.ENCODING_FAILED
        assert refresh_store.records == {}

    async def test_issue_access_token_wraps_claim_errors(self, token_service, device_info):
        failure = InvalidTokenError("bad claims", InvalidTokenReason.CLAIMS_INVALID)
        with patch.object(token_service.codec, "extract_payload", side_effect=failure):
            with pytest.raises(TokenGenerationError) as exc_info:
                token_service.issue_access_token(42, device_info)

        assert exc_info.value.reason == TokenGenerationReason.ENCODING_FAILED


class TestValidation:
    """Tests for access/refresh validation."""

    async def test_access_token_rejected_as_refresh(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        with pytest.raises(InvalidTokenError) as exc_info:
            await token_service.validate_refresh_token(pair.access_token)

        assert exc_info.value.reason == InvalidTokenReason.TYPE_MISMATCH

    async def test_refresh_token_rejected_as_access(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        with pytest.raises(InvalidTokenError):
            await token_service.validate_access_token(pair.refresh_token)

    async def test_expired_access_token(self, token_service, codec):
        token = codec.generate_access_token(
            {"sub": "42"}, issued_at=datetime.now(UTC) - timedelta(hours=1)
        )

        with pytest.raises(TokenExpiredError):
            await token_service.validate_access_token(token)

    async def test_refresh_without_record_rejected(self, token_service, codec):
        """A correctly signed refresh token that was never persisted is refused."""
        token = codec.generate_refresh_token({"sub": "42"})

        with pytest.raises(InvalidTokenError) as exc_info:
            await token_service.validate_refresh_token(token)

        assert exc_info.value.reason == InvalidTokenReason.REVOKED

    async def test_revoked_record_rejected(self, token_service, refresh_store, device_info):
        pair = await token_service.generate_token_pair(42, device_info)
        jti = token_service.get_token_payload(pair.refresh_token).jti
        await refresh_store.revoke(jti, "manual_revocation")

        with pytest.raises(InvalidTokenError) as exc_info:
            await token_service.validate_refresh_token(pair.refresh_token)

        assert exc_info.value.reason == InvalidTokenReason.REVOKED

    async def test_hash_mismatch_rejected(self, token_service, refresh_store, device_info):
        pair = await token_service.generate_token_pair(42, device_info)
        jti = token_service.get_token_payload(pair.refresh_token).jti
        refresh_store.records[jti].token_hash = "0" * 64

        with pytest.raises(InvalidTokenError):
            await token_service.validate_refresh_token(pair.refresh_token)

    async def test_blacklist_store_down_fails_closed(
        self, token_service, blacklist_store, device_info
    ):
        """When the blacklist cannot be consulted, valid tokens are rejected."""
        pair = await token_service.generate_token_pair(42, device_info)
        blacklist_store.fail = True

        with pytest.raises(InvalidTokenError) as exc_info:
            await token_service.validate_access_token(pair.access_token)

        assert exc_info.value.reason == InvalidTokenReason.BLACKLISTED

    async def test_blacklist_check_can_be_skipped(
        self, token_service, blacklist_store, device_info
    ):
        pair = await token_service.generate_token_pair(42, device_info)
        blacklist_store.fail = True

        payload = await token_service.validate_access_token(
            pair.access_token, check_blacklist=False
        )

        assert payload.user_id == 42


class TestRefreshTokens:
    """Tests for TokenService.refresh_tokens()."""

    async def test_refresh_replaces_record(self, token_service, refresh_store, device_info):
        pair = await token_service.generate_token_pair(42, device_info)
        old_jti = token_service.get_token_payload(pair.refresh_token).jti

        new_pair = await token_service.refresh_tokens(pair.refresh_token, device_info)

        new_jti = token_service.get_token_payload(new_pair.refresh_token).jti
        assert old_jti not in refresh_store.records
        assert new_jti in refresh_store.records

        with pytest.raises(InvalidTokenError):
            await token_service.validate_refresh_token(pair.refresh_token)


class TestRevocation:
    """Tests for TokenService.revoke_token()."""

    async def test_revoke_access_token(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        result = await token_service.revoke_token(pair.access_token, BlacklistReason.USER_LOGOUT)

        assert result.revoked is True
        assert result.already_revoked is False
        with pytest.raises(InvalidTokenError) as exc_info:
            await token_service.validate_access_token(pair.access_token)
        assert exc_info.value.reason == InvalidTokenReason.BLACKLISTED

    async def test_revoke_is_idempotent(self, token_service, blacklist_store, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        first = await token_service.revoke_token(pair.access_token)
        second = await token_service.revoke_token(pair.access_token)

        assert first.revoked and not first.already_revoked
        assert second.revoked and second.already_revoked
        assert len(blacklist_store.entries) == 1

    async def test_revoke_refresh_token_drops_record(
        self, token_service, refresh_store, blacklist_store, device_info
    ):
        pair = await token_service.generate_token_pair(42, device_info)
        jti = token_service.get_token_payload(pair.refresh_token).jti

        result = await token_service.revoke_token(pair.refresh_token)

        assert result.revoked is True
        assert jti not in refresh_store.records
        assert blacklist_store.entries[jti].token_type.value == "refresh"

    async def test_revoke_expired_token(self, token_service, codec):
        """Expired tokens can still be revoked (e.g. at logout)."""
        token = codec.generate_access_token(
            {"sub": "42"}, issued_at=datetime.now(UTC) - timedelta(hours=1)
        )

        result = await token_service.revoke_token(token)

        assert result.revoked is True

    async def test_revoke_garbage(self, token_service):
        result = await token_service.revoke_token("not-a-token")

        assert result.revoked is False
        assert result.error

    async def test_blacklist_write_failure_reported(
        self, token_service, blacklist_service, device_info
    ):
        pair = await token_service.generate_token_pair(42, device_info)
        blacklist_service.is_recorded = AsyncMock(return_value=False)
        blacklist_service.store.fail = True

        result = await token_service.revoke_token(pair.access_token)

        assert result.revoked is False
        assert result.error == "Failed to write blacklist entry"

    async def test_store_outage_is_an_error_not_already_revoked(
        self, token_service, blacklist_store, device_info
    ):
        """An unreachable blacklist is reported as a failure, never as success."""
        pair = await token_service.generate_token_pair(42, device_info)
        blacklist_store.fail = True

        result = await token_service.revoke_token(pair.access_token)

        assert result.revoked is False
        assert result.already_revoked is False
        assert result.error == "database unavailable"

    async def test_revoke_all_user_tokens(self, token_service, refresh_store, device_info):
        await token_service.generate_token_pair(42, device_info)
        await token_service.generate_token_pair(42, device_info)
        await token_service.generate_token_pair(7, device_info)

        assert await token_service.revoke_all_user_tokens(42) == 2
        assert [r.user_id for r in refresh_store.records.values() if r.status == "active"] == [7]


class TestInspection:
    """Tests for the token inspection helpers."""

    async def test_is_token_revoked(self, token_service, device_info):
        pair = await token_service.generate_token_pair(42, device_info)

        assert await token_service.is_token_revoked(pair.access_token) is False
        await token_service.revoke_token(pair.access_token)
        assert await token_service.is_token_revoked(pair.access_token) is True

    async def test_unparseable_token_counts_as_revoked(self, token_service):
        assert await token_service.is_token_revoked("garbage") is True

    async def test_remaining_time_and_near_expiry(self, token_service, codec):
        fresh = codec.generate_access_token({"sub": "1"})
        nearly_done = codec.generate_access_token(
            {"sub": "1"}, issued_at=datetime.now(UTC) - timedelta(seconds=800)
        )
        expired = codec.generate_access_token(
            {"sub": "1"}, issued_at=datetime.now(UTC) - timedelta(hours=1)
        )

        assert 890 <= token_service.get_token_remaining_time(fresh) <= 900
        assert token_service.get_token_remaining_time(expired) == 0
        assert token_service.get_token_remaining_time("garbage") == 0
        assert token_service.is_token_near_expiry(nearly_done) is True
        assert token_service.is_token_near_expiry(fresh) is False
        assert token_service.is_token_near_expiry(expired) is False
        assert token_service.is_token_near_expiry(fresh, threshold_seconds=1000) is True

    async def test_ownership_and_device(self, token_service, device_info, other_device):
        pair = await token_service.generate_token_pair(42, device_info)

        assert token_service.is_token_owned_by(pair.access_token, 42)
        assert not token_service.is_token_owned_by(pair.access_token, 7)
        assert not token_service.is_token_owned_by("garbage", 42)
        assert token_service.is_token_from_device(pair.access_token, device_info)
        assert not token_service.is_token_from_device(pair.access_token, other_device)

    async def test_configuration_accessors(self, token_service):
        assert token_service.get_algorithm() == "RS256"
        assert token_service.get_access_token_ttl() == 900
        assert token_service.get_refresh_token_ttl() == 86400
