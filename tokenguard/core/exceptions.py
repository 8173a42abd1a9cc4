"""Exception hierarchy for token issuance, validation and authentication.

Every exception carries a machine-readable ``reason`` (a str enum) so that
the HTTP layer and the logs can distinguish failure modes without parsing
messages. Messages shown to end users stay deliberately generic.
"""

from enum import Enum


class TokenGuardError(Exception):
    """Base exception for all TokenGuard errors."""


class TokenError(TokenGuardError):
    """Base class for token validation failures."""


class InvalidTokenReason(str, Enum):
    MALFORMED = "malformed"
    SIGNATURE_INVALID = "signature_invalid"
    ALGORITHM_MISMATCH = "algorithm_mismatch"
    ISSUER_INVALID = "issuer_invalid"
    AUDIENCE_INVALID = "audience_invalid"
    SUBJECT_MISSING = "subject_missing"
    CLAIMS_INVALID = "claims_invalid"
    TYPE_MISMATCH = "type_mismatch"
    DECODE_FAILED = "decode_failed"
    BLACKLISTED = "blacklisted"
    REVOKED = "revoked"
    NOT_BEFORE = "not_before"


class InvalidTokenError(TokenError):
    """Token is malformed, badly signed, revoked or of the wrong type."""

    def __init__(
        self,
        message: str = "Invalid token",
        reason: InvalidTokenReason = InvalidTokenReason.DECODE_FAILED,
        token_type: str | None = None,
    ):
        super().__init__(message)
        self.reason = reason
        self.token_type = token_type


class TokenExpiredError(TokenError):
    """Token signature is valid but its exp claim has elapsed."""

    def __init__(self, message: str = "Token has expired", token_type: str | None = None):
        super().__init__(message)
        self.token_type = token_type


class TokenGenerationReason(str, Enum):
    KEY_INVALID = "key_invalid"
    KEY_MISSING = "key_missing"
    PAYLOAD_INVALID = "payload_invalid"
    ALGORITHM_UNSUPPORTED = "algorithm_unsupported"
    ENCODING_FAILED = "encoding_failed"
    CLAIMS_INVALID = "claims_invalid"
    SIGNATURE_FAILED = "signature_failed"
    RESOURCE_EXHAUSTED = "resource_exhausted"


class TokenGenerationError(TokenGuardError):
    """Signing or refresh-record persistence failed; no token pair was issued."""

    def __init__(self, message: str, reason: TokenGenerationReason):
        super().__init__(message)
        self.reason = reason


class AuthenticationReason(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_LOCKED = "account_locked"
    ACCOUNT_DISABLED = "account_disabled"
    ACCOUNT_NOT_VERIFIED = "account_not_verified"
    TOO_MANY_ATTEMPTS = "too_many_attempts"
    USER_NOT_FOUND = "user_not_found"
    MISSING_CREDENTIALS = "missing_credentials"
    INVALID_TOKEN = "invalid_token"
    INVALID_REFRESH_TOKEN = "invalid_refresh_token"
    TOKEN_REFRESH_FAILED = "token_refresh_failed"
    TOKEN_REQUIRED = "token_required"
    DEVICE_MISMATCH = "device_mismatch"


class AuthenticationError(TokenGuardError):
    """Login or token exchange was refused."""

    def __init__(self, reason: AuthenticationReason, message: str = "Authentication failed"):
        super().__init__(message)
        self.reason = reason
        self.message = message


class RefreshTokenReason(str, Enum):
    NOT_FOUND = "not_found"
    REVOKED = "revoked"
    DEVICE_MISMATCH = "device_mismatch"
    CREATION_FAILED = "creation_failed"
    ROTATION_FAILED = "rotation_failed"
    LIMIT_EXCEEDED = "limit_exceeded"
    REVOCATION_FAILED = "revocation_failed"
    CLEANUP_FAILED = "cleanup_failed"
    FAMILY_REVOCATION_FAILED = "family_revocation_failed"


class RefreshTokenError(TokenGuardError):
    """Refresh token creation, rotation or bookkeeping failed."""

    def __init__(self, message: str, reason: RefreshTokenReason):
        super().__init__(message)
        self.reason = reason
