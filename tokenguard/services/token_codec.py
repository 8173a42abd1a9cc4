"""RS256 token signing and verification.

Tokens are signed with an RSA private key and verified with the matching
public key, so other services can verify tokens from the published JWKS
without being able to mint them.
"""

import base64
import hashlib
import logging
import secrets
from collections.abc import Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from pydantic import ValidationError

from tokenguard.core.config import Settings, get_settings
from tokenguard.core.exceptions import (
    InvalidTokenError,
    InvalidTokenReason,
    TokenExpiredError,
    TokenGenerationError,
    TokenGenerationReason,
)
from tokenguard.schemas.jwt_payload import JwtPayload

logger = logging.getLogger(__name__)

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"

REQUIRED_CLAIMS = ["iss", "aud", "iat", "exp", "jti"]

# Claims the codec sets itself; the caller supplies sub and any custom claims
CODEC_CLAIMS = frozenset({"iss", "aud", "iat", "exp", "jti", "nbf", "type"})

_KEY_PROBE = b"tokenguard-key-pair-probe"

# PyJWT exception -> reason; order matters because several are subclasses of DecodeError
_PYJWT_ERROR_REASONS: list[tuple[type[jwt.PyJWTError], InvalidTokenReason]] = [
    (jwt.InvalidSignatureError, InvalidTokenReason.SIGNATURE_INVALID),
    (jwt.InvalidAlgorithmError, InvalidTokenReason.ALGORITHM_MISMATCH),
    (jwt.InvalidIssuerError, InvalidTokenReason.ISSUER_INVALID),
    (jwt.InvalidAudienceError, InvalidTokenReason.AUDIENCE_INVALID),
    (jwt.ImmatureSignatureError, InvalidTokenReason.NOT_BEFORE),
    (jwt.MissingRequiredClaimError, InvalidTokenReason.CLAIMS_INVALID),
    (jwt.DecodeError, InvalidTokenReason.MALFORMED),
]


def generate_rsa_key_pair(key_size: int = 2048) -> tuple[str, str]:
    """Generate a PEM-encoded (private, public) RSA key pair."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("utf-8")
    public_pem = (
        private_key.public_key()
        .public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        .decode("utf-8")
    )
    return private_pem, public_pem


def _to_base64url_uint(value: int) -> str:
    raw = value.to_bytes((value.bit_length() + 7) // 8, byteorder="big")
    return base64.urlsafe_b64encode(raw).decode("utf-8").rstrip("=")


class TokenCodec:
    """Signs and verifies access/refresh JWTs with an RSA key pair."""

    def __init__(
        self,
        private_key_pem: str,
        public_key_pem: str,
        issuer: str,
        audience: str,
        access_token_ttl: int,
        refresh_token_ttl: int,
        algorithm: str = "RS256",
    ):
        if algorithm != "RS256":
            raise TokenGenerationError(
                f"Unsupported signing algorithm: {algorithm}",
                TokenGenerationReason.ALGORITHM_UNSUPPORTED,
            )
        if not private_key_pem or not public_key_pem:
            raise TokenGenerationError(
                "Both private and public keys are required", TokenGenerationReason.KEY_MISSING
            )

        try:
            self._private_key = serialization.load_pem_private_key(
                private_key_pem.encode("utf-8"), password=None
            )
            self._public_key = serialization.load_pem_public_key(public_key_pem.encode("utf-8"))
        except (ValueError, TypeError) as e:
            raise TokenGenerationError(
                f"Invalid signing key: {e}", TokenGenerationReason.KEY_INVALID
            ) from e

        if not isinstance(self._private_key, rsa.RSAPrivateKey) or not isinstance(
            self._public_key, rsa.RSAPublicKey
        ):
            raise TokenGenerationError(
                "RS256 requires an RSA key pair", TokenGenerationReason.KEY_INVALID
            )

        self._verify_key_pair()

        self.algorithm = algorithm
        self.issuer = issuer
        self.audience = audience
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.key_id = hashlib.sha256(self.public_key_pem.encode("utf-8")).hexdigest()[:16]

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "TokenCodec":
        """Build a codec from configuration.

        Without configured keys an ephemeral pair is generated; every token
        signed with it becomes unverifiable once the process restarts.
        """
        settings = settings or get_settings()
        if settings.has_signing_keys:
            private_pem, public_pem = settings.jwt_private_key, settings.jwt_public_key
        else:
            logger.warning(
                "JWT_PRIVATE_KEY/JWT_PUBLIC_KEY not configured - generating ephemeral RSA key pair"
            )
            private_pem, public_pem = generate_rsa_key_pair()

        return cls(
            private_key_pem=private_pem,
            public_key_pem=public_pem,
            issuer=settings.jwt_issuer,
            audience=settings.jwt_audience,
            access_token_ttl=settings.jwt_access_token_ttl,
            refresh_token_ttl=settings.jwt_refresh_token_ttl,
            algorithm=settings.jwt_algorithm,
        )

    def _verify_key_pair(self) -> None:
        try:
            signature = self._private_key.sign(_KEY_PROBE, padding.PKCS1v15(), hashes.SHA256())
            self._public_key.verify(signature, _KEY_PROBE, padding.PKCS1v15(), hashes.SHA256())
        except InvalidSignature as e:
            raise TokenGenerationError(
                "Private and public keys do not form a pair", TokenGenerationReason.KEY_INVALID
            ) from e

    @property
    def public_key_pem(self) -> str:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        ).decode("utf-8")

    def jwks(self) -> dict[str, list[dict[str, str]]]:
        """JSON Web Key Set exposing the verification key."""
        numbers = self._public_key.public_numbers()
        return {
            "keys": [
                {
                    "kty": "RSA",
                    "use": "sig",
                    "kid": self.key_id,
                    "alg": self.algorithm,
                    "n": _to_base64url_uint(numbers.n),
                    "e": _to_base64url_uint(numbers.e),
                }
            ]
        }

    def generate_access_token(
        self, claims: Mapping[str, Any], issued_at: datetime | None = None
    ) -> str:
        return self._encode(claims, ACCESS_TOKEN, self.access_token_ttl, issued_at)

    def generate_refresh_token(
        self, claims: Mapping[str, Any], issued_at: datetime | None = None
    ) -> str:
        return self._encode(claims, REFRESH_TOKEN, self.refresh_token_ttl, issued_at)

    def _encode(
        self,
        claims: Mapping[str, Any],
        token_type: str,
        ttl: int,
        issued_at: datetime | None,
    ) -> str:
        issued_at = issued_at or datetime.now(UTC)
        payload: dict[str, Any] = {
            "iss": self.issuer,
            "aud": self.audience,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + timedelta(seconds=ttl)).timestamp()),
            "jti": secrets.token_hex(16),
            "type": token_type,
        }
        payload.update({k: v for k, v in claims.items() if k not in CODEC_CLAIMS})

        try:
            return jwt.encode(
                payload,
                self._private_key,
                algorithm=self.algorithm,
                headers={"kid": self.key_id},
            )
        except (jwt.PyJWTError, TypeError, ValueError) as e:
            raise TokenGenerationError(
                f"Failed to encode {token_type} token: {e}",
                TokenGenerationReason.ENCODING_FAILED,
            ) from e

    def validate_token(self, token: str, expected_type: str | None = None) -> JwtPayload:
        """Verify signature, registered claims and token type.

        Raises:
            TokenExpiredError: If the token's exp has passed.
            InvalidTokenError: For any other verification failure.
        """
        if not token or not isinstance(token, str):
            raise InvalidTokenError(
                "Token is empty", InvalidTokenReason.MALFORMED, token_type=expected_type
            )

        try:
            claims = jwt.decode(
                token,
                self._public_key,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
                options={"require": REQUIRED_CLAIMS},
            )
        except jwt.ExpiredSignatureError as e:
            raise TokenExpiredError(token_type=expected_type) from e
        except jwt.PyJWTError as e:
            reason = next(
                (r for exc_type, r in _PYJWT_ERROR_REASONS if isinstance(e, exc_type)),
                InvalidTokenReason.DECODE_FAILED,
            )
            raise InvalidTokenError(f"Invalid token: {e}", reason, token_type=expected_type) from e

        token_type = claims.get("type")
        if token_type is None:
            raise InvalidTokenError(
                "Missing required claim: type",
                InvalidTokenReason.CLAIMS_INVALID,
                token_type=expected_type,
            )
        if expected_type is not None and token_type != expected_type:
            raise InvalidTokenError(
                f"Expected {expected_type} token, got {token_type}",
                InvalidTokenReason.TYPE_MISMATCH,
                token_type=expected_type,
            )

        return self._to_payload(claims, expected_type)

    def parse_unsafe(self, token: str) -> dict[str, Any]:
        """Decode claims WITHOUT verifying the signature or expiry.

        Only for bookkeeping on tokens the caller already holds (e.g. finding
        the jti to blacklist at logout). Never use the result for trust decisions.
        """
        if not token or not isinstance(token, str) or token.count(".") != 2:
            raise InvalidTokenError("Token must have three segments", InvalidTokenReason.MALFORMED)
        try:
            claims = jwt.decode(token, options={"verify_signature": False})
        except jwt.PyJWTError as e:
            raise InvalidTokenError(
                f"Unable to parse token: {e}", InvalidTokenReason.MALFORMED
            ) from e
        return claims

    def extract_payload(self, token: str) -> JwtPayload:
        """parse_unsafe() followed by claim validation."""
        return self._to_payload(self.parse_unsafe(token), None)

    @staticmethod
    def _to_payload(claims: Mapping[str, Any], token_type: str | None) -> JwtPayload:
        try:
            return JwtPayload.from_claims(claims)
        except (ValidationError, ValueError) as e:
            raise InvalidTokenError(
                f"Invalid token claims: {e}", InvalidTokenReason.CLAIMS_INVALID, token_type
            ) from e
