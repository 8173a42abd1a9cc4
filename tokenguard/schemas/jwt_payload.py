"""Decoded JWT claims."""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

RESERVED_CLAIMS = frozenset({"jti", "sub", "iss", "aud", "iat", "exp", "nbf"})


def _validate_custom_claims(claims: Mapping[str, Any]) -> dict[str, Any]:
    for name in claims:
        if not isinstance(name, str) or not name:
            raise ValueError("Custom claim names must be non-empty strings")
        if name in RESERVED_CLAIMS:
            raise ValueError(f"Cannot use reserved claim '{name}' as custom claim")
    return dict(claims)


# Claims a caller may attach to a token; reserved registered names are rejected
CustomClaims = Annotated[Mapping[str, Any], AfterValidator(_validate_custom_claims)]


class JwtPayload(BaseModel):
    """Validated, immutable view of a token's claims."""

    model_config = ConfigDict(frozen=True)

    jti: str = Field(min_length=1, max_length=255)
    sub: str
    iss: str = Field(min_length=1)
    aud: tuple[str, ...] = Field(min_length=1)
    iat: datetime
    exp: datetime
    nbf: datetime | None = None
    custom_claims: CustomClaims = Field(default_factory=dict)

    @field_validator("jti", "iss")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Value cannot be blank")
        return v

    @field_validator("sub", mode="before")
    @classmethod
    def validate_subject(cls, v: Any) -> str:
        if isinstance(v, bool):
            raise ValueError("Subject (sub) must be a valid positive integer")
        value = str(v).strip()
        if not value.isdigit() or int(value) <= 0:
            raise ValueError("Subject (sub) must be a valid positive integer")
        return value

    @field_validator("aud", mode="before")
    @classmethod
    def normalize_audience(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = (v,)
        if isinstance(v, (list, tuple)) and not all(isinstance(a, str) and a for a in v):
            raise ValueError("All audience values must be non-empty strings")
        return v

    @model_validator(mode="after")
    def validate_times(self) -> "JwtPayload":
        if self.exp <= self.iat:
            raise ValueError("Expiration time (exp) must be after issued time (iat)")
        if self.nbf is not None and self.nbf > self.exp:
            raise ValueError("Not before time (nbf) cannot be after expiration time (exp)")
        return self

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "JwtPayload":
        """Split a raw claim set into registered and custom claims."""
        for required in ("jti", "sub", "iss", "aud", "iat", "exp"):
            if required not in claims:
                raise ValueError(f"Missing required claim: {required}")
        custom = {k: v for k, v in claims.items() if k not in RESERVED_CLAIMS}
        return cls(
            jti=claims["jti"],
            sub=claims["sub"],
            iss=claims["iss"],
            aud=claims["aud"],
            iat=claims["iat"],
            exp=claims["exp"],
            nbf=claims.get("nbf"),
            custom_claims=custom,
        )

    @property
    def user_id(self) -> int:
        return int(self.sub)

    @property
    def token_type(self) -> str | None:
        return self.custom_claims.get("type")

    def get_claim(self, name: str, default: Any = None) -> Any:
        return self.custom_claims.get(name, default)

    def has_audience(self, audience: str) -> bool:
        return audience in self.aud

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.exp <= (now or datetime.now(UTC))

    def is_active(self, now: datetime | None = None) -> bool:
        now = now or datetime.now(UTC)
        if self.nbf is not None and self.nbf > now:
            return False
        return not self.is_expired(now)

    def remaining_seconds(self, now: datetime | None = None) -> int:
        now = now or datetime.now(UTC)
        return max(0, int((self.exp - now).total_seconds()))

    def to_claims(self) -> dict[str, Any]:
        """Claim set suitable for encoding; a single audience is flattened."""
        claims: dict[str, Any] = {
            "jti": self.jti,
            "sub": self.sub,
            "iss": self.iss,
            "aud": self.aud[0] if len(self.aud) == 1 else list(self.aud),
            "iat": int(self.iat.timestamp()),
            "exp": int(self.exp.timestamp()),
        }
        if self.nbf is not None:
            claims["nbf"] = int(self.nbf.timestamp())
        claims.update(self.custom_claims)
        return claims
