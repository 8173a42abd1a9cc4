# TokenGuard Pydantic Schemas
from tokenguard.schemas.auth import (
    IntrospectionResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    TokenResponse,
)
from tokenguard.schemas.blacklist_entry import (
    BlacklistReason,
    TokenBlacklistEntry,
    TokenKind,
)
from tokenguard.schemas.device import Browser, DeviceClass, DeviceInfo, Platform
from tokenguard.schemas.jwt_payload import RESERVED_CLAIMS, CustomClaims, JwtPayload
from tokenguard.schemas.token_pair import TokenPair

__all__ = [
    "RESERVED_CLAIMS",
    "BlacklistReason",
    "Browser",
    "CustomClaims",
    "DeviceClass",
    "DeviceInfo",
    "IntrospectionResponse",
    "JwtPayload",
    "LoginRequest",
    "LoginResponse",
    "LogoutRequest",
    "MessageResponse",
    "Platform",
    "RefreshRequest",
    "TokenBlacklistEntry",
    "TokenKind",
    "TokenPair",
    "TokenResponse",
]
