"""Authentication API endpoints."""

import logging
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from tokenguard.core import get_db
from tokenguard.core.exceptions import (
    AuthenticationError,
    AuthenticationReason,
    TokenError,
    TokenExpiredError,
    TokenGenerationError,
)
from tokenguard.core.request_utils import get_client_ip, get_user_agent
from tokenguard.schemas.auth import (
    IntrospectionResponse,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    MessageResponse,
    RefreshRequest,
    TokenResponse,
)
from tokenguard.schemas.device import DeviceInfo
from tokenguard.schemas.jwt_payload import JwtPayload
from tokenguard.services.auth import AuthenticationService
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.blacklist_store import SqlBlacklistStore
from tokenguard.services.refresh_rotation import RefreshRotationEngine
from tokenguard.services.refresh_token_store import SqlRefreshTokenStore
from tokenguard.services.token import TokenService
from tokenguard.services.token_codec import TokenCodec
from tokenguard.services.user_directory import SqlUserDirectory

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

_REFRESH_ERROR_DETAILS = {
    AuthenticationReason.INVALID_REFRESH_TOKEN: "Invalid refresh token",
    AuthenticationReason.DEVICE_MISMATCH: "Device mismatch detected",
}


@lru_cache
def get_token_codec() -> TokenCodec:
    """Process-wide codec; building it loads (or generates) the RSA key pair."""
    return TokenCodec.from_settings()


def get_token_service(
    db: AsyncSession = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> TokenService:
    """Dependency to get token service."""
    return TokenService(codec, SqlRefreshTokenStore(db), BlacklistService(SqlBlacklistStore(db)))


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    token_service: TokenService = Depends(get_token_service),
) -> AuthenticationService:
    """Dependency to get auth service."""
    rotation = RefreshRotationEngine(
        token_service, token_service.refresh_store, token_service.blacklist
    )
    return AuthenticationService(SqlUserDirectory(db), token_service, rotation)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_bearer_token(request: Request) -> str:
    """Extract the raw token from the Authorization header."""
    auth_header = request.headers.get("Authorization", "")

    if not auth_header.startswith("Bearer "):
        raise _unauthorized("Missing or invalid authorization header")

    return auth_header[7:]  # Remove "Bearer " prefix


async def get_current_payload(
    token: str = Depends(get_bearer_token),
    token_service: TokenService = Depends(get_token_service),
) -> JwtPayload:
    """Dependency returning the validated claims of the bearer access token."""
    try:
        return await token_service.validate_access_token(token)
    except TokenExpiredError as e:
        raise _unauthorized("Token has expired") from e
    except TokenError as e:
        raise _unauthorized("Invalid token") from e


def _device_from_request(
    request: Request, device_id: str | None = None, device_name: str | None = None
) -> DeviceInfo:
    try:
        return DeviceInfo.from_user_agent(
            get_user_agent(request),
            get_client_ip(request),
            device_id=device_id,
            device_name=device_name,
        )
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=f"Invalid device information: {e.error_count()} field(s) rejected",
        ) from e


@router.post("/login", response_model=LoginResponse)
async def login(
    request: LoginRequest,
    http_request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> LoginResponse:
    """Authenticate and get a JWT token pair.

    The refresh token is bound to the calling device; refreshing from a
    different device or address is refused.
    """
    device_info = _device_from_request(http_request, request.device_id, request.device_name)

    try:
        return await auth_service.login(request, device_info)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=e.message,
        ) from e
    except TokenGenerationError as e:
        logger.error(f"Token issuance failed at login: {e} ({e.reason.value})")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Unable to issue tokens",
        ) from e


@router.post("/refresh", response_model=TokenResponse)
async def refresh_tokens(
    request: RefreshRequest,
    http_request: Request,
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> TokenResponse:
    """Exchange a refresh token for a new pair (token rotation).

    The presented refresh token is invalid afterwards.
    """
    device_info = _device_from_request(http_request, request.device_id)

    try:
        return await auth_service.refresh(request.refresh_token, device_info)
    except AuthenticationError as e:
        detail = _REFRESH_ERROR_DETAILS.get(e.reason)
        if detail is None:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Token refresh failed",
            ) from e
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail) from e


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: LogoutRequest | None = None,
    token: str = Depends(get_bearer_token),
    payload: JwtPayload = Depends(get_current_payload),
    auth_service: AuthenticationService = Depends(get_auth_service),
) -> MessageResponse:
    """Log out the current user.

    Blacklists the current access token and revokes the given refresh
    token, or every refresh token of the user with revoke_all.
    """
    request = request or LogoutRequest()
    result = await auth_service.logout(token, request.refresh_token, request.revoke_all)
    if not result.success:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Logout failed",
        )

    logger.info(
        f"User {payload.user_id} logged out "
        f"({result.refresh_tokens_revoked} refresh tokens revoked)"
    )
    return MessageResponse(message="Logged out successfully")


@router.get("/introspect", response_model=IntrospectionResponse)
async def introspect(payload: JwtPayload = Depends(get_current_payload)) -> IntrospectionResponse:
    """Describe the presented (valid) access token."""
    return IntrospectionResponse(
        active=payload.is_active(),
        user_id=payload.user_id,
        jti=payload.jti,
        issued_at=payload.iat,
        expires_at=payload.exp,
        expires_in=payload.remaining_seconds(datetime.now(UTC)),
        device_id=payload.get_claim("device_id"),
        scopes=payload.get_claim("scopes", []),
    )


@router.get("/jwks")
async def jwks(codec: TokenCodec = Depends(get_token_codec)) -> dict[str, Any]:
    """Public verification keys for services that consume these tokens."""
    return codec.jwks()
