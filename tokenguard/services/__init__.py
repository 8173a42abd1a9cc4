# TokenGuard Services
from tokenguard.services.auth import AuthenticationService, LogoutResult
from tokenguard.services.blacklist import BlacklistService
from tokenguard.services.blacklist_cache import BlacklistCache, blacklist_cache
from tokenguard.services.blacklist_store import BlacklistStore, SqlBlacklistStore
from tokenguard.services.refresh_rotation import RefreshRotationEngine
from tokenguard.services.refresh_token_store import RefreshTokenStore, SqlRefreshTokenStore
from tokenguard.services.session_guard import (
    InMemorySessionStore,
    SecurityCheckResult,
    SessionSecurityGuard,
    SessionStore,
)
from tokenguard.services.token import RevocationResult, TokenService
from tokenguard.services.token_codec import TokenCodec, generate_rsa_key_pair
from tokenguard.services.token_cleanup import TokenCleanupService
from tokenguard.services.user_directory import SqlUserDirectory, UserDirectory

__all__ = [
    "AuthenticationService",
    "BlacklistCache",
    "BlacklistService",
    "BlacklistStore",
    "InMemorySessionStore",
    "LogoutResult",
    "RefreshRotationEngine",
    "RefreshTokenStore",
    "RevocationResult",
    "SecurityCheckResult",
    "SessionSecurityGuard",
    "SessionStore",
    "SqlBlacklistStore",
    "SqlRefreshTokenStore",
    "SqlUserDirectory",
    "TokenCleanupService",
    "TokenCodec",
    "TokenService",
    "UserDirectory",
    "blacklist_cache",
    "generate_rsa_key_pair",
]
