# TokenGuard Models
from tokenguard.models.base import BaseModel
from tokenguard.models.refresh_token import RefreshToken
from tokenguard.models.token_blacklist import TokenBlacklist
from tokenguard.models.user import User

__all__ = [
    "BaseModel",
    "RefreshToken",
    "TokenBlacklist",
    "User",
]
