"""User directory - credential verification against the users table."""

import logging
from datetime import UTC, datetime
from typing import Protocol

from argon2 import PasswordHasher
from argon2.exceptions import VerifyMismatchError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from tokenguard.models.user import User

logger = logging.getLogger(__name__)

# Argon2 password hasher with recommended parameters
# Memory: 64 MiB, Time: 3 iterations, Parallelism: 4
ph = PasswordHasher(
    time_cost=3,
    memory_cost=65536,
    parallelism=4,
    hash_len=32,
    salt_len=16,
)


def hash_password(password: str) -> str:
    """Hash a password using Argon2id."""
    return ph.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash using constant-time comparison."""
    try:
        ph.verify(password_hash, password)
        return True
    except VerifyMismatchError:
        return False


class UserDirectory(Protocol):
    """Source of truth for user credentials."""

    async def validate_credentials(self, email: str, password: str) -> User | None: ...

    async def update_last_login(self, user_id: int) -> None: ...


class SqlUserDirectory:
    """UserDirectory backed by the users table."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: int) -> User | None:
        return await self.db.get(User, user_id)

    async def create_user(self, email: str, password: str) -> User:
        user = User(email=email.lower(), password_hash=hash_password(password))
        self.db.add(user)
        await self.db.flush()
        await self.db.refresh(user)

        logger.info(f"Created user: {user.email}")
        return user

    async def validate_credentials(self, email: str, password: str) -> User | None:
        """Return the user if the password matches, otherwise None.

        Unknown emails and wrong passwords are indistinguishable to the
        caller and take the same time.
        """
        user = await self.get_user_by_email(email)

        if user is None:
            # Perform a dummy hash to prevent timing attacks
            verify_password(password, hash_password("dummy"))
            return None

        if not verify_password(password, user.password_hash):
            return None

        return user

    async def update_last_login(self, user_id: int) -> None:
        await self.db.execute(
            update(User).where(User.id == user_id).values(last_login_at=datetime.now(UTC))
        )
