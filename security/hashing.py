"""Password hashing and verification."""

from fastapi.concurrency import run_in_threadpool

from passlib.context import CryptContext
from passlib.exc import UnknownHashError


DEFAULT_BCRYPT_ROUNDS = 12


class PasswordHasher:
    """Slow, salted one-way hashing of passwords with bcrypt."""

    def __init__(self, rounds: int = DEFAULT_BCRYPT_ROUNDS):
        self.rounds = rounds
        self.pwd_context = CryptContext(
            schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds
        )

    def hash(self, password: str) -> str:
        """Generates a hash for the given password.

        Args:
            password (str): The plain text password to hash.

        Raises:
            ValueError: If `password` is empty.

        Returns:
            str: The bcrypt hash, salted with a fresh random salt.
        """
        if not password:
            raise ValueError("password cannot be empty")
        return self.pwd_context.hash(password)

    def verify(self, password: str, hashed_password: str | None) -> bool:
        """Verifies that `password` matches `hashed_password`.

        A missing or malformed hash is a verification failure, never an exception.

        Args:
            password (str): The plain text password to verify.
            hashed_password (str | None): The stored hash to compare against.

        Returns:
            bool: True if the password matches, False otherwise.
        """
        if not password or not hashed_password:
            return False
        try:
            return self.pwd_context.verify(password, hashed_password)
        except (UnknownHashError, ValueError, TypeError):
            return False

    def dummy_verify(self) -> bool:
        """Spend the time of a real verification when there is no hash to check."""
        return self.pwd_context.dummy_verify()

    async def hash_async(self, password: str) -> str:
        return await run_in_threadpool(self.hash, password)

    async def verify_async(self, password: str, hashed_password: str | None) -> bool:
        return await run_in_threadpool(self.verify, password, hashed_password)

    async def dummy_verify_async(self) -> bool:
        return await run_in_threadpool(self.dummy_verify)
