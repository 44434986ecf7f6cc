"""Password hashing with passlib's bcrypt context."""

from passlib.context import CryptContext


class PasswordHasher:
    """Hash and verify passwords with a configurable bcrypt cost."""

    def __init__(self, rounds: int = 12) -> None:
        self._context = CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)

    def hash(self, plain: str) -> str:
        """Hash a plaintext password using bcrypt."""
        return self._context.hash(plain)

    def verify(self, plain: str, hashed: str) -> bool:
        """Verify a plaintext password against its bcrypt hash."""
        return self._context.verify(plain, hashed)

    def dummy_verify(self) -> bool:
        """Burn the same time as a real verify for accounts that do not exist."""
        return self._context.dummy_verify()
