"""Password hashing for stored credentials."""
from __future__ import annotations

from passlib.context import CryptContext

from .errors import InvalidRequest

_SCHEME = "pbkdf2_sha256"
DEFAULT_ROUNDS = 29_000


class PasswordHasher:
    """Salted PBKDF2-SHA256 hashing backed by passlib.

    Hashes are self-describing (``$pbkdf2-sha256$<rounds>$<salt>$<checksum>``),
    so verification needs nothing but the stored string. Instances hold no
    mutable state and may be shared between threads.
    """

    def __init__(self, *, rounds: int = DEFAULT_ROUNDS) -> None:
        if rounds < 1:
            raise ValueError("rounds must be positive")
        self._rounds = rounds
        self._context = CryptContext(
            schemes=[_SCHEME],
            deprecated="auto",
            pbkdf2_sha256__rounds=rounds,
        )

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, password: str) -> str:
        if not password:
            raise InvalidRequest("Password must not be empty")
        return self._context.hash(password)

    def verify(self, password: str, password_hash: str) -> bool:
        """Return ``True`` if ``password`` matches. Malformed hashes never match."""

        if not password or not password_hash:
            return False
        try:
            return self._context.verify(password, password_hash)
        except (ValueError, TypeError):
            return False

    def dummy_verify(self) -> None:
        """Burn the CPU time of a real verification against a throwaway hash."""

        self._context.dummy_verify()


__all__ = ["DEFAULT_ROUNDS", "PasswordHasher"]
