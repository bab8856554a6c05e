"""Password hashing and verification backed by bcrypt."""

from __future__ import annotations

import bcrypt

# bcrypt only consumes the first 72 bytes of its input
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Produce and check salted bcrypt verifiers with a fixed work factor."""

    def __init__(self, rounds: int = 10) -> None:
        """Store the bcrypt cost factor applied to newly generated salts."""
        self._rounds = rounds

    @property
    def rounds(self) -> int:
        return self._rounds

    def hash(self, plaintext: str) -> str:
        """Return a ``$2b$<cost>$...`` verifier built from a fresh random salt."""
        salt = bcrypt.gensalt(rounds=self._rounds)
        return bcrypt.hashpw(plaintext.encode("utf-8"), salt).decode("utf-8")

    def verify(self, plaintext: str, verifier: str) -> bool:
        """Constant-time comparison of ``plaintext`` against a stored verifier.

        Malformed verifiers and over-long inputs are reported as a mismatch.
        """
        try:
            candidate = plaintext.encode("utf-8")
            # older bcrypt releases silently truncate instead of raising
            if len(candidate) > MAX_PASSWORD_BYTES:
                return False
            return bcrypt.checkpw(candidate, verifier.encode("utf-8"))
        except (ValueError, TypeError, AttributeError):
            return False

    def needs_rehash(self, verifier: str) -> bool:
        """Return ``True`` when the verifier was produced with a different cost."""
        parts = verifier.split("$")
        if len(parts) != 4:
            return True
        try:
            return int(parts[2]) != self._rounds
        except ValueError:
            return True
