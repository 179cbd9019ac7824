"""
auth/passwords.py -- bcrypt password hashing.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection feeds bcrypt 4.x a password longer than 72 bytes, which it rejects.

The hasher is an object rather than module functions so the cost factor comes
from Settings at construction time and tests can build a cheap instance
(rounds=4) without touching global state.
"""

from __future__ import annotations

import bcrypt

_DUMMY_PLAINTEXT = "caregate_timing_dummy"

# bcrypt reads at most this many bytes of the password.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    """Slow, salted, one-way hashing with bcrypt.

    hash() draws a fresh salt on every call, so hashing the same password twice
    yields two different strings; verify() accepts either.
    """

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds
        # Timing equalization hash [C1]. Computed once so the first login for
        # an unknown email is not measurably faster than later ones.
        self._dummy_hash = self.hash(_DUMMY_PLAINTEXT)

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of the given plaintext password.

        bcrypt raises ValueError for input over 72 bytes. Validation rejects
        such passwords before they reach this method.
        """
        return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if the plaintext matches the stored hash.

        A missing or malformed stored hash, or a plaintext over bcrypt's
        72-byte limit, is a verification failure, never an exception.
        """
        if not hashed:
            return False
        secret = plain.encode("utf-8", "surrogatepass")
        # Overlong input still pays for one bcrypt check, then fails.
        try:
            matched = bcrypt.checkpw(secret[:MAX_PASSWORD_BYTES], hashed.encode("utf-8"))
        except (TypeError, ValueError):
            return False
        return matched and len(secret) <= MAX_PASSWORD_BYTES

    def dummy_verify(self, plain: str) -> bool:
        """Spend one bcrypt check without a real hash. Always returns False."""
        self.verify(plain, self._dummy_hash)
        return False
