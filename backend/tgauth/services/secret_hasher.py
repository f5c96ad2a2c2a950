"""Salted one-way hashing for passwords and single-use secrets."""
from __future__ import annotations

import logging

from passlib.context import CryptContext

logger = logging.getLogger(__name__)

# bcrypt accepts 4..31; each step doubles the cost.
MIN_ROUNDS = 4
MAX_ROUNDS = 31


class SecretHasher:
    """Self-salting bcrypt digests with constant-time verification.

    Two calls to ``hash`` with the same plaintext produce different digests;
    ``verify`` recomputes with the salt embedded in the stored digest.
    """

    def __init__(self, rounds: int = 12) -> None:
        if not MIN_ROUNDS <= rounds <= MAX_ROUNDS:
            raise ValueError(f"bcrypt rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS}")
        self.rounds = rounds
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def hash(self, plaintext: str) -> str:
        return self._context.hash(plaintext)

    def verify(self, plaintext: str, digest: str | None) -> bool:
        """Return True only when ``plaintext`` matches ``digest``.

        A missing or malformed digest is a plain mismatch, never an exception.
        """
        if not digest:
            return False
        try:
            return self._context.verify(plaintext, digest)
        except (ValueError, TypeError):
            logger.warning("Secret verification failed due to invalid digest format")
            return False
