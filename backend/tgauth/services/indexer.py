"""Keyed deterministic digests used as storage lookup keys."""
from __future__ import annotations

import hashlib
import hmac

from ..domain_errors import NotConfigured


class DeterministicIndexer:
    """HMAC-SHA256 of a plaintext secret under a process-wide key.

    The same plaintext always maps to the same key, so the digest can be used
    for equality lookup. A hit only narrows candidates: callers must still
    confirm possession with ``SecretHasher.verify`` against the salted digest.
    """

    def __init__(self, secret: str | bytes | None) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise NotConfigured(message="HMAC secret not configured")
        self._key = secret

    def index(self, plaintext: str) -> str:
        return hmac.new(self._key, plaintext.encode("utf-8"), hashlib.sha256).hexdigest()
