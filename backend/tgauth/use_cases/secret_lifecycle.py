"""Issue, look up and single-use-consume OTPs, link tokens and recovery codes.

Every secret follows the same lifecycle:

    issued -> (matched) -> verified-and-consumed | expired | already-used

Plaintext is returned exactly once at issue time and never persisted or logged.
OTP challenges are found by their (non-secret) id. Link tokens and recovery
codes are found through a keyed deterministic digest; when that yields zero or
several rows, the unused candidates in scope are scanned with ``verify``.

Rejection checks run in a fixed order (not found, already used, expired, digest
mismatch) and the public methods collapse all of them into InvalidOrExpired.
"""
from __future__ import annotations

import logging
import secrets
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Protocol

from ..domain_errors import (
    AlreadyUsed,
    Expired,
    InvalidOrExpired,
    InvalidSecret,
    NotFound,
    SecretRejected,
)
from ..models import OTP_CONTEXTS
from ..services.credential_store import CredentialStore
from ..services.indexer import DeterministicIndexer
from ..services.secret_hasher import SecretHasher

logger = logging.getLogger(__name__)

OTP_LENGTH = 6
LINK_TOKEN_BYTES = 32
RECOVERY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
RECOVERY_CODE_GROUP = 4


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Treat naive datetimes read back from the store as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def generate_otp() -> str:
    return f"{secrets.randbelow(10 ** OTP_LENGTH):0{OTP_LENGTH}d}"


def generate_link_token() -> str:
    return secrets.token_urlsafe(LINK_TOKEN_BYTES)


def generate_recovery_code() -> str:
    groups = (
        "".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(RECOVERY_CODE_GROUP))
        for _ in range(2)
    )
    return "RC-" + "-".join(groups)


def normalize_recovery_code(code: str) -> str:
    return code.strip().upper()


class _SecretRecord(Protocol):
    id: int
    user_id: int
    used: bool


@dataclass(frozen=True)
class IssuedOtp:
    challenge_id: int
    code: str
    expires_at: datetime
    context: str


@dataclass(frozen=True)
class IssuedLinkToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class ConsumedSecret:
    user_id: int
    record_id: int


class SecretLifecycle:
    """Token/code lifecycle manager composing the hasher and the indexer."""

    def __init__(
        self,
        store: CredentialStore,
        hasher: SecretHasher,
        indexer: DeterministicIndexer,
        *,
        clock: Callable[[], datetime] = now_utc,
        scan_fallback: bool = True,
        otp_generator: Callable[[], str] = generate_otp,
        link_token_generator: Callable[[], str] = generate_link_token,
        recovery_code_generator: Callable[[], str] = generate_recovery_code,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.indexer = indexer
        self.scan_fallback = scan_fallback
        self._clock = clock
        self._otp_generator = otp_generator
        self._link_token_generator = link_token_generator
        self._recovery_code_generator = recovery_code_generator

    # OTP challenges

    def issue_otp(self, user_id: int, ttl_seconds: int, context: str = "login") -> IssuedOtp:
        if context not in OTP_CONTEXTS:
            raise ValueError(f"Unknown OTP context: {context}")
        code = self._otp_generator()
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        record = self.store.create_otp(
            user_id=user_id,
            otp_hash=self.hasher.hash(code),
            expires_at=expires_at,
            context=context,
        )
        logger.info(
            "Issued OTP challenge id=%s user=%s context=%s expires_at=%s",
            record.id, user_id, context, expires_at.isoformat(),
        )
        return IssuedOtp(challenge_id=record.id, code=code, expires_at=expires_at, context=context)

    def verify_otp(self, challenge_id: int, code: str, *, context: str | None = None) -> ConsumedSecret:
        """Consume an OTP challenge; any rejection surfaces as InvalidOrExpired."""
        return self._normalized("otp", self._verify_otp, challenge_id, code, context=context)

    def _verify_otp(self, challenge_id: int, code: str, *, context: str | None = None) -> ConsumedSecret:
        record = self.store.get_otp(challenge_id)
        if record is None or (context is not None and record.context != context):
            raise NotFound()
        return self._check_and_consume(
            record,
            plaintext=code,
            digest=record.otp_hash,
            expires_at=record.expires_at,
            mark_used=self.store.mark_otp_used,
        )

    # Link tokens

    def issue_link_token(self, user_id: int, ttl_seconds: int) -> IssuedLinkToken:
        token = self._link_token_generator()
        expires_at = self._clock() + timedelta(seconds=ttl_seconds)
        record = self.store.create_link_token(
            user_id=user_id,
            token_hash=self.hasher.hash(token),
            token_hmac=self.indexer.index(token),
            expires_at=expires_at,
        )
        logger.info("Issued link token id=%s user=%s expires_at=%s", record.id, user_id, expires_at.isoformat())
        return IssuedLinkToken(token=token, expires_at=expires_at)

    def consume_link_token(self, token: str) -> ConsumedSecret:
        return self._normalized("link_token", self._consume_link_token, token)

    def _consume_link_token(self, token: str) -> ConsumedSecret:
        record = self._lookup(
            token,
            indexed=self.store.find_link_tokens_by_hmac(self.indexer.index(token)),
            scope=lambda: self.store.list_active_link_tokens(self._clock()),
            digest_of=lambda row: row.token_hash,
        )
        return self._check_and_consume(
            record,
            plaintext=token,
            digest=record.token_hash,
            expires_at=record.expires_at,
            mark_used=self.store.mark_link_token_used,
        )

    # Recovery codes

    def issue_recovery_codes(self, user_id: int, count: int) -> list[str]:
        """Create ``count`` codes; the plaintext list is the only copy ever returned."""
        codes: list[str] = []
        while len(codes) < count:
            code = self._recovery_code_generator()
            if code not in codes:
                codes.append(code)
        self.store.add_recovery_codes(
            user_id,
            [(self.hasher.hash(code), self.indexer.index(code)) for code in codes],
        )
        logger.info("Issued %s recovery codes for user=%s", count, user_id)
        return codes

    def consume_recovery_code(self, user_id: int, code: str) -> ConsumedSecret:
        return self._normalized("recovery_code", self._consume_recovery_code, user_id, code)

    def _consume_recovery_code(self, user_id: int, code: str) -> ConsumedSecret:
        code = normalize_recovery_code(code)
        record = self._lookup(
            code,
            indexed=self.store.find_recovery_codes_by_hmac(user_id, self.indexer.index(code)),
            scope=lambda: self.store.list_unused_recovery_codes(user_id),
            digest_of=lambda row: row.code_hash,
        )
        return self._check_and_consume(
            record,
            plaintext=code,
            digest=record.code_hash,
            expires_at=None,
            mark_used=self.store.mark_recovery_code_used,
        )

    # Shared steps

    def _lookup(
        self,
        plaintext: str,
        *,
        indexed: Sequence[_SecretRecord],
        scope: Callable[[], Sequence[_SecretRecord]],
        digest_of: Callable[[_SecretRecord], str],
    ) -> _SecretRecord:
        """Resolve a plaintext to one record via the index, else by scanning ``scope``.

        An index hit is only a candidate; possession is confirmed later by
        ``_check_and_consume``.
        """
        if len(indexed) == 1:
            return indexed[0]
        if not self.scan_fallback:
            raise NotFound()
        candidates = scope()
        logger.info("Lookup digest matched %s rows, scanning %s candidates", len(indexed), len(candidates))
        for row in candidates:
            if self.hasher.verify(plaintext, digest_of(row)):
                return row
        raise NotFound()

    def _check_and_consume(
        self,
        record: _SecretRecord,
        *,
        plaintext: str,
        digest: str,
        expires_at: datetime | None,
        mark_used: Callable[[int], bool],
    ) -> ConsumedSecret:
        if record.used:
            raise AlreadyUsed()
        # Expiry first: an expired secret is rejected whether or not it matches.
        expires = as_utc(expires_at)
        if expires is not None and self._clock() > expires:
            raise Expired()
        if not self.hasher.verify(plaintext, digest):
            raise InvalidSecret()
        # Conditional update: exactly one concurrent caller sees True.
        if not mark_used(record.id):
            raise AlreadyUsed()
        return ConsumedSecret(user_id=record.user_id, record_id=record.id)

    def _normalized(self, kind: str, operation: Callable[..., ConsumedSecret], *args, **kwargs) -> ConsumedSecret:
        try:
            return operation(*args, **kwargs)
        except SecretRejected as exc:
            logger.info("Rejected %s: %s", kind, exc.code)
            raise InvalidOrExpired() from None
