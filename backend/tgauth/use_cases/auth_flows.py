"""User-facing auth flows: register, login + OTP, Telegram linking, change, recovery.

This module only sequences calls; hashing lives in the SecretHasher, secret
issue/consume in SecretLifecycle, and chat ownership in BindingCoordinator.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from ..auth import SessionTokens, validate_new_password
from ..config import Settings
from ..domain_errors import DomainError, InvalidCredentials, InvalidOrExpired, UserAlreadyExists
from ..models import OTP_CONTEXTS, User
from ..services.credential_store import CredentialStore
from ..services.secret_hasher import SecretHasher
from ..services.telegram import TelegramMessenger
from .binding import BindingCoordinator
from .secret_lifecycle import SecretLifecycle

logger = logging.getLogger(__name__)

_OTP_MESSAGES = {
    "login": "Your OTP: {otp}",
    "sensitive": "Your OTP for sensitive: {otp}",
    "telegram_change": "OTP to confirm Telegram change: {otp}",
}


def normalize_identifier(identifier: str | None) -> str:
    """Emails are stored lower-cased; usernames are matched as given."""
    value = (identifier or "").strip()
    return value.lower() if "@" in value else value


@dataclass(frozen=True)
class RegisteredUser:
    id: int
    email: str
    username: str


@dataclass(frozen=True)
class OtpChallenge:
    challenge_id: int
    expires_at: datetime
    otp_sent: bool
    debug_otp: str | None = None


@dataclass(frozen=True)
class SessionGrant:
    user_id: int
    access_token: str
    expires_in: int
    token_type: str = "bearer"


@dataclass(frozen=True)
class LinkTokenGrant:
    token: str
    expires_at: datetime
    link_url: str | None = None


@dataclass(frozen=True)
class LinkCompleted:
    user_id: int
    chat_id: str
    recovery_codes: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RecoveryCompleted:
    user_id: int
    remaining_codes: int


class AuthOrchestrator:
    def __init__(
        self,
        *,
        store: CredentialStore,
        hasher: SecretHasher,
        lifecycle: SecretLifecycle,
        binding: BindingCoordinator,
        sessions: SessionTokens,
        messenger: TelegramMessenger,
        settings: Settings,
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.lifecycle = lifecycle
        self.binding = binding
        self.sessions = sessions
        self.messenger = messenger
        self.settings = settings
        # Verified against on unknown identifiers so misses cost the same as hits.
        self._dummy_hash = hasher.hash("tgauth-dummy-password")

    def register(self, email: str, username: str, password: str) -> RegisteredUser:
        email = normalize_identifier(email)
        username = (username or "").strip()
        if not email or not username:
            raise DomainError(code="MISSING_FIELDS", http_status=400, message="Missing fields")
        if "@" not in email:
            raise DomainError(code="INVALID_EMAIL", http_status=400, message="Invalid email address")
        validate_new_password(
            new_password=password,
            username=username,
            min_length=self.settings.PASSWORD_MIN_LENGTH,
            max_length=self.settings.PASSWORD_MAX_LENGTH,
        )

        try:
            user = self.store.create_user(
                email=email,
                username=username,
                password_hash=self.hasher.hash(password),
            )
        except IntegrityError:
            raise UserAlreadyExists()
        logger.info("Registered user=%s", user.id)
        return RegisteredUser(id=user.id, email=user.email, username=user.username)

    def login(self, identifier: str, password: str) -> OtpChallenge:
        return self.initiate_otp(identifier, password, context="login")

    def initiate_otp(
        self,
        identifier: str,
        password: str,
        *,
        context: str = "login",
        ttl_seconds: int | None = None,
    ) -> OtpChallenge:
        """Check the password, issue an OTP for ``context`` and try Telegram delivery."""
        if context not in OTP_CONTEXTS:
            raise DomainError(code="UNKNOWN_OTP_CONTEXT", http_status=400, message="Unknown OTP context")
        user = self._authenticate(identifier, password)
        issued = self.lifecycle.issue_otp(
            user.id,
            ttl_seconds or self.settings.OTP_TTL_SECONDS,
            context,
        )
        otp_sent = self.send_otp_to_telegram(user.id, issued.code, context)
        return OtpChallenge(
            challenge_id=issued.challenge_id,
            expires_at=issued.expires_at,
            otp_sent=otp_sent,
            debug_otp=issued.code if self.settings.DEBUG_OTP else None,
        )

    def verify_otp(self, challenge_id: int, otp: str) -> SessionGrant:
        """Consume a login OTP and issue a session credential."""
        user_id = self.confirm_otp(challenge_id, otp, context="login")
        return SessionGrant(
            user_id=user_id,
            access_token=self.sessions.issue(user_id),
            expires_in=self.sessions.expire_minutes * 60,
        )

    def confirm_otp(self, challenge_id: int, otp: str, *, context: str) -> int:
        """Consume an OTP issued for ``context`` and return its user id."""
        consumed = self.lifecycle.verify_otp(challenge_id, otp, context=context)
        user = self.store.find_user_by_id(consumed.user_id)
        if user is None or not user.is_active:
            raise InvalidOrExpired()
        return user.id

    def send_otp_to_telegram(self, user_id: int, otp: str, context: str = "login") -> bool:
        """Deliver an OTP to the user's verified chat; False if there is none or delivery failed."""
        if not self.messenger.enabled:
            return False
        creds = self.store.get_binding(user_id)
        if creds is None or not creds.is_verified or not creds.telegram_chat_id:
            return False
        text = _OTP_MESSAGES.get(context, _OTP_MESSAGES["login"]).format(otp=otp)
        return self.messenger.send_message(str(creds.telegram_chat_id), text)

    def initiate_link(self, user_id: int) -> LinkTokenGrant:
        user = self.store.find_user_by_id(user_id)
        if user is None or not user.is_active:
            raise InvalidCredentials("User not found or inactive")
        issued = self.lifecycle.issue_link_token(user.id, self.settings.LINK_TOKEN_TTL_SECONDS)
        return LinkTokenGrant(
            token=issued.token,
            expires_at=issued.expires_at,
            link_url=self.messenger.build_deep_link(issued.token),
        )

    def complete_link(self, token: str, chat_id: str, display_name: str | None = None) -> LinkCompleted:
        """Consume a link token presented by the bot and bind the chat to its owner.

        Recovery codes are issued the first time a user links a chat; the
        plaintext codes are only ever available in the returned value.
        """
        consumed = self.lifecycle.consume_link_token(token)
        result = self.binding.bind(consumed.user_id, chat_id, display_name)

        codes: list[str] = []
        if not self.store.has_recovery_codes(consumed.user_id):
            codes = self.lifecycle.issue_recovery_codes(consumed.user_id, self.settings.RECOVERY_CODE_COUNT)
        return LinkCompleted(user_id=consumed.user_id, chat_id=result.chat_id, recovery_codes=codes)

    def initiate_telegram_change(self, identifier: str, password: str) -> OtpChallenge:
        return self.initiate_otp(identifier, password, context="telegram_change")

    def confirm_telegram_change(self, challenge_id: int, otp: str) -> int:
        """Re-authenticate via OTP, then drop the old binding so a new chat can be linked."""
        user_id = self.confirm_otp(challenge_id, otp, context="telegram_change")
        self.binding.revoke(user_id)
        return user_id

    def recover(self, identifier: str, recovery_code: str) -> RecoveryCompleted:
        """Spend a recovery code instead of password + OTP and force re-linking."""
        user = self.store.find_user_by_identifier(normalize_identifier(identifier))
        if user is None:
            raise InvalidOrExpired()
        consumed = self.lifecycle.consume_recovery_code(user.id, recovery_code)
        self.binding.revoke(consumed.user_id)
        return RecoveryCompleted(
            user_id=consumed.user_id,
            remaining_codes=self.store.count_unused_recovery_codes(consumed.user_id),
        )

    def _authenticate(self, identifier: str, password: str) -> User:
        user = self.store.find_user_by_identifier(normalize_identifier(identifier))
        if user is None:
            self.hasher.verify(password or "", self._dummy_hash)
            raise InvalidCredentials()
        if not self.hasher.verify(password or "", user.password_hash) or not user.is_active:
            raise InvalidCredentials()
        return user
