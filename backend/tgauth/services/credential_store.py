"""Durable store for users, Telegram bindings and single-use secrets.

Every public method runs in its own transaction. Rows returned to callers are
detached snapshots; the session factory must be built with
``expire_on_commit=False``.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..models import LinkToken, OTPRequest, RecoveryCode, TelegramCredentials, User

logger = logging.getLogger(__name__)

_CLEARED_BINDING = {
    "telegram_chat_id": None,
    "telegram_username": None,
    "is_verified": False,
    "linked_at": None,
}


class CredentialStore:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # Users

    def create_user(self, *, email: str, username: str, password_hash: str) -> User:
        """Insert a user and its empty binding row.

        IntegrityError propagates on duplicate email/username.
        """
        with self._session_factory.begin() as db:
            user = User(email=email, username=username, password_hash=password_hash, is_active=True)
            db.add(user)
            db.flush()
            db.add(TelegramCredentials(user_id=user.id, **_CLEARED_BINDING))
            db.flush()
        return user

    def find_user_by_id(self, user_id: int) -> User | None:
        with self._session_factory() as db:
            return db.get(User, user_id)

    def find_user_by_identifier(self, identifier: str) -> User | None:
        """Find a user by email or username."""
        with self._session_factory() as db:
            return db.execute(
                select(User).where(or_(User.email == identifier, User.username == identifier))
            ).scalars().first()

    def find_user_by_chat_id(self, chat_id: str) -> User | None:
        """Owner of a verified binding for ``chat_id``, if any."""
        with self._session_factory() as db:
            return db.execute(
                select(User)
                .join(TelegramCredentials, TelegramCredentials.user_id == User.id)
                .where(
                    TelegramCredentials.telegram_chat_id == chat_id,
                    TelegramCredentials.is_verified.is_(True),
                )
            ).scalars().first()

    # Telegram bindings

    def get_binding(self, user_id: int) -> TelegramCredentials | None:
        with self._session_factory() as db:
            return db.execute(
                select(TelegramCredentials).where(TelegramCredentials.user_id == user_id)
            ).scalars().first()

    def assign_binding(
        self,
        *,
        user_id: int,
        chat_id: str,
        telegram_username: str | None,
        linked_at: datetime,
    ) -> list[int] | None:
        """Move ``chat_id`` to ``user_id`` in one transaction.

        Clears the chat id from any other user's row, then writes every binding
        column of the caller's row (inserting it if missing). Returns the ids of
        users whose binding was cleared, or None when a concurrent writer made
        the unique constraint fire (nothing is applied in that case).
        """
        try:
            with self._session_factory.begin() as db:
                previous_owners = db.execute(
                    select(TelegramCredentials.user_id).where(
                        TelegramCredentials.telegram_chat_id == chat_id,
                        TelegramCredentials.user_id != user_id,
                    )
                ).scalars().all()
                # Unconditional: an owner committed after the select above must still be cleared.
                db.execute(
                    update(TelegramCredentials)
                    .where(
                        TelegramCredentials.telegram_chat_id == chat_id,
                        TelegramCredentials.user_id != user_id,
                    )
                    .values(**_CLEARED_BINDING)
                    .execution_options(synchronize_session=False)
                )
                assigned = {
                    "telegram_chat_id": chat_id,
                    "telegram_username": telegram_username,
                    "is_verified": True,
                    "linked_at": linked_at,
                }
                result = db.execute(
                    update(TelegramCredentials)
                    .where(TelegramCredentials.user_id == user_id)
                    .values(**assigned)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    db.add(TelegramCredentials(user_id=user_id, **assigned))
                db.flush()
        except IntegrityError:
            logger.warning("Telegram chat id unique constraint hit while binding user=%s", user_id)
            return None
        return list(previous_owners)

    def clear_binding(self, user_id: int) -> None:
        with self._session_factory.begin() as db:
            db.execute(
                update(TelegramCredentials)
                .where(TelegramCredentials.user_id == user_id)
                .values(**_CLEARED_BINDING)
            )

    # OTP challenges

    def create_otp(self, *, user_id: int, otp_hash: str, expires_at: datetime, context: str) -> OTPRequest:
        with self._session_factory.begin() as db:
            otp = OTPRequest(user_id=user_id, otp_hash=otp_hash, expires_at=expires_at, used=False, context=context)
            db.add(otp)
            db.flush()
        return otp

    def get_otp(self, otp_id: int) -> OTPRequest | None:
        with self._session_factory() as db:
            return db.get(OTPRequest, otp_id)

    def mark_otp_used(self, otp_id: int) -> bool:
        """Flip used=true only if still unused; False means another caller won."""
        return self._mark_used(OTPRequest, otp_id)

    # Link tokens

    def create_link_token(
        self, *, user_id: int, token_hash: str, token_hmac: str, expires_at: datetime
    ) -> LinkToken:
        with self._session_factory.begin() as db:
            token = LinkToken(
                user_id=user_id,
                token_hash=token_hash,
                token_hmac=token_hmac,
                expires_at=expires_at,
                used=False,
            )
            db.add(token)
            db.flush()
        return token

    def find_link_tokens_by_hmac(self, token_hmac: str) -> list[LinkToken]:
        with self._session_factory() as db:
            return list(
                db.execute(select(LinkToken).where(LinkToken.token_hmac == token_hmac)).scalars().all()
            )

    def list_active_link_tokens(self, now: datetime) -> list[LinkToken]:
        """All unused, unexpired link tokens (fallback scan scope)."""
        with self._session_factory() as db:
            return list(
                db.execute(
                    select(LinkToken)
                    .where(LinkToken.used.is_(False), LinkToken.expires_at >= now)
                    .order_by(LinkToken.id)
                ).scalars().all()
            )

    def mark_link_token_used(self, token_id: int) -> bool:
        return self._mark_used(LinkToken, token_id)

    # Recovery codes

    def add_recovery_codes(self, user_id: int, entries: Iterable[tuple[str, str]]) -> list[RecoveryCode]:
        """Insert a batch of (code_hash, code_hmac) pairs atomically."""
        with self._session_factory.begin() as db:
            rows = [
                RecoveryCode(user_id=user_id, code_hash=code_hash, code_hmac=code_hmac, used=False)
                for code_hash, code_hmac in entries
            ]
            db.add_all(rows)
            db.flush()
        return rows

    def find_recovery_codes_by_hmac(self, user_id: int, code_hmac: str) -> list[RecoveryCode]:
        with self._session_factory() as db:
            return list(
                db.execute(
                    select(RecoveryCode).where(
                        RecoveryCode.user_id == user_id,
                        RecoveryCode.code_hmac == code_hmac,
                    )
                ).scalars().all()
            )

    def list_unused_recovery_codes(self, user_id: int) -> list[RecoveryCode]:
        with self._session_factory() as db:
            return list(
                db.execute(
                    select(RecoveryCode)
                    .where(RecoveryCode.user_id == user_id, RecoveryCode.used.is_(False))
                    .order_by(RecoveryCode.id)
                ).scalars().all()
            )

    def has_recovery_codes(self, user_id: int) -> bool:
        """True if the user was ever issued recovery codes (used or not)."""
        with self._session_factory() as db:
            return db.execute(
                select(RecoveryCode.id).where(RecoveryCode.user_id == user_id).limit(1)
            ).first() is not None

    def count_unused_recovery_codes(self, user_id: int) -> int:
        with self._session_factory() as db:
            return db.execute(
                select(func.count(RecoveryCode.id)).where(
                    RecoveryCode.user_id == user_id,
                    RecoveryCode.used.is_(False),
                )
            ).scalar_one()

    def mark_recovery_code_used(self, code_id: int) -> bool:
        return self._mark_used(RecoveryCode, code_id)

    def _mark_used(self, model, row_id: int) -> bool:
        with self._session_factory.begin() as db:
            result = db.execute(
                update(model)
                .where(model.id == row_id, model.used.is_(False))
                .values(used=True)
            )
            return result.rowcount == 1
