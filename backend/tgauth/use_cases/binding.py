"""Telegram chat id ownership: at most one user holds a given chat id."""
from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from ..domain_errors import BindingConflict
from ..services.credential_store import CredentialStore
from .secret_lifecycle import now_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BindingResult:
    user_id: int
    chat_id: str
    linked_at: datetime
    previous_owner_ids: tuple[int, ...] = ()
    retried: bool = False


class BindingCoordinator:
    """Assigns chat ids to users without in-process locks.

    ``bind`` is attempt -> (on unique conflict) retry once -> BindingConflict.
    Each attempt is a single store transaction that re-clears the conflicting
    owner and assigns the caller, so observers never see the chat id cleared
    from the old owner without it being assigned to the new one. Contention
    that defeats the single retry is left to the caller.
    """

    def __init__(self, store: CredentialStore, *, clock: Callable[[], datetime] = now_utc) -> None:
        self.store = store
        self._clock = clock

    def bind(self, user_id: int, chat_id: str, display_name: str | None = None) -> BindingResult:
        chat_id = str(chat_id).strip()
        if not chat_id:
            raise ValueError("chat_id must not be empty")

        retried = False
        linked_at = self._clock()
        previous = self._assign(user_id, chat_id, display_name, linked_at)
        if previous is None:
            retried = True
            logger.warning("Retrying Telegram bind user=%s after unique conflict", user_id)
            linked_at = self._clock()
            previous = self._assign(user_id, chat_id, display_name, linked_at)
        if previous is None:
            logger.error("Telegram bind for user=%s failed after retry", user_id)
            raise BindingConflict(details={"user_id": user_id})

        if previous:
            logger.info("Telegram chat moved to user=%s from users=%s", user_id, previous)
        else:
            logger.info("Telegram chat bound to user=%s", user_id)
        return BindingResult(
            user_id=user_id,
            chat_id=chat_id,
            linked_at=linked_at,
            previous_owner_ids=tuple(previous),
            retried=retried,
        )

    def revoke(self, user_id: int) -> None:
        """Clear the user's own binding; safe to call repeatedly."""
        self.store.clear_binding(user_id)
        logger.info("Telegram binding revoked for user=%s", user_id)

    def _assign(
        self, user_id: int, chat_id: str, display_name: str | None, linked_at: datetime
    ) -> list[int] | None:
        return self.store.assign_binding(
            user_id=user_id,
            chat_id=chat_id,
            telegram_username=display_name,
            linked_at=linked_at,
        )
