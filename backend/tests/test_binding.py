from __future__ import annotations

from datetime import datetime, timezone

import pytest

from tgauth.domain_errors import BindingConflict
from tgauth.use_cases.binding import BindingCoordinator


class _ConflictingStoreStub:
    """Store whose first ``assign_binding`` calls lose to a concurrent writer."""

    def __init__(self, conflicts: int) -> None:
        self.conflicts = conflicts
        self.assign_calls: list[dict] = []

    def assign_binding(self, **kwargs):
        self.assign_calls.append(kwargs)
        if len(self.assign_calls) <= self.conflicts:
            return None
        return [7]


def _clock():
    return datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_bind_marks_binding_verified(binding: BindingCoordinator, store, make_user) -> None:
    user = make_user()

    result = binding.bind(user.id, "chat-99", "alice_tg")

    assert result.chat_id == "chat-99"
    assert result.previous_owner_ids == ()
    assert result.retried is False
    creds = store.get_binding(user.id)
    assert creds.telegram_chat_id == "chat-99"
    assert creds.telegram_username == "alice_tg"
    assert creds.is_verified is True
    assert creds.linked_at is not None


def test_later_bind_takes_chat_from_previous_owner(binding: BindingCoordinator, store, make_user) -> None:
    first = make_user()
    second = make_user()

    binding.bind(first.id, "chat-99")
    result = binding.bind(second.id, "chat-99")

    assert result.previous_owner_ids == (first.id,)
    assert store.find_user_by_chat_id("chat-99").id == second.id
    cleared = store.get_binding(first.id)
    assert cleared.telegram_chat_id is None
    assert cleared.is_verified is False


def test_rebinding_same_user_is_idempotent(binding: BindingCoordinator, store, make_user) -> None:
    user = make_user()

    binding.bind(user.id, "chat-5")
    result = binding.bind(user.id, "chat-5")

    assert result.previous_owner_ids == ()
    assert store.find_user_by_chat_id("chat-5").id == user.id


def test_bind_to_new_chat_replaces_own_previous_chat(binding: BindingCoordinator, store, make_user) -> None:
    user = make_user()

    binding.bind(user.id, "chat-old")
    binding.bind(user.id, "chat-new")

    assert store.find_user_by_chat_id("chat-old") is None
    assert store.find_user_by_chat_id("chat-new").id == user.id


def test_numeric_chat_ids_are_stored_as_strings(binding: BindingCoordinator, store, make_user) -> None:
    user = make_user()

    result = binding.bind(user.id, 123456789)

    assert result.chat_id == "123456789"
    assert store.find_user_by_chat_id("123456789").id == user.id


def test_empty_chat_id_is_rejected(binding: BindingCoordinator, make_user) -> None:
    user = make_user()

    with pytest.raises(ValueError):
        binding.bind(user.id, "  ")


def test_conflict_retries_assignment_once() -> None:
    store = _ConflictingStoreStub(conflicts=1)
    coordinator = BindingCoordinator(store, clock=_clock)

    result = coordinator.bind(1, "chat-99")

    assert result.retried is True
    assert result.previous_owner_ids == (7,)
    assert len(store.assign_calls) == 2
    assert store.assign_calls[0]["chat_id"] == store.assign_calls[1]["chat_id"] == "chat-99"


def test_conflict_after_retry_raises_binding_conflict() -> None:
    store = _ConflictingStoreStub(conflicts=2)
    coordinator = BindingCoordinator(store, clock=_clock)

    with pytest.raises(BindingConflict) as exc_info:
        coordinator.bind(1, "chat-99")

    assert exc_info.value.code == "BINDING_CONFLICT"
    assert exc_info.value.http_status == 500
    assert len(store.assign_calls) == 2


def test_revoke_is_idempotent(binding: BindingCoordinator, store, make_user) -> None:
    user = make_user()
    binding.bind(user.id, "chat-1")

    binding.revoke(user.id)
    binding.revoke(user.id)

    creds = store.get_binding(user.id)
    assert creds.telegram_chat_id is None
    assert creds.is_verified is False
    assert store.find_user_by_chat_id("chat-1") is None


def test_revoked_chat_can_be_bound_by_another_user(binding: BindingCoordinator, store, make_user) -> None:
    first = make_user()
    second = make_user()
    binding.bind(first.id, "chat-1")
    binding.revoke(first.id)

    result = binding.bind(second.id, "chat-1")

    assert result.previous_owner_ids == ()
    assert store.find_user_by_chat_id("chat-1").id == second.id
