from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import IntegrityError

from tgauth.models import User
from tgauth.services.credential_store import CredentialStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_create_user_adds_empty_binding_row(store: CredentialStore, make_user) -> None:
    user = make_user(email="alice@example.com", username="alice")

    binding = store.get_binding(user.id)
    assert binding is not None
    assert binding.telegram_chat_id is None
    assert binding.is_verified is False
    assert store.find_user_by_identifier("alice@example.com").id == user.id
    assert store.find_user_by_identifier("alice").id == user.id
    assert store.find_user_by_identifier("bob") is None


def test_duplicate_user_raises_integrity_error_and_leaves_no_partial_rows(
    store: CredentialStore, make_user
) -> None:
    make_user(email="alice@example.com", username="alice")

    with pytest.raises(IntegrityError):
        store.create_user(email="alice@example.com", username="alice2", password_hash="x")

    assert store.find_user_by_identifier("alice2") is None


def test_mark_otp_used_succeeds_exactly_once(store: CredentialStore, make_user) -> None:
    user = make_user()
    otp = store.create_otp(user_id=user.id, otp_hash="digest", expires_at=NOW, context="login")

    assert store.mark_otp_used(otp.id) is True
    assert store.mark_otp_used(otp.id) is False
    assert store.get_otp(otp.id).used is True


def test_mark_used_on_unknown_row_is_false(store: CredentialStore) -> None:
    assert store.mark_link_token_used(404) is False
    assert store.mark_recovery_code_used(404) is False


def test_assign_binding_moves_chat_id_in_one_step(store: CredentialStore, make_user) -> None:
    first = make_user()
    second = make_user()

    assert store.assign_binding(user_id=first.id, chat_id="chat-1", telegram_username="a", linked_at=NOW) == []
    previous = store.assign_binding(user_id=second.id, chat_id="chat-1", telegram_username="b", linked_at=NOW)

    assert previous == [first.id]
    first_binding = store.get_binding(first.id)
    assert first_binding.telegram_chat_id is None
    assert first_binding.telegram_username is None
    assert first_binding.is_verified is False
    assert first_binding.linked_at is None
    assert store.get_binding(second.id).telegram_chat_id == "chat-1"
    assert store.find_user_by_chat_id("chat-1").id == second.id


def test_find_user_by_chat_id_ignores_cleared_bindings(store: CredentialStore, make_user) -> None:
    user = make_user()
    store.assign_binding(user_id=user.id, chat_id="chat-2", telegram_username=None, linked_at=NOW)

    store.clear_binding(user.id)

    assert store.find_user_by_chat_id("chat-2") is None
    assert store.get_binding(user.id).is_verified is False


def test_assign_binding_inserts_missing_binding_row(store: CredentialStore, session_factory) -> None:
    with session_factory.begin() as db:
        user = User(email="legacy@example.com", username="legacy", password_hash="x", is_active=True)
        db.add(user)
        db.flush()
        user_id = user.id
    assert store.get_binding(user_id) is None

    assert store.assign_binding(user_id=user_id, chat_id="chat-4", telegram_username="lg", linked_at=NOW) == []

    creds = store.get_binding(user_id)
    assert creds.telegram_chat_id == "chat-4"
    assert creds.telegram_username == "lg"
    assert creds.is_verified is True


def test_assign_binding_rewrites_every_column_of_own_row(store: CredentialStore, make_user) -> None:
    owner = make_user()
    taker = make_user()
    store.assign_binding(user_id=owner.id, chat_id="chat-9", telegram_username="a", linked_at=NOW)
    store.assign_binding(user_id=taker.id, chat_id="chat-9", telegram_username="b", linked_at=NOW)

    # The previous owner rebinds the chat id its last-seen row still showed.
    previous = store.assign_binding(
        user_id=owner.id, chat_id="chat-9", telegram_username="a", linked_at=NOW + timedelta(minutes=1)
    )

    assert previous == [taker.id]
    creds = store.get_binding(owner.id)
    assert creds.telegram_chat_id == "chat-9"
    assert creds.is_verified is True
    cleared = store.get_binding(taker.id)
    assert (cleared.telegram_chat_id, cleared.telegram_username, cleared.is_verified, cleared.linked_at) == (
        None,
        None,
        False,
        None,
    )


def test_active_link_tokens_exclude_used_and_expired(store: CredentialStore, make_user) -> None:
    user = make_user()
    live = store.create_link_token(
        user_id=user.id, token_hash="h1", token_hmac="m1", expires_at=NOW + timedelta(minutes=5)
    )
    expired = store.create_link_token(
        user_id=user.id, token_hash="h2", token_hmac="m2", expires_at=NOW - timedelta(minutes=5)
    )
    spent = store.create_link_token(
        user_id=user.id, token_hash="h3", token_hmac="m3", expires_at=NOW + timedelta(minutes=5)
    )
    store.mark_link_token_used(spent.id)

    active_ids = [row.id for row in store.list_active_link_tokens(NOW)]

    assert active_ids == [live.id]
    assert expired.id not in active_ids
    assert [row.id for row in store.find_link_tokens_by_hmac("m2")] == [expired.id]


def test_recovery_code_counters(store: CredentialStore, make_user) -> None:
    user = make_user()
    assert store.has_recovery_codes(user.id) is False

    rows = store.add_recovery_codes(user.id, [("h1", "m1"), ("h2", "m2"), ("h3", "m3")])
    store.mark_recovery_code_used(rows[0].id)

    assert store.has_recovery_codes(user.id) is True
    assert store.count_unused_recovery_codes(user.id) == 2
    assert [row.id for row in store.list_unused_recovery_codes(user.id)] == [rows[1].id, rows[2].id]
    assert [row.id for row in store.find_recovery_codes_by_hmac(user.id, "m2")] == [rows[1].id]
    assert store.find_recovery_codes_by_hmac(user.id + 1, "m2") == []


def test_active_link_tokens_include_token_at_its_expiry_instant(store: CredentialStore, make_user) -> None:
    user = make_user()
    token = store.create_link_token(user_id=user.id, token_hash="h1", token_hmac="m1", expires_at=NOW)

    assert [row.id for row in store.list_active_link_tokens(NOW)] == [token.id]
    assert store.list_active_link_tokens(NOW + timedelta(microseconds=1)) == []
