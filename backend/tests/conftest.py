from __future__ import annotations

import os

# Settings are read at import time; tests never touch a real database or bot.
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from tgauth import models  # noqa: F401  (registers tables on Base.metadata)
from tgauth.auth import SessionTokens
from tgauth.config import KeyMaterial, Settings
from tgauth.database import Base
from tgauth.services.credential_store import CredentialStore
from tgauth.services.indexer import DeterministicIndexer
from tgauth.services.secret_hasher import SecretHasher
from tgauth.services.telegram import TelegramMessenger
from tgauth.use_cases.auth_flows import AuthOrchestrator
from tgauth.use_cases.binding import BindingCoordinator
from tgauth.use_cases.secret_lifecycle import SecretLifecycle

TEST_KEYS = KeyMaterial(signing_secret="test-jwt-secret", index_secret="test-index-secret")
DEFAULT_PASSWORD = "correct-horse-battery"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingMessenger(TelegramMessenger):
    """Messenger that records outbound messages instead of calling the Bot API."""

    def __init__(self, *, deliver: bool = True) -> None:
        super().__init__("test-bot-token", bot_username="tgauth_test_bot")
        self.deliver = deliver
        self.sent: list[tuple[str, str]] = []

    def send_message(self, chat_id: str, text: str) -> bool:
        self.sent.append((chat_id, text))
        return self.deliver


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def store(session_factory) -> CredentialStore:
    return CredentialStore(session_factory)


@pytest.fixture
def hasher() -> SecretHasher:
    # Minimum bcrypt cost keeps the suite fast.
    return SecretHasher(rounds=4)


@pytest.fixture
def indexer() -> DeterministicIndexer:
    return DeterministicIndexer(TEST_KEYS.index_secret)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def lifecycle(store, hasher, indexer, clock) -> SecretLifecycle:
    return SecretLifecycle(store, hasher, indexer, clock=clock)


@pytest.fixture
def binding(store, clock) -> BindingCoordinator:
    return BindingCoordinator(store, clock=clock)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        JWT_SECRET_KEY=TEST_KEYS.signing_secret,
        HMAC_SECRET=TEST_KEYS.index_secret,
        BCRYPT_ROUNDS=4,
        DEBUG_OTP=True,
        TELEGRAM_BOT_TOKEN="test-bot-token",
        TELEGRAM_BOT_USERNAME="tgauth_test_bot",
    )


@pytest.fixture
def messenger() -> RecordingMessenger:
    return RecordingMessenger()


@pytest.fixture
def sessions() -> SessionTokens:
    return SessionTokens(TEST_KEYS)


@pytest.fixture
def orchestrator(store, hasher, lifecycle, binding, sessions, messenger, test_settings) -> AuthOrchestrator:
    return AuthOrchestrator(
        store=store,
        hasher=hasher,
        lifecycle=lifecycle,
        binding=binding,
        sessions=sessions,
        messenger=messenger,
        settings=test_settings,
    )


@pytest.fixture
def make_user(store, hasher):
    counter = {"n": 0}

    def _make(*, email: str | None = None, username: str | None = None, password: str = DEFAULT_PASSWORD):
        counter["n"] += 1
        n = counter["n"]
        return store.create_user(
            email=email or f"user{n}@example.com",
            username=username or f"user{n}",
            password_hash=hasher.hash(password),
        )

    return _make
