"""Process wiring: build the auth components once from Settings."""
from functools import lru_cache

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from .auth import SessionTokens
from .config import Settings, load_key_material, settings
from .domain_errors import InvalidCredentials
from .services.credential_store import CredentialStore
from .services.indexer import DeterministicIndexer
from .services.secret_hasher import SecretHasher
from .services.telegram import TelegramMessenger
from .use_cases.auth_flows import AuthOrchestrator
from .use_cases.binding import BindingCoordinator
from .use_cases.secret_lifecycle import SecretLifecycle

# Bearer token scheme
security = HTTPBearer()


def build_messenger(cfg: Settings) -> TelegramMessenger:
    return TelegramMessenger(
        cfg.TELEGRAM_BOT_TOKEN,
        bot_username=cfg.TELEGRAM_BOT_USERNAME,
        api_base=cfg.TELEGRAM_API_BASE,
        timeout=cfg.TELEGRAM_SEND_TIMEOUT_SECONDS,
    )


def build_orchestrator(
    cfg: Settings,
    session_factory: sessionmaker[Session],
    *,
    messenger: TelegramMessenger | None = None,
) -> AuthOrchestrator:
    """Wire every component; raises NotConfigured if key material is missing."""
    keys = load_key_material(cfg)
    store = CredentialStore(session_factory)
    hasher = SecretHasher(rounds=cfg.BCRYPT_ROUNDS)
    lifecycle = SecretLifecycle(
        store,
        hasher,
        DeterministicIndexer(keys.index_secret),
        scan_fallback=cfg.LOOKUP_SCAN_FALLBACK,
    )
    return AuthOrchestrator(
        store=store,
        hasher=hasher,
        lifecycle=lifecycle,
        binding=BindingCoordinator(store),
        sessions=SessionTokens(
            keys,
            algorithm=cfg.JWT_ALGORITHM,
            expire_minutes=cfg.SESSION_TOKEN_EXPIRE_MINUTES,
        ),
        messenger=messenger or build_messenger(cfg),
        settings=cfg,
    )


@lru_cache()
def get_orchestrator() -> AuthOrchestrator:
    from .database import SessionLocal

    return build_orchestrator(settings, SessionLocal)


def get_current_user_id(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    orchestrator: AuthOrchestrator = Depends(get_orchestrator),
) -> int:
    """Get current authenticated user id."""
    user_id = orchestrator.sessions.decode(credentials.credentials)
    user = orchestrator.store.find_user_by_id(user_id)
    if user is None or not user.is_active:
        raise InvalidCredentials("User not found or inactive")
    return user.id
