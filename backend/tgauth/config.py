"""Application configuration."""
from dataclasses import dataclass
from functools import lru_cache

from pydantic_settings import BaseSettings

from .domain_errors import NotConfigured


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "tgauth"
    ENV: str = "development"
    DEBUG: bool = False
    ALLOWED_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Database
    DATABASE_URL: str = "sqlite:///./tgauth.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Session credential (JWT)
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    SESSION_TOKEN_EXPIRE_MINUTES: int = 60

    # Keyed lookup digests for link tokens / recovery codes.
    # Falls back to JWT_SECRET_KEY when unset; use a separate value in production.
    HMAC_SECRET: str | None = None

    # Salted hashing cost (bcrypt log2 rounds)
    BCRYPT_ROUNDS: int = 12

    # Password policy
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 256

    # Secret lifetimes
    OTP_TTL_SECONDS: int = 120
    LINK_TOKEN_TTL_SECONDS: int = 600
    RECOVERY_CODE_COUNT: int = 8

    # Scan candidates with verify() when the lookup digest yields 0 or >1 rows
    LOOKUP_SCAN_FALLBACK: bool = True

    # Echo issued OTPs in API responses (local development only)
    DEBUG_OTP: bool = False

    # Telegram
    TELEGRAM_BOT_TOKEN: str | None = None
    TELEGRAM_BOT_USERNAME: str | None = None
    TELEGRAM_WEBHOOK_SECRET: str | None = None
    TELEGRAM_API_BASE: str = "https://api.telegram.org"
    TELEGRAM_SEND_TIMEOUT_SECONDS: float = 10.0

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",") if origin.strip()]

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@dataclass(frozen=True)
class KeyMaterial:
    """Process-wide keying secrets, read-only after startup."""

    signing_secret: str
    index_secret: str


def load_key_material(cfg: Settings) -> KeyMaterial:
    """Build key material from settings or fail with NotConfigured."""
    signing = (cfg.JWT_SECRET_KEY or "").strip()
    if not signing:
        raise NotConfigured(message="JWT_SECRET_KEY is not configured")
    index = (cfg.HMAC_SECRET or "").strip() or signing
    return KeyMaterial(signing_secret=signing, index_secret=index)


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
