"""Database engine and session factory."""
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from .config import settings

Base = declarative_base()


def _create_engine(url: str) -> Engine:
    if url.startswith("sqlite"):
        # SQLite has no real pool; allow use from request worker threads.
        return create_engine(url, connect_args={"check_same_thread": False})
    return create_engine(
        url,
        pool_size=settings.DATABASE_POOL_SIZE,
        max_overflow=settings.DATABASE_MAX_OVERFLOW,
        pool_pre_ping=True,
    )


engine = _create_engine(settings.DATABASE_URL)

# One transaction per store verb; see services.credential_store.
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
