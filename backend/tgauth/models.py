"""SQLAlchemy models for users, Telegram bindings and single-use secrets."""
from sqlalchemy import (
    Boolean, Column, String, Integer, DateTime,
    ForeignKey, CheckConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from .database import Base


OTP_CONTEXTS = ("login", "sensitive", "telegram_change")


class User(Base):
    """User model."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    # Relationships
    telegram = relationship("TelegramCredentials", back_populates="user", uselist=False)


class TelegramCredentials(Base):
    """External Telegram identity bound to a user (one row per user, chat id optional)."""
    __tablename__ = "telegram_credentials"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    # NULL when unlinked; at most one user may hold a given chat id.
    telegram_chat_id = Column(String(64), unique=True, nullable=True)
    telegram_username = Column(String(255), nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    linked_at = Column(DateTime(timezone=True), nullable=True)

    # Relationships
    user = relationship("User", back_populates="telegram")


class OTPRequest(Base):
    """One-time login/confirmation code challenge."""
    __tablename__ = "otp_requests"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    otp_hash = Column(String(255), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    context = Column(String(32), nullable=False, default="login")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(context.in_(OTP_CONTEXTS), name="chk_otp_context"),
    )


class LinkToken(Base):
    """Telegram link token for /start <token> flow."""
    __tablename__ = "link_tokens"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(255), nullable=False)
    # Keyed HMAC of the plaintext, lookup key only.
    token_hmac = Column(String(64), nullable=True, index=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_link_tokens_active", "used", "expires_at"),
    )


class RecoveryCode(Base):
    """Single-use recovery code, issued in a batch on first Telegram link."""
    __tablename__ = "recovery_codes"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code_hash = Column(String(255), nullable=False)
    code_hmac = Column(String(64), nullable=True, index=True)
    used = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
