"""Pydantic schemas for API."""
from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field


# Auth schemas
class RegisterRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    username: str = Field(min_length=3, max_length=100)
    password: str


class UserResponse(BaseModel):
    id: int
    email: str
    username: str


class RegisterResponse(BaseModel):
    user: UserResponse


class LoginRequest(BaseModel):
    identifier: str
    password: str


class OtpInitiateRequest(LoginRequest):
    context: Literal["login", "sensitive", "telegram_change"]


class OtpChallengeResponse(BaseModel):
    challengeId: int
    expires_at: datetime
    otpSent: bool
    debug_otp: Optional[str] = None


class VerifyOtpRequest(BaseModel):
    challengeId: int
    otp: str = Field(min_length=1, max_length=16)


class TokenResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


class RecoverRequest(BaseModel):
    identifier: str
    recovery_code: str = Field(min_length=1, max_length=64)


class OkResponse(BaseModel):
    ok: bool = True
    message: Optional[str] = None


# Telegram schemas
class LinkTokenResponse(BaseModel):
    """Response for link token generation."""
    link_token: str
    expires_at: datetime
    link_url: Optional[str] = None
