"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class FixedCodeError(DomainError):
    """DomainError whose code and status are fixed per subclass."""

    default_code = "DOMAIN_ERROR"
    default_status = 400
    default_message = "Domain error"

    def __init__(self, message: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            code=self.default_code,
            http_status=self.default_status,
            message=message or self.default_message,
            details=details,
        )


class SecretRejected(FixedCodeError):
    """Base for lifecycle rejections; never surfaced to end users individually."""


class NotFound(SecretRejected):
    default_code = "NOT_FOUND"
    default_message = "No matching record"


class AlreadyUsed(SecretRejected):
    default_code = "ALREADY_USED"
    default_message = "Secret already used"


class Expired(SecretRejected):
    default_code = "EXPIRED"
    default_message = "Secret expired"


class InvalidSecret(SecretRejected):
    default_code = "INVALID_SECRET"
    default_message = "Secret does not match"


class InvalidOrExpired(FixedCodeError):
    """Caller-facing outcome for every SecretRejected reason."""

    default_code = "INVALID_OR_EXPIRED"
    default_message = "Invalid or expired"


class InvalidCredentials(FixedCodeError):
    default_code = "INVALID_CREDENTIALS"
    default_status = 401
    default_message = "Invalid credentials"


class UserAlreadyExists(FixedCodeError):
    default_code = "USER_ALREADY_EXISTS"
    default_status = 409
    default_message = "User already exists"


class PasswordPolicyViolation(FixedCodeError):
    default_code = "PASSWORD_POLICY"
    default_message = "Password does not meet policy"


class BindingConflict(FixedCodeError):
    """Telegram chat id uniqueness could not be resolved after one retry."""

    default_code = "BINDING_CONFLICT"
    default_status = 500
    default_message = "Telegram binding conflict"


class NotConfigured(FixedCodeError):
    """Required keying material is missing at startup."""

    default_code = "NOT_CONFIGURED"
    default_status = 500
    default_message = "Required secret is not configured"
