"""Session credentials (JWT) and password policy."""
import time

from jose import JWTError, jwt

from .config import KeyMaterial
from .domain_errors import InvalidCredentials, PasswordPolicyViolation


class SessionTokens:
    """Short-lived access tokens signed with the process signing secret."""

    def __init__(
        self,
        keys: KeyMaterial,
        *,
        algorithm: str = "HS256",
        expire_minutes: int = 60,
        leeway_seconds: int = 30,
    ) -> None:
        self._secret = keys.signing_secret
        self.algorithm = algorithm
        self.expire_minutes = expire_minutes
        self.leeway_seconds = leeway_seconds

    def issue(self, user_id: int) -> str:
        """Create JWT access token."""
        now = int(time.time())
        claims = {
            "sub": str(user_id),
            "iat": now,
            "exp": now + int(self.expire_minutes) * 60,
            "type": "access",
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def decode(self, token: str) -> int:
        """Validate an access token and return its subject id."""
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"leeway": self.leeway_seconds},
            )
        except JWTError:
            raise InvalidCredentials("Could not validate credentials")

        if payload.get("type") != "access":
            raise InvalidCredentials("Invalid token type")
        try:
            return int(payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise InvalidCredentials("Could not validate credentials")


def validate_new_password(
    *,
    new_password: str | None,
    username: str | None = None,
    min_length: int = 8,
    max_length: int = 256,
) -> None:
    """Server-side password policy validation."""
    if not new_password:
        raise PasswordPolicyViolation("Password is required")

    pwd = new_password.strip("\n")
    if len(pwd) < min_length:
        raise PasswordPolicyViolation(f"Password must be at least {min_length} characters")
    if len(pwd) > max_length:
        raise PasswordPolicyViolation(f"Password must be at most {max_length} characters")
    if username and pwd.lower() == username.lower():
        raise PasswordPolicyViolation("Password must not match username")
