"""Signed session tokens issued on successful login."""
from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from jose import JWTError, jwt

from .errors import ConfigurationError, InvalidToken

ALGORITHM = "HS256"
DEFAULT_ISSUER = "https://auth.local/"
DEFAULT_AUDIENCE = "user-service"
DEFAULT_TTL = timedelta(hours=24)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    """Decoded contents of a verified session token."""

    subject: str
    issued_at: datetime
    expires_at: datetime
    token_id: str
    user_id: Optional[int] = None
    role: Optional[str] = None


class TokenIssuer:
    """Create and verify HS256 JWTs bound to an issuer and audience.

    The signing key is fixed at construction and only ever read afterwards,
    so one issuer can serve every request concurrently.
    """

    def __init__(
        self,
        secret_key: Optional[str],
        *,
        issuer: str = DEFAULT_ISSUER,
        audience: str = DEFAULT_AUDIENCE,
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if not secret_key or not secret_key.strip():
            raise ConfigurationError("A token signing secret must be configured")
        if ttl <= timedelta(0):
            raise ConfigurationError("Token lifetime must be positive")
        self._secret_key = secret_key
        self._issuer = issuer
        self._audience = audience
        self._ttl = ttl
        self._clock = clock

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, subject: str, *, user_id: Optional[int] = None, role: Optional[str] = None) -> str:
        if not subject:
            raise ValueError("Token subject must not be empty")

        issued_at = self._clock()
        claims: Dict[str, Any] = {
            "sub": subject,
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + self._ttl).timestamp()),
            "iss": self._issuer,
            "aud": self._audience,
            "jti": secrets.token_urlsafe(16),
        }
        if user_id is not None:
            claims["uid"] = user_id
        if role is not None:
            claims["role"] = role
        return jwt.encode(claims, self._secret_key, algorithm=ALGORITHM)

    def verify(self, token: str) -> TokenClaims:
        """Decode ``token`` and return its claims, raising :class:`InvalidToken` on any failure."""

        if not token:
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[ALGORITHM],
                audience=self._audience,
                issuer=self._issuer,
            )
            return TokenClaims(
                subject=str(payload["sub"]),
                issued_at=datetime.fromtimestamp(int(payload["iat"]), tz=timezone.utc),
                expires_at=datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc),
                token_id=str(payload["jti"]),
                user_id=int(payload["uid"]) if payload.get("uid") is not None else None,
                role=payload.get("role"),
            )
        except (JWTError, KeyError, TypeError, ValueError) as exc:
            raise InvalidToken() from exc


__all__ = [
    "ALGORITHM",
    "DEFAULT_AUDIENCE",
    "DEFAULT_ISSUER",
    "DEFAULT_TTL",
    "TokenClaims",
    "TokenIssuer",
]
