"""Registration and login orchestration for the user service."""

from __future__ import annotations

import logging
from typing import List, Optional

from .config import ServiceSettings
from .database import Database, normalize_email
from .deadlines import Deadline
from .errors import (
    AuthenticationFailed,
    ConfigurationError,
    InfrastructureError,
    InvalidRequest,
    NotFound,
    UserServiceError,
)
from .models import DEFAULT_ROLE, User
from .passwords import PasswordHasher
from .tokens import TokenIssuer

logger = logging.getLogger("userservice.service")


def _require(value: Optional[str], field: str) -> str:
    if value is None or not value.strip():
        raise InvalidRequest(f"{field} is required")
    return value


class AuthService:
    """Register identities, verify passwords and issue session tokens.

    The store, hasher and issuer are passed in explicitly so each can be
    replaced independently (for example a low-cost hasher in tests). Business
    errors propagate unchanged; any other failure from a collaborator is
    reported as :class:`InfrastructureError`.
    """

    def __init__(
        self,
        store: Database,
        hasher: PasswordHasher,
        issuer: Optional[TokenIssuer],
        *,
        default_role: str = DEFAULT_ROLE,
        default_timeout: Optional[float] = None,
    ) -> None:
        self._store = store
        self._hasher = hasher
        self._issuer = issuer
        self._default_role = default_role
        self._default_timeout = default_timeout

    @property
    def issuer(self) -> TokenIssuer:
        if self._issuer is None:
            raise ConfigurationError("Token issuing is not configured")
        return self._issuer

    def _deadline(self, timeout: Optional[float]) -> Optional[Deadline]:
        return Deadline.after(timeout if timeout is not None else self._default_timeout)

    def register(
        self,
        name: Optional[str],
        email: Optional[str],
        phone: Optional[str],
        password: Optional[str],
        *,
        timeout: Optional[float] = None,
    ) -> User:
        """Create a user and its credential atomically and return the user."""

        _require(email, "email")
        password = _require(password, "password")
        deadline = self._deadline(timeout)

        try:
            # Hash before taking the store's write lock; only the two inserts are serialised.
            password_hash = self._hasher.hash(password)
            if deadline is not None:
                deadline.check("password hashing")
            with self._store.transaction(deadline) as tx:
                user = tx.create_user(name, email, phone)
                tx.create_credential(user.id, password_hash, self._default_role)
        except UserServiceError:
            raise
        except Exception as exc:
            logger.exception("Registration failed for %s", normalize_email(email))
            raise InfrastructureError() from exc

        logger.info("Registered user %s", user.id)
        return user

    def login(
        self,
        email: Optional[str],
        password: Optional[str],
        *,
        timeout: Optional[float] = None,
    ) -> str:
        """Return a session token, or raise :class:`AuthenticationFailed`."""

        email = _require(email, "email")
        password = _require(password, "password")
        deadline = self._deadline(timeout)

        try:
            user = self._store.get_user_by_email(email, deadline=deadline)
            if user is None:
                self._hasher.dummy_verify()
                logger.warning("Failed login for unknown email %s", normalize_email(email))
                raise AuthenticationFailed()

            credential = self._store.get_credential_by_user_email(email, deadline=deadline)
            if credential is None:
                logger.error("Integrity anomaly: user %s has no credential", user.id)
                raise AuthenticationFailed()

            matches = self._hasher.verify(password, credential.password_hash)
            if deadline is not None:
                deadline.check("password verification")
            if not matches:
                logger.warning("Failed login for user %s: wrong password", user.id)
                raise AuthenticationFailed()

            token = self.issuer.issue(user.email, user_id=user.id, role=credential.role)
        except UserServiceError:
            raise
        except Exception as exc:
            logger.exception("Login failed unexpectedly")
            raise InfrastructureError() from exc

        logger.info("User %s logged in", user.id)
        return token

    def get_user(self, user_id: int, *, timeout: Optional[float] = None) -> User:
        user = self._store.get_user(user_id, deadline=self._deadline(timeout))
        if user is None:
            raise NotFound(f"User {user_id} not found")
        return user

    def list_users(self, *, timeout: Optional[float] = None) -> List[User]:
        return self._store.list_users(deadline=self._deadline(timeout))

    def authenticate(self, token: str, *, timeout: Optional[float] = None) -> User:
        """Resolve a bearer token to the user it was issued for."""

        claims = self.issuer.verify(token)
        user = self._store.get_user_by_email(claims.subject, deadline=self._deadline(timeout))
        if user is None or (claims.user_id is not None and claims.user_id != user.id):
            logger.warning("Token for %s no longer matches a registered user", claims.subject)
            raise AuthenticationFailed()
        return user


def build_service(
    settings: ServiceSettings,
    database: Optional[Database] = None,
    *,
    issue_tokens: bool = True,
) -> AuthService:
    """Wire an :class:`AuthService` from settings.

    Fails fast without a signing secret unless ``issue_tokens`` is false, as
    for command-line registration, where login and token checks are unused.
    """

    issuer = None
    if issue_tokens:
        issuer = TokenIssuer(
            settings.require_token_secret(),
            issuer=settings.token_issuer,
            audience=settings.token_audience,
            ttl=settings.token_ttl,
        )
    if database is None:
        database = Database(settings.database_path)
        database.initialize()
    return AuthService(
        database,
        PasswordHasher(rounds=settings.password_rounds),
        issuer,
        default_timeout=settings.request_timeout,
    )


__all__ = ["AuthService", "build_service"]
