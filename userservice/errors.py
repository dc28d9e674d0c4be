"""Error types raised by the user service."""
from __future__ import annotations


class UserServiceError(Exception):
    """Base class for every error the service surfaces to callers."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        return str(self)


class InvalidRequest(UserServiceError):
    """Raised when required input is missing or malformed."""

    status_code = 400
    default_message = "Invalid request"


class DuplicateIdentity(UserServiceError):
    """Raised when an email address is already registered."""

    status_code = 409
    default_message = "A user with that email already exists"


class AuthenticationFailed(UserServiceError):
    """Raised for every failed login, whatever the underlying cause."""

    status_code = 401
    default_message = "Invalid email or password"


class InvalidToken(AuthenticationFailed):
    """Raised when a session token is malformed, tampered with or expired."""

    default_message = "Invalid or expired token"


class NotFound(UserServiceError):
    status_code = 404
    default_message = "User not found"


class OrphanCredential(UserServiceError):
    """Raised when a credential would reference a user that does not exist."""

    status_code = 500
    default_message = "Credential must reference an existing user"


class InfrastructureError(UserServiceError):
    """Raised when the store, hasher or configuration fails."""

    status_code = 500
    default_message = "Internal server error"


class StoreUnavailable(InfrastructureError):
    status_code = 503
    default_message = "Identity store is unavailable"


class RequestTimeout(InfrastructureError):
    """Raised when a request exceeds its deadline. No partial write is kept."""

    status_code = 504
    default_message = "Request timed out"


class ConfigurationError(InfrastructureError):
    """Raised at startup when required configuration is absent or invalid."""

    default_message = "Service is misconfigured"


__all__ = [
    "AuthenticationFailed",
    "ConfigurationError",
    "DuplicateIdentity",
    "InfrastructureError",
    "InvalidRequest",
    "InvalidToken",
    "NotFound",
    "OrphanCredential",
    "RequestTimeout",
    "StoreUnavailable",
    "UserServiceError",
]
