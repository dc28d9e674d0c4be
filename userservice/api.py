"""FastAPI application exposing registration, login and user lookups."""
from __future__ import annotations

import logging
from datetime import datetime
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Tuple

import anyio
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, Field

from .config import ServiceSettings, load_settings
from .database import Database
from .errors import AuthenticationFailed, InvalidRequest, UserServiceError
from .models import User
from .service import AuthService, build_service

logger = logging.getLogger("userservice.api")


class RegisterRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=128)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=32)
    password: Optional[str] = Field(default=None, max_length=256)


class LoginRequest(BaseModel):
    email: Optional[str] = Field(default=None, max_length=255)
    password: Optional[str] = Field(default=None, max_length=256)


class UserResponse(BaseModel):
    id: int
    name: Optional[str]
    email: str
    phone: Optional[str]
    created_at: datetime


class LoginResponse(BaseModel):
    token: str
    token_type: str = "bearer"
    expires_in: int


def user_to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        created_at=user.created_at,
    )


def _error_response(exc: UserServiceError) -> JSONResponse:
    # Server-side failures never echo internal detail back to the caller.
    message = exc.message if exc.status_code < 500 else type(exc).default_message
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=exc.status_code, content={"detail": message}, headers=headers)


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return InvalidRequest.default_message
    first = errors[0]
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "path", "query")]
    field = ".".join(location) or "request"
    return f"{field}: {first.get('msg', 'invalid value')}"


def create_app(
    *,
    settings: ServiceSettings | None = None,
    database: Database | None = None,
    service: AuthService | None = None,
) -> FastAPI:
    """Build the HTTP application. Raises ``ConfigurationError`` if no signing secret is set."""

    if service is None:
        if settings is None:
            settings = load_settings()
        service = build_service(settings, database)

    app = FastAPI(
        title="User Service",
        description="Registration, login and session tokens for platform users",
        version="1.0.0",
    )
    app.state.service = service

    bearer_security = HTTPBearer(auto_error=False)

    async def current_user(
        credentials: HTTPAuthorizationCredentials | None = Depends(bearer_security),
    ) -> User:
        if credentials is None or credentials.scheme.lower() != "bearer":
            raise AuthenticationFailed("Missing bearer token")
        return await anyio.to_thread.run_sync(service.authenticate, credentials.credentials)

    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    async def register(payload: RegisterRequest) -> UserResponse:
        user = await anyio.to_thread.run_sync(
            partial(
                service.register,
                payload.name,
                payload.email,
                payload.phone,
                payload.password,
            )
        )
        return user_to_response(user)

    async def login(payload: LoginRequest) -> LoginResponse:
        token = await anyio.to_thread.run_sync(partial(service.login, payload.email, payload.password))
        return LoginResponse(token=token, expires_in=int(service.issuer.ttl.total_seconds()))

    async def list_users() -> List[UserResponse]:
        users = await anyio.to_thread.run_sync(service.list_users)
        return [user_to_response(user) for user in users]

    async def read_current_user(user: User = Depends(current_user)) -> UserResponse:
        return user_to_response(user)

    async def get_user(user_id: int) -> UserResponse:
        user = await anyio.to_thread.run_sync(service.get_user, user_id)
        return user_to_response(user)

    # Order matters: "/v1/users/me" must be matched before "/v1/users/{user_id}".
    routes: List[Tuple[str, str, Callable[..., Any], Dict[str, Any]]] = [
        ("GET", "/healthz", healthcheck, {}),
        (
            "POST",
            "/v1/users/register",
            register,
            {"response_model": UserResponse, "status_code": status.HTTP_201_CREATED},
        ),
        ("POST", "/v1/users/login", login, {"response_model": LoginResponse}),
        ("GET", "/v1/users", list_users, {"response_model": List[UserResponse]}),
        ("GET", "/v1/users/me", read_current_user, {"response_model": UserResponse}),
        ("GET", "/v1/users/{user_id}", get_user, {"response_model": UserResponse}),
    ]
    for method, path, endpoint, options in routes:
        app.add_api_route(path, endpoint, methods=[method], **options)

    @app.exception_handler(UserServiceError)
    async def handle_service_error(_: Request, exc: UserServiceError):
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError):
        return _error_response(InvalidRequest(_describe_validation_error(exc)))

    return app


__all__ = ["LoginRequest", "LoginResponse", "RegisterRequest", "UserResponse", "create_app", "user_to_response"]
