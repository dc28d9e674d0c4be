"""Behavioural tests for registration and login orchestration."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict
from pathlib import Path

import pytest

from userservice.database import Database, IdentityTransaction
from userservice.errors import (
    AuthenticationFailed,
    ConfigurationError,
    DuplicateIdentity,
    InfrastructureError,
    InvalidRequest,
    InvalidToken,
    NotFound,
    OrphanCredential,
    RequestTimeout,
)
from userservice.passwords import PasswordHasher
from userservice.service import AuthService
from userservice.tokens import TokenIssuer


class SlowHasher(PasswordHasher):
    def hash(self, password: str) -> str:
        time.sleep(0.2)
        return super().hash(password)


class SlowVerifier(PasswordHasher):
    def verify(self, password: str, password_hash: str) -> bool:
        time.sleep(0.3)
        return super().verify(password, password_hash)


def _build_service(
    tmp_path: Path,
    *,
    hasher: PasswordHasher | None = None,
    with_issuer: bool = True,
) -> AuthService:
    database = Database(tmp_path / "users.sqlite3")
    database.initialize()
    return AuthService(
        database,
        hasher or PasswordHasher(rounds=1000),
        TokenIssuer("tests-signing-secret") if with_issuer else None,
    )


@pytest.fixture()
def service(tmp_path: Path) -> AuthService:
    return _build_service(tmp_path)


@pytest.fixture()
def registered(service: AuthService):
    return service.register("Ann", "ann@x.com", "555-0001", "pw123")


def test_register_returns_user_without_secrets(registered) -> None:
    assert registered.id is not None
    assert registered.created_at is not None
    assert registered.name == "Ann"
    assert registered.phone == "555-0001"
    assert not hasattr(registered, "password_hash")
    for value in asdict(registered).values():
        assert "pw123" not in str(value)
        assert "pbkdf2" not in str(value)


def test_register_stores_hash_not_password(service: AuthService, registered) -> None:
    credential = service._store.get_credential_by_user_email("ann@x.com")

    assert credential is not None
    assert credential.user_id == registered.id
    assert credential.role == "USER"
    assert credential.password_hash != "pw123"
    assert PasswordHasher().verify("pw123", credential.password_hash)


def test_register_duplicate_email_fails(service: AuthService, registered) -> None:
    with pytest.raises(DuplicateIdentity):
        service.register("Ann", "ann@x.com", "555-0002", "other")

    assert service.login("ann@x.com", "pw123")
    with pytest.raises(AuthenticationFailed):
        service.login("ann@x.com", "other")


@pytest.mark.parametrize(
    "email, password",
    [(None, "pw"), ("", "pw"), ("   ", "pw"), ("a@x.com", None), ("a@x.com", ""), ("a@x.com", "  ")],
)
def test_register_requires_email_and_password(service: AuthService, email, password) -> None:
    with pytest.raises(InvalidRequest):
        service.register("Ann", email, None, password)
    assert service.list_users() == []


def test_register_accepts_missing_optional_fields(service: AuthService) -> None:
    user = service.register(None, "bare@x.com", None, "pw123")

    assert user.name is None
    assert user.phone is None


def test_login_returns_token_for_subject(service: AuthService, registered) -> None:
    token = service.login("ann@x.com", "pw123")

    assert isinstance(token, str) and token
    claims = service.issuer.verify(token)
    assert claims.subject == "ann@x.com"
    assert claims.user_id == registered.id
    assert claims.role == "USER"


def test_login_tokens_are_fresh(service: AuthService, registered) -> None:
    assert service.login("ann@x.com", "pw123") != service.login("ann@x.com", "pw123")


def test_unknown_email_and_wrong_password_are_indistinguishable(service: AuthService, registered) -> None:
    with pytest.raises(AuthenticationFailed) as wrong_password:
        service.login("ann@x.com", "wrongpw")
    with pytest.raises(AuthenticationFailed) as unknown_email:
        service.login("nobody@x.com", "anything")

    assert type(wrong_password.value) is type(unknown_email.value)
    assert str(wrong_password.value) == str(unknown_email.value)


def test_user_without_credential_is_logged_as_anomaly(service: AuthService, caplog) -> None:
    user = service._store.create_user("Ghost", "ghost@x.com")
    caplog.set_level(logging.ERROR, logger="userservice.service")

    with pytest.raises(AuthenticationFailed) as exc_info:
        service.login("ghost@x.com", "pw123")

    assert str(exc_info.value) == str(AuthenticationFailed())
    assert f"user {user.id} has no credential" in caplog.text


def test_login_requires_fields(service: AuthService) -> None:
    with pytest.raises(InvalidRequest):
        service.login(None, "pw")
    with pytest.raises(InvalidRequest):
        service.login("ann@x.com", "")


def test_failed_credential_creation_leaves_no_user(service: AuthService, monkeypatch) -> None:
    def broken_create_credential(self, user_id, password_hash, role="USER"):
        raise RuntimeError("disk full")

    monkeypatch.setattr(IdentityTransaction, "create_credential", broken_create_credential)

    with pytest.raises(InfrastructureError):
        service.register("Ann", "ann@x.com", "555-0001", "pw123")

    assert service._store.get_user_by_email("ann@x.com") is None
    assert service.list_users() == []


def test_orphan_credential_error_passes_through(service: AuthService, monkeypatch) -> None:
    def orphan(self, user_id, password_hash, role="USER"):
        raise OrphanCredential()

    monkeypatch.setattr(IdentityTransaction, "create_credential", orphan)

    with pytest.raises(OrphanCredential):
        service.register("Ann", "ann@x.com", None, "pw123")
    assert service.list_users() == []


def test_register_past_deadline_writes_nothing(tmp_path: Path) -> None:
    service = _build_service(tmp_path, hasher=SlowHasher(rounds=1000))

    with pytest.raises(RequestTimeout):
        service.register("Ann", "ann@x.com", None, "pw123", timeout=0.05)

    assert service.list_users() == []
    registered = service.register("Ann", "ann@x.com", None, "pw123", timeout=5)
    assert registered.email == "ann@x.com"


def test_concurrent_registrations_for_same_email(service: AuthService) -> None:
    attempts = 6
    barrier = threading.Barrier(attempts)

    def attempt(index: int) -> str:
        barrier.wait()
        try:
            service.register(f"Ann {index}", "ann@x.com", None, f"pw-{index}")
        except DuplicateIdentity:
            return "duplicate"
        return "created"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes.count("created") == 1
    assert outcomes.count("duplicate") == attempts - 1
    assert len(service.list_users()) == 1


def test_slow_hashing_does_not_block_other_registrations(tmp_path: Path) -> None:
    service = _build_service(tmp_path, hasher=SlowHasher(rounds=1000))
    attempts = 4
    barrier = threading.Barrier(attempts)

    def attempt(index: int) -> str:
        barrier.wait()
        try:
            service.register(f"User {index}", f"user{index}@x.com", None, f"pw-{index}", timeout=0.6)
        except RequestTimeout:
            return "timeout"
        return "created"

    with ThreadPoolExecutor(max_workers=attempts) as pool:
        outcomes = list(pool.map(attempt, range(attempts)))

    assert outcomes == ["created"] * attempts
    assert len(service.list_users()) == attempts


def test_login_past_deadline_after_verification_times_out(tmp_path: Path) -> None:
    service = _build_service(tmp_path, hasher=SlowVerifier(rounds=1000))
    service.register("Ann", "ann@x.com", None, "pw123")

    with pytest.raises(RequestTimeout):
        service.login("ann@x.com", "pw123", timeout=0.15)

    assert service.login("ann@x.com", "pw123", timeout=5)


def test_registration_without_token_issuer(tmp_path: Path) -> None:
    service = _build_service(tmp_path, with_issuer=False)

    user = service.register("Ann", "ann@x.com", None, "pw123")

    assert service.get_user(user.id) == user
    with pytest.raises(ConfigurationError):
        service.login("ann@x.com", "pw123")


def test_get_user_and_list_users(service: AuthService, registered) -> None:
    assert service.get_user(registered.id) == registered
    assert service.list_users() == [registered]

    with pytest.raises(NotFound):
        service.get_user(registered.id + 1000)
    with pytest.raises(NotFound):
        service.get_user(2**63)


def test_authenticate_resolves_token_to_user(service: AuthService, registered) -> None:
    token = service.login("ann@x.com", "pw123")

    assert service.authenticate(token) == registered

    with pytest.raises(InvalidToken):
        service.authenticate(token + "x")


def test_authenticate_rejects_token_for_unknown_subject(service: AuthService) -> None:
    token = service.issuer.issue("nobody@x.com", user_id=99)

    with pytest.raises(AuthenticationFailed):
        service.authenticate(token)
