"""SQLite-backed identity store for users and their credentials."""
from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator, List, Optional

from .deadlines import Deadline
from .errors import (
    DuplicateIdentity,
    InvalidRequest,
    OrphanCredential,
    RequestTimeout,
    StoreUnavailable,
)
from .models import DEFAULT_ROLE, Credential, User

logger = logging.getLogger("userservice.database")

DEFAULT_BUSY_TIMEOUT = 5.0

# How many SQLite VM instructions run between deadline checks.
_PROGRESS_INTERVAL = 1000

# Range of SQLite's signed 64-bit INTEGER. Ids outside it were never issued.
_MIN_ROW_ID = -(2**63)
_MAX_ROW_ID = 2**63 - 1


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


def _parse_datetime(value: str) -> datetime:
    return datetime.fromisoformat(value)


def normalize_email(email: Optional[str]) -> str:
    """Return the canonical form of ``email`` used as the unique key."""

    normalized = (email or "").strip().lower()
    if not normalized:
        raise InvalidRequest("Email must not be empty")
    return normalized


def _clean_optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    stripped = value.strip()
    return stripped or None


@contextmanager
def _translate_store_errors(deadline: Optional[Deadline]) -> Iterator[None]:
    try:
        yield
    except sqlite3.OperationalError as exc:
        if deadline is not None and deadline.expired():
            raise RequestTimeout("Identity store did not respond before the deadline") from exc
        logger.error("Identity store operation failed: %s", exc)
        raise StoreUnavailable() from exc
    except sqlite3.DatabaseError as exc:
        logger.error("Identity store error: %s", exc)
        raise StoreUnavailable() from exc


class IdentityTransaction:
    """Write operations that commit or roll back together."""

    def __init__(self, conn: sqlite3.Connection, *, clock: Callable[[], datetime]) -> None:
        self._conn = conn
        self._clock = clock

    def create_user(self, name: Optional[str], email: str, phone: Optional[str]) -> User:
        normalized_email = normalize_email(email)
        cleaned_name = _clean_optional(name)
        cleaned_phone = _clean_optional(phone)
        created_at = self._clock()

        try:
            cursor = self._conn.execute(
                "INSERT INTO users (name, email, phone, created_at) VALUES (?, ?, ?, ?)",
                (cleaned_name, normalized_email, cleaned_phone, _serialize_datetime(created_at)),
            )
        except sqlite3.IntegrityError as exc:
            raise DuplicateIdentity() from exc

        return User(
            id=int(cursor.lastrowid),
            name=cleaned_name,
            email=normalized_email,
            phone=cleaned_phone,
            created_at=created_at,
        )

    def create_credential(self, user_id: int, password_hash: str, role: str = DEFAULT_ROLE) -> Credential:
        if not password_hash:
            raise ValueError("Password hash must not be empty")
        created_at = self._clock()

        try:
            cursor = self._conn.execute(
                "INSERT INTO credentials (user_id, password_hash, role, created_at) VALUES (?, ?, ?, ?)",
                (user_id, password_hash, role, _serialize_datetime(created_at)),
            )
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc).upper():
                raise OrphanCredential(f"User {user_id} does not exist") from exc
            raise DuplicateIdentity(f"User {user_id} already has a credential") from exc

        return Credential(
            id=int(cursor.lastrowid),
            user_id=user_id,
            password_hash=password_hash,
            role=role,
            created_at=created_at,
        )


class Database:
    """Simple wrapper around SQLite for persisting users and credentials.

    Every operation opens its own connection, so a single instance can be
    shared across request threads. Uniqueness of emails and the
    credential-to-user link are enforced by table constraints.
    """

    def __init__(
        self,
        path: Path,
        *,
        clock: Callable[[], datetime] = _current_timestamp,
        busy_timeout: float = DEFAULT_BUSY_TIMEOUT,
    ) -> None:
        _ensure_directory(path)
        self._path = path
        self._clock = clock
        self._busy_timeout = busy_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self, deadline: Optional[Deadline] = None) -> sqlite3.Connection:
        timeout = deadline.remaining() if deadline is not None else self._busy_timeout
        conn = sqlite3.connect(self._path, timeout=timeout, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        if deadline is not None:
            conn.set_progress_handler(lambda: 1 if deadline.expired() else 0, _PROGRESS_INTERVAL)
        return conn

    @contextmanager
    def _session(self, deadline: Optional[Deadline] = None) -> Iterator[sqlite3.Connection]:
        if deadline is not None:
            deadline.check("identity store access")
        with _translate_store_errors(deadline):
            conn = self._connect(deadline)
            try:
                with conn:
                    yield conn
            finally:
                conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._session() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    name TEXT,
                    email TEXT NOT NULL UNIQUE,
                    phone TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS credentials (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id INTEGER NOT NULL UNIQUE REFERENCES users(id) ON DELETE CASCADE,
                    password_hash TEXT NOT NULL,
                    role TEXT NOT NULL DEFAULT 'USER',
                    created_at TEXT NOT NULL
                );
                """
            )

    @contextmanager
    def transaction(self, deadline: Optional[Deadline] = None) -> Iterator[IdentityTransaction]:
        """Yield an :class:`IdentityTransaction` that commits only if the block succeeds."""

        with self._session(deadline) as conn:
            # Take the write lock up front so concurrent writers queue on the busy timeout.
            conn.execute("BEGIN IMMEDIATE")
            yield IdentityTransaction(conn, clock=self._clock)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def create_user(self, name: Optional[str], email: str, phone: Optional[str] = None) -> User:
        with self.transaction() as tx:
            return tx.create_user(name, email, phone)

    def get_user(self, user_id: int, *, deadline: Optional[Deadline] = None) -> Optional[User]:
        if not _MIN_ROW_ID <= user_id <= _MAX_ROW_ID:
            return None
        with self._session(deadline) as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def get_user_by_email(self, email: str, *, deadline: Optional[Deadline] = None) -> Optional[User]:
        with self._session(deadline) as conn:
            row = conn.execute(
                "SELECT * FROM users WHERE email = ?",
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    def list_users(self, *, deadline: Optional[Deadline] = None) -> List[User]:
        with self._session(deadline) as conn:
            rows = conn.execute("SELECT * FROM users ORDER BY id").fetchall()
        return [self._row_to_user(row) for row in rows]

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------
    def create_credential(self, user_id: int, password_hash: str, role: str = DEFAULT_ROLE) -> Credential:
        with self.transaction() as tx:
            return tx.create_credential(user_id, password_hash, role)

    def get_credential_by_user_email(
        self,
        email: str,
        *,
        deadline: Optional[Deadline] = None,
    ) -> Optional[Credential]:
        """Look up the credential belonging to the user registered under ``email``."""

        with self._session(deadline) as conn:
            row = conn.execute(
                """
                SELECT credentials.*
                  FROM credentials
                  JOIN users ON users.id = credentials.user_id
                 WHERE users.email = ?
                """,
                (normalize_email(email),),
            ).fetchone()
        if row is None:
            return None
        return self._row_to_credential(row)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _row_to_user(self, row: sqlite3.Row) -> User:
        return User(
            id=int(row["id"]),
            name=row["name"],
            email=str(row["email"]),
            phone=row["phone"],
            created_at=_parse_datetime(str(row["created_at"])),
        )

    def _row_to_credential(self, row: sqlite3.Row) -> Credential:
        return Credential(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            password_hash=str(row["password_hash"]),
            role=str(row["role"]),
            created_at=_parse_datetime(str(row["created_at"])),
        )


__all__ = ["Database", "IdentityTransaction", "normalize_email"]
