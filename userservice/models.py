"""Domain models for registered identities and their credentials."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

DEFAULT_ROLE = "USER"


@dataclass(frozen=True)
class User:
    """Represents a registered identity. Never carries password material."""

    id: int
    name: Optional[str]
    email: str
    phone: Optional[str]
    created_at: datetime


@dataclass(frozen=True)
class Credential:
    """Secret material bound to exactly one :class:`User`."""

    id: int
    user_id: int
    password_hash: str = field(repr=False)
    role: str
    created_at: datetime


__all__ = ["Credential", "DEFAULT_ROLE", "User"]
