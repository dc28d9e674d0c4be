"""Configuration management for the user service."""
from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Dict, Mapping, Optional

import yaml

from .errors import ConfigurationError
from .passwords import DEFAULT_ROUNDS
from .tokens import DEFAULT_AUDIENCE, DEFAULT_ISSUER, DEFAULT_TTL

_ENV_PREFIX = "USERSERVICE_"

# Maps YAML keys to the environment variable that overrides them.
_ENV_KEYS = {
    "database_path": "DB_PATH",
    "token_secret": "TOKEN_SECRET",
    "token_issuer": "TOKEN_ISSUER",
    "token_audience": "TOKEN_AUDIENCE",
    "token_ttl_minutes": "TOKEN_TTL_MINUTES",
    "password_rounds": "PASSWORD_ROUNDS",
    "request_timeout": "REQUEST_TIMEOUT",
}


def resolve_database_path(value: Optional[str]) -> Path:
    """Resolve the on-disk path for the identity database."""

    if value:
        return Path(value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "users.sqlite3").resolve(strict=False)


def resolve_config_path(env_value: Optional[str]) -> Optional[Path]:
    """Resolve the optional YAML configuration file."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    candidate = (Path(__file__).resolve().parent.parent / "config" / "userservice.yaml").resolve(strict=False)
    return candidate if candidate.exists() else None


@dataclass(frozen=True)
class ServiceSettings:
    """Process-wide settings, loaded once at startup."""

    database_path: Path
    token_secret: Optional[str] = None
    token_issuer: str = DEFAULT_ISSUER
    token_audience: str = DEFAULT_AUDIENCE
    token_ttl: timedelta = DEFAULT_TTL
    password_rounds: int = DEFAULT_ROUNDS
    request_timeout: Optional[float] = 10.0

    @staticmethod
    def from_dict(data: Mapping[str, object], base_path: Path | None = None) -> "ServiceSettings":
        """Create :class:`ServiceSettings` from raw (string or YAML typed) values."""

        unknown = set(data.keys()) - set(_ENV_KEYS)
        if unknown:
            raise ConfigurationError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        raw_db_path = data.get("database_path")
        if raw_db_path:
            db_path = Path(str(raw_db_path)).expanduser()
            if not db_path.is_absolute() and base_path is not None:
                db_path = base_path / db_path
            database_path = db_path.resolve(strict=False)
        else:
            database_path = resolve_database_path(None)

        secret = data.get("token_secret")
        ttl_minutes = _positive_number(data, "token_ttl_minutes", DEFAULT_TTL.total_seconds() / 60)
        timeout_raw = data.get("request_timeout")
        if timeout_raw is not None and str(timeout_raw).strip().lower() in {"", "0", "none", "off"}:
            request_timeout: Optional[float] = None
        else:
            request_timeout = _positive_number(data, "request_timeout", 10.0)

        return ServiceSettings(
            database_path=database_path,
            token_secret=str(secret).strip() if secret else None,
            token_issuer=str(data.get("token_issuer") or DEFAULT_ISSUER),
            token_audience=str(data.get("token_audience") or DEFAULT_AUDIENCE),
            token_ttl=timedelta(minutes=ttl_minutes),
            password_rounds=int(_positive_number(data, "password_rounds", DEFAULT_ROUNDS)),
            request_timeout=request_timeout,
        )

    def require_token_secret(self) -> str:
        if not self.token_secret:
            raise ConfigurationError(
                f"Token signing secret is not configured. Set {_ENV_PREFIX}TOKEN_SECRET before starting the service."
            )
        return self.token_secret


def _positive_number(data: Mapping[str, object], key: str, default: float) -> float:
    raw = data.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(str(raw))
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be a number, got {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive")
    return value


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    config_path: Optional[Path] = None,
) -> ServiceSettings:
    """Load settings from an optional YAML file, overridden by environment variables."""

    env = os.environ if environ is None else environ
    if config_path is None:
        config_path = resolve_config_path(env.get(f"{_ENV_PREFIX}CONFIG"))

    values: Dict[str, object] = {}
    base_path: Path | None = None
    if config_path is not None:
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise ConfigurationError(f"Could not read configuration file {config_path}") from exc
        if not isinstance(raw, dict):
            raise ConfigurationError("Configuration file must contain a mapping")
        values.update(raw)
        base_path = config_path.parent

    for key, suffix in _ENV_KEYS.items():
        env_value = env.get(f"{_ENV_PREFIX}{suffix}")
        if env_value is not None:
            values[key] = env_value

    return ServiceSettings.from_dict(values, base_path=base_path)


__all__ = ["ServiceSettings", "load_settings", "resolve_config_path", "resolve_database_path"]
