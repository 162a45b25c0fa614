"""Environment-driven settings for the SheetLedger service."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Final

from dotenv import load_dotenv

from .errors import ConfigurationError

LOG = logging.getLogger(__name__)

ENV_PRODUCTION: Final[str] = "production"
MIN_SESSION_SECRET_LENGTH: Final[int] = 32
DEFAULT_SQLITE_URL: Final[str] = "sqlite:///sheetledger.db"
DEFAULT_REDIRECT_URI: Final[str] = "http://localhost:8000/auth/google/callback"
_DEV_SESSION_SECRET: Final[str] = "development-only-session-secret-change-me"

MONTHS: Final[tuple[str, ...]] = (
    "January",
    "February",
    "March",
    "April",
    "May",
    "June",
    "July",
    "August",
    "September",
    "October",
    "November",
    "December",
)
DEFAULT_CATEGORIES: Final[tuple[str, ...]] = ("Food", "Transport", "Shopping", "Bills", "Other")
OAUTH_SCOPES: Final[tuple[str, ...]] = (
    "openid",
    "https://www.googleapis.com/auth/userinfo.email",
    "https://www.googleapis.com/auth/userinfo.profile",
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive.file",
)
TOKEN_URI: Final[str] = "https://oauth2.googleapis.com/token"

_REQUIRED_IN_PRODUCTION: Final[tuple[str, ...]] = (
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REDIRECT_URI",
    "SESSION_SECRET",
    "DATABASE_URL",
)


@dataclass(frozen=True, slots=True)
class Settings:
    """Process-wide configuration resolved once at startup."""

    environment: str = "development"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = DEFAULT_REDIRECT_URI
    session_secret: str = _DEV_SESSION_SECRET
    database_url: str = DEFAULT_SQLITE_URL
    year_min: int = 1900
    year_max: int = 2100
    session_max_age_days: int = 30
    log_level: str = "INFO"
    json_logs: bool = False
    port: int = 8000
    oauth_scopes: tuple[str, ...] = field(default=OAUTH_SCOPES)

    @property
    def is_production(self) -> bool:
        return self.environment == ENV_PRODUCTION

    @property
    def session_max_age(self) -> timedelta:
        return timedelta(days=self.session_max_age_days)

    def year_in_range(self, year: int) -> bool:
        return self.year_min <= year <= self.year_max


def _as_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from exc


def _as_bool(env: Mapping[str, str], key: str) -> bool:
    value = env.get(key)
    if value is None:
        return False
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build :class:`Settings` from ``environ`` (defaults to ``os.environ`` plus ``.env``).

    In production every variable listed in ``_REQUIRED_IN_PRODUCTION`` must be
    present and the session secret must be at least
    ``MIN_SESSION_SECRET_LENGTH`` characters long.

    Raises:
        ConfigurationError: If a required value is missing or malformed.
    """

    if environ is None:
        load_dotenv()
        environ = os.environ
    env = {key: value for key, value in environ.items() if value is not None}

    environment = env.get("SHEETLEDGER_ENV", "development").strip().lower() or "development"
    production = environment == ENV_PRODUCTION

    if production:
        missing = [key for key in _REQUIRED_IN_PRODUCTION if not env.get(key, "").strip()]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    session_secret = env.get("SESSION_SECRET", "").strip() or _DEV_SESSION_SECRET
    if len(session_secret) < MIN_SESSION_SECRET_LENGTH:
        if production:
            raise ConfigurationError(
                f"SESSION_SECRET must be at least {MIN_SESSION_SECRET_LENGTH} characters long"
            )
        LOG.warning("SESSION_SECRET is shorter than %d characters", MIN_SESSION_SECRET_LENGTH)

    settings = Settings(
        environment=environment,
        google_client_id=env.get("GOOGLE_CLIENT_ID", "").strip(),
        google_client_secret=env.get("GOOGLE_CLIENT_SECRET", "").strip(),
        google_redirect_uri=env.get("GOOGLE_REDIRECT_URI", "").strip() or DEFAULT_REDIRECT_URI,
        session_secret=session_secret,
        database_url=env.get("DATABASE_URL", "").strip() or DEFAULT_SQLITE_URL,
        year_min=_as_int(env, "SHEETLEDGER_YEAR_MIN", 1900),
        year_max=_as_int(env, "SHEETLEDGER_YEAR_MAX", 2100),
        session_max_age_days=_as_int(env, "SHEETLEDGER_SESSION_MAX_AGE_DAYS", 30),
        log_level=env.get("SHEETLEDGER_LOG_LEVEL", "INFO").strip().upper() or "INFO",
        json_logs=_as_bool(env, "SHEETLEDGER_JSON_LOGS"),
        port=_as_int(env, "PORT", 8000),
    )
    if settings.year_min > settings.year_max:
        raise ConfigurationError("SHEETLEDGER_YEAR_MIN must not exceed SHEETLEDGER_YEAR_MAX")
    return settings


__all__ = [
    "DEFAULT_CATEGORIES",
    "MONTHS",
    "OAUTH_SCOPES",
    "Settings",
    "TOKEN_URI",
    "load_settings",
]
