"""Application-wide configuration helpers and constants."""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Final
from urllib.parse import quote_plus

from dotenv import load_dotenv

BASE_DIR: Final[Path] = Path(__file__).resolve().parent

load_dotenv(BASE_DIR / ".env")


logger = logging.getLogger(__name__)


def _clean_text(value: str | None) -> str:
    """Return ``value`` stripped of surrounding whitespace."""

    if value is None:
        return ""
    return value.strip()


def _path_from(env_value: str | None, default: str | Path) -> Path:
    """Resolve a filesystem path using an environment override when provided."""

    text = _clean_text(env_value)
    candidate = Path(text) if text else Path(default)
    candidate = candidate.expanduser()
    if candidate.is_absolute():
        try:
            return candidate.resolve()
        except (OSError, RuntimeError):  # pragma: no cover - fallback for exotic paths
            return candidate
    return candidate


def _coerce_positive_float(value: str | None, default: float) -> float:
    """Return ``value`` coerced to a positive float or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = float(text)
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_positive_int(value: str | None, default: int) -> int:
    """Return ``value`` coerced to a positive integer or ``default`` when invalid."""

    text = _clean_text(value)
    if not text:
        return default
    try:
        numeric = int(float(text))
    except (TypeError, ValueError):
        return default
    return numeric if numeric > 0 else default


def _coerce_flag(value: str | None, default: bool) -> bool:
    """Return ``True``/``False`` for affirmative/negative flags, else ``default``."""

    if value is None:
        return default
    text = value.strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return default


LOG_DIR_PATH: Final[Path] = _path_from(os.environ.get("LOG_DIR"), BASE_DIR / "logs")
LOG_DIR: Final[str] = os.fspath(LOG_DIR_PATH)
LOG_FILE_PATH: Final[Path] = _path_from(
    os.environ.get("LOG_FILE"), LOG_DIR_PATH / "app.log"
)
LOG_FILE: Final[str] = os.fspath(LOG_FILE_PATH)

MEDIA_DIR_PATH: Final[Path] = _path_from(os.environ.get("MEDIA_DIR"), BASE_DIR / "media")
MEDIA_DIR: Final[str] = os.fspath(MEDIA_DIR_PATH)
MEDIA_URL_PREFIX: Final[str] = _clean_text(os.environ.get("MEDIA_URL_PREFIX")) or "/media"
MAX_UPLOAD_BYTES: Final[int] = (
    _coerce_positive_int(os.environ.get("MAX_UPLOAD_MB"), 10) * 1024 * 1024
)

DATABASE_URL: Final[str] = _clean_text(os.environ.get("DATABASE_URL"))
DB_HOST: Final[str] = _clean_text(os.environ.get("DB_HOST")) or "localhost"
DB_PORT: Final[int] = _coerce_positive_int(os.environ.get("DB_PORT"), 5432)
DB_NAME: Final[str] = _clean_text(os.environ.get("DB_NAME")) or "codes_admin"
DB_USER: Final[str] = _clean_text(os.environ.get("DB_USER"))
DB_PASSWORD: Final[str] = _clean_text(os.environ.get("DB_PASSWORD"))


def _build_db_dsn() -> str:
    """Return a database DSN constructed from environment configuration."""

    if DATABASE_URL:
        return DATABASE_URL

    postgres_overrides = {
        key: _clean_text(os.environ.get(key))
        for key in ("DB_HOST", "DB_PORT", "DB_NAME", "DB_USER", "DB_PASSWORD")
    }
    if any(value for value in postgres_overrides.values()):
        auth = ""
        if DB_USER:
            password = quote_plus(DB_PASSWORD) if DB_PASSWORD else ""
            auth = DB_USER
            if password:
                auth = f"{auth}:{password}"
            auth = f"{auth}@"
        return f"postgresql+psycopg://{auth}{DB_HOST}:{DB_PORT}/{DB_NAME}"

    sqlite_path = _path_from(None, BASE_DIR / "codes_admin.db").resolve()
    return f"sqlite:///{sqlite_path.as_posix()}"


DB_DSN: Final[str] = _build_db_dsn()

DB_CONNECT_TIMEOUT_SECONDS: Final[float] = _coerce_positive_float(
    os.environ.get("DB_CONNECT_TIMEOUT"), 10.0
)
RUN_DB_MIGRATIONS: Final[bool] = _coerce_flag(
    os.environ.get("RUN_DB_MIGRATIONS"), True
)

APP_SECRET_KEY: Final[str] = _clean_text(os.environ.get("APP_SECRET_KEY")) or "dev-secret"
APP_PASSWORD: Final[str] = _clean_text(os.environ.get("APP_PASSWORD")) or "password"


def _validate_settings() -> None:
    """Sanity-check critical configuration values."""

    if not APP_SECRET_KEY:
        raise RuntimeError("APP_SECRET_KEY must not be empty")
    if not APP_PASSWORD:
        raise RuntimeError("APP_PASSWORD must not be empty")
    if APP_PASSWORD == "password":
        logger.warning("APP_PASSWORD is not set; using the development default.")


_validate_settings()


__all__ = [
    "APP_PASSWORD",
    "APP_SECRET_KEY",
    "BASE_DIR",
    "DATABASE_URL",
    "DB_CONNECT_TIMEOUT_SECONDS",
    "DB_DSN",
    "DB_HOST",
    "DB_NAME",
    "DB_PASSWORD",
    "DB_PORT",
    "DB_USER",
    "LOG_DIR",
    "LOG_DIR_PATH",
    "LOG_FILE",
    "LOG_FILE_PATH",
    "MAX_UPLOAD_BYTES",
    "MEDIA_DIR",
    "MEDIA_DIR_PATH",
    "MEDIA_URL_PREFIX",
    "RUN_DB_MIGRATIONS",
]
