"""
backend/config.py — Configuration classes for SplitPlus.

Everything is read from the environment (root .env first, backend/.env as a
fallback) at import time. The app factory picks a class by name from
config_by_name.

Settings that matter beyond Flask itself:
  STORE_BACKEND               sql | memory
  SHEET_SYNC_TIMEOUT_SECONDS  bound on every mirror HTTP call
  SHEET_SYNC_MAX_WORKERS      size of the background push pool
  JWT_ACCESS_TOKEN_EXPIRES    token lifetime in seconds
"""

import os
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv


_BACKEND_DIR = Path(__file__).resolve().parent
_PROJECT_ROOT = _BACKEND_DIR.parent

load_dotenv(_PROJECT_ROOT / ".env")
load_dotenv(_BACKEND_DIR / ".env")

_PLACEHOLDER_SECRET = "change-me-in-production"

STORE_BACKENDS = frozenset({"sql", "memory"})


def _env(*names: str, default: str) -> str:
    """First non-empty value among `names`, else `default`."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


def _env_int(*names: str, default: int) -> int:
    try:
        return int(_env(*names, default=str(default)))
    except ValueError:
        return default


def _token_lifetime() -> timedelta:
    # JWT_ACCESS_TOKEN_EXPIRES is seconds; the _MINUTES variant is kept for
    # older .env files.
    if os.getenv("JWT_ACCESS_TOKEN_EXPIRES"):
        return timedelta(seconds=_env_int("JWT_ACCESS_TOKEN_EXPIRES", default=900))
    if os.getenv("JWT_ACCESS_TOKEN_EXPIRES_MINUTES"):
        return timedelta(minutes=_env_int("JWT_ACCESS_TOKEN_EXPIRES_MINUTES", default=15))
    return timedelta(minutes=15)


def _normalise_db_url(url: str) -> str:
    # Hosted Postgres providers hand out postgres://, which SQLAlchemy rejects.
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


class BaseConfig:

    # SECRET_KEY and JWT_SECRET_KEY fall back to each other.
    SECRET_KEY: str = _env("SECRET_KEY", "JWT_SECRET_KEY", default=_PLACEHOLDER_SECRET)
    JWT_SECRET_KEY: str = _env("JWT_SECRET_KEY", "SECRET_KEY", default=_PLACEHOLDER_SECRET)
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRES: timedelta = _token_lifetime()
    BCRYPT_LOG_ROUNDS: int = 12

    SQLALCHEMY_TRACK_MODIFICATIONS: bool = False
    JSON_SORT_KEYS: bool = False

    # "sql" persists records through SQLAlchemy; "memory" keeps them in a
    # process-local dict (lost on restart, single process only).
    STORE_BACKEND: str = _env("STORE_BACKEND", default="sql")

    # Spreadsheet mirror. Pushes run on a small thread pool after each
    # expense commit; every HTTP call is bounded by the timeout.
    SHEET_SYNC_TIMEOUT_SECONDS: int = _env_int("SHEET_SYNC_TIMEOUT_SECONDS", default=10)
    SHEET_SYNC_MAX_WORKERS: int = _env_int("SHEET_SYNC_MAX_WORKERS", default=2)
    SHEET_SYNC_INLINE: bool = False


class DevelopmentConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = False

    SQLALCHEMY_DATABASE_URI: str = _normalise_db_url(
        _env("DATABASE_URL", default="sqlite:///" + str(_BACKEND_DIR / "splitplus.db"))
    )
    SQLALCHEMY_ECHO: bool = True


class TestingConfig(BaseConfig):
    DEBUG:   bool = True
    TESTING: bool = True

    SQLALCHEMY_DATABASE_URI: str = _env("TEST_DATABASE_URL", default="sqlite:///:memory:")
    SQLALCHEMY_ECHO: bool = False

    JWT_ACCESS_TOKEN_EXPIRES: timedelta = timedelta(seconds=60)
    BCRYPT_LOG_ROUNDS: int = 4

    STORE_BACKEND: str = "sql"
    # Pushes run on the request thread so tests can assert on them.
    SHEET_SYNC_INLINE: bool = True
    SHEET_SYNC_TIMEOUT_SECONDS: int = 1


class ProductionConfig(BaseConfig):
    DEBUG:   bool = False
    TESTING: bool = False
    SQLALCHEMY_ECHO: bool = False

    SQLALCHEMY_DATABASE_URI: str = _normalise_db_url(os.getenv("DATABASE_URL", ""))


def validate_production_config(app) -> None:
    """
    Refuses to start production with placeholder secrets, no database, or
    an unknown store backend. Raises ValueError naming the first problem.
    """
    if app.config.get("STORE_BACKEND") not in STORE_BACKENDS:
        raise ValueError(f"STORE_BACKEND must be one of {sorted(STORE_BACKENDS)}.")

    # Flask-SQLAlchemy builds its engine even when the memory store is used.
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise ValueError("DATABASE_URL is required in production.")

    for key in ("SECRET_KEY", "JWT_SECRET_KEY"):
        if app.config.get(key) == _PLACEHOLDER_SECRET:
            raise ValueError(f"{key} must be set to a strong random value in production.")


config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing":     TestingConfig,
    "production":  ProductionConfig,
}

# The config class selected by FLASK_ENV (development when unset).
ActiveConfig: type[BaseConfig] = config_by_name.get(
    os.getenv("FLASK_ENV", "development"),
    DevelopmentConfig,
)
