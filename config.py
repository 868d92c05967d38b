from __future__ import annotations

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv


def _env_str(name: str, default: str = "") -> str:
    return str(os.getenv(name, default) or default).strip()


def _env_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, "") or "").strip() or default)
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = str(os.getenv(name, "") or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "y", "on"}


def _env_list(name: str, default: list[str] | None = None) -> list[str]:
    raw = str(os.getenv(name, "") or "").strip()
    if not raw:
        return list(default or [])
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class Config:
    ENV: str = "development"
    APP_VERSION: str = "0.1.0"
    LOG_LEVEL: str = "INFO"

    DATABASE_URL: str = "sqlite:///./assessments.db"
    # sql | memory
    STORAGE_BACKEND: str = "sql"

    CORS_ORIGINS: list[str] = field(default_factory=lambda: ["http://localhost:5173"])
    CORS_ALLOW_CREDENTIALS: bool = True

    SESSION_TTL_MINUTES: int = 24 * 60
    SESSION_LINK_TTL_DAYS: int = 7
    PUBLIC_BASE_URL: str = "http://localhost:5173"
    DEFAULT_PASSING_SCORE: int = 70

    LOGIN_RATE_LIMIT_PER_MINUTE: int = 20
    ALLOW_SELF_REGISTER: bool = True

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() in {"prod", "production"}


def get_config() -> Config:
    load_dotenv()

    backend = _env_str("STORAGE_BACKEND", "sql").lower()
    if backend not in {"sql", "memory"}:
        backend = "sql"

    return Config(
        ENV=_env_str("APP_ENV", "development"),
        APP_VERSION=_env_str("APP_VERSION", "0.1.0"),
        LOG_LEVEL=_env_str("LOG_LEVEL", "INFO").upper(),
        DATABASE_URL=_env_str("DATABASE_URL", "sqlite:///./assessments.db"),
        STORAGE_BACKEND=backend,
        CORS_ORIGINS=_env_list("CORS_ORIGINS", ["http://localhost:5173"]),
        CORS_ALLOW_CREDENTIALS=_env_bool("CORS_ALLOW_CREDENTIALS", True),
        SESSION_TTL_MINUTES=max(5, _env_int("SESSION_TTL_MINUTES", 24 * 60)),
        SESSION_LINK_TTL_DAYS=max(0, _env_int("SESSION_LINK_TTL_DAYS", 7)),
        PUBLIC_BASE_URL=_env_str("PUBLIC_BASE_URL", "http://localhost:5173").rstrip("/"),
        DEFAULT_PASSING_SCORE=max(0, min(100, _env_int("DEFAULT_PASSING_SCORE", 70))),
        LOGIN_RATE_LIMIT_PER_MINUTE=max(1, _env_int("LOGIN_RATE_LIMIT_PER_MINUTE", 20)),
        ALLOW_SELF_REGISTER=_env_bool("ALLOW_SELF_REGISTER", True),
    )
