from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_ROOT = Path(__file__).resolve().parents[1]

APP_VERSION = "1.0.0"

DEV_JWT_SECRET = "your-super-secret-jwt-key-change-in-production"
PLACEHOLDER_AI_KEYS = {"", "your-gemini-api-key-here"}

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([dhms]?)\s*$", re.IGNORECASE)
_DURATION_UNITS = {"d": "days", "h": "hours", "m": "minutes", "s": "seconds", "": "seconds"}

_TRUTHY = {"1", "true", "yes", "on"}


# Parses "7d" / "12h" / "30m" / "45s" / "3600" into a timedelta
def parse_duration(value: str) -> timedelta:
    m = _DURATION_RE.match(value or "")
    if not m:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = int(m.group(1)), m.group(2).lower()
    if amount <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return timedelta(**{_DURATION_UNITS[unit]: amount})


def normalize_db_url(url: str) -> str:
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg2://", 1)
    return url


def _flag(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUTHY


@dataclass(frozen=True)
class Settings:
    """Process-wide configuration, built once at startup and injected where needed."""

    database_url: str = "sqlite:///./chat_backend.db"
    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    token_lifetime: timedelta = timedelta(days=7)
    frontend_url: str = "http://localhost:3001"
    ai_provider: str = "gemini"
    ai_api_key: Optional[str] = None
    ai_model: str = "gemini-2.0-flash"
    ai_timeout_seconds: float = 30.0
    environment: str = "development"
    strict_chat_ids: bool = False
    api_prefix: str = "/api"
    auto_create_tables: bool = True

    @property
    def debug(self) -> bool:
        return self.environment == "development"

    @property
    def ai_configured(self) -> bool:
        return (self.ai_api_key or "").strip() not in PLACEHOLDER_AI_KEYS

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "Settings":
        if env is None:
            load_dotenv(_ROOT / ".env", override=False)
            env = os.environ

        jwt_secret = env.get("JWT_SECRET") or DEV_JWT_SECRET
        if jwt_secret == DEV_JWT_SECRET:
            logger.warning("JWT_SECRET is not set; using the development placeholder secret.")

        api_prefix = (env.get("API_PREFIX") if env.get("API_PREFIX") is not None else "/api").rstrip("/")

        return cls(
            database_url=normalize_db_url(env.get("DATABASE_URL") or cls.database_url),
            jwt_secret=jwt_secret,
            jwt_algorithm=env.get("JWT_ALGORITHM") or cls.jwt_algorithm,
            token_lifetime=parse_duration(env.get("JWT_EXPIRES_IN") or "7d"),
            frontend_url=env.get("FRONTEND_URL") or cls.frontend_url,
            ai_provider=(env.get("AI_PROVIDER") or cls.ai_provider).strip().lower(),
            ai_api_key=env.get("GEMINI_API_KEY") or env.get("AI_API_KEY") or None,
            ai_model=env.get("GEMINI_MODEL") or env.get("AI_MODEL") or cls.ai_model,
            ai_timeout_seconds=float(env.get("AI_TIMEOUT_SECONDS") or cls.ai_timeout_seconds),
            environment=(env.get("APP_ENV") or cls.environment).strip().lower(),
            strict_chat_ids=_flag(env, "STRICT_CHAT_IDS", False),
            api_prefix=api_prefix,
            auto_create_tables=_flag(env, "AUTO_CREATE_TABLES", True),
        )
