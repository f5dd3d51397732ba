# refresh_guard/core/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from datetime import timedelta
from urllib.parse import quote_plus

from dotenv import load_dotenv

from refresh_guard.core.errors import ConfigurationError

MIN_PROD_SECRET_LENGTH = 16


def str_to_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def parse_csv(value: str | None) -> list[str]:
    if not value:
        return []
    return [v.strip() for v in value.split(",") if v.strip()]


def merge_unique(items: list[str]) -> list[str]:
    seen: set[str] = set()
    out: list[str] = []
    for v in items:
        if v in seen:
            continue
        seen.add(v)
        out.append(v)
    return out


@dataclass(frozen=True)
class TokenSettings:
    """
    Everything the issuer and rotation engine need, injected instead of read
    from the process-global Settings.
    """

    access_secret: str
    refresh_secret: str
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)
    algorithm: str = "HS256"

    def __post_init__(self) -> None:
        missing: list[str] = []
        if not (self.access_secret or "").strip():
            missing.append("ACCESS_TOKEN_SECRET")
        if not (self.refresh_secret or "").strip():
            missing.append("REFRESH_TOKEN_SECRET")
        if missing:
            raise ConfigurationError(f"Missing token secrets: {', '.join(missing)}")
        if self.access_ttl <= timedelta(0) or self.refresh_ttl <= timedelta(0):
            raise ConfigurationError("Token TTLs must be positive")


class Settings:
    def __init__(self) -> None:
        # Only load .env for local/dev. In prod, env vars come from the service config.
        self.ENV = os.getenv("ENV", "dev").strip().lower()  # dev | prod
        if self.ENV != "prod":
            load_dotenv()

        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO"

        # ----------------------------
        # Database
        # ----------------------------
        self.DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
        self.DB_HOST = os.getenv("DB_HOST", "")
        self.DB_PORT = os.getenv("DB_PORT", "5432")
        self.DB_NAME = os.getenv("DB_NAME", "")
        self.DB_USER = os.getenv("DB_USER", "")
        self.DB_PASSWORD = os.getenv("DB_PASSWORD", "")
        self.DB_SSLMODE = os.getenv("DB_SSLMODE", "require").strip().lower()

        # ----------------------------
        # CORS
        # ----------------------------
        dev_defaults = [
            "http://localhost:3000",
            "http://localhost:5173",
        ]
        cors_from_env = parse_csv(os.getenv("CORS_ORIGINS"))
        if self.ENV == "prod":
            self.CORS_ORIGINS = merge_unique(cors_from_env)
        else:
            self.CORS_ORIGINS = merge_unique(cors_from_env + dev_defaults)

        # ----------------------------
        # Tokens
        # ----------------------------
        self.ACCESS_TOKEN_SECRET = os.getenv("ACCESS_TOKEN_SECRET", "")
        self.ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "15"))
        self.REFRESH_TOKEN_SECRET = os.getenv("REFRESH_TOKEN_SECRET", "")
        self.REFRESH_TOKEN_EXPIRE_DAYS = int(os.getenv("REFRESH_TOKEN_EXPIRE_DAYS", "7"))
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

        # ----------------------------
        # Password policy
        # ----------------------------
        self.PASSWORD_MIN_LENGTH = int(os.getenv("PASSWORD_MIN_LENGTH", "12"))

        # ----------------------------
        # Refresh cookie
        # ----------------------------
        self.REFRESH_COOKIE_NAME = os.getenv("REFRESH_COOKIE_NAME", "refresh_token")
        self.REFRESH_COOKIE_PATH = os.getenv("REFRESH_COOKIE_PATH", "/auth")
        self.REFRESH_COOKIE_SAMESITE = os.getenv("REFRESH_COOKIE_SAMESITE", "lax")
        self.REFRESH_COOKIE_SECURE = str_to_bool(os.getenv("REFRESH_COOKIE_SECURE"), default=False)
        self.REFRESH_COOKIE_DOMAIN = os.getenv("REFRESH_COOKIE_DOMAIN", "") or None

        self._validate_prod()

    def _validate_prod(self) -> None:
        if self.ENV != "prod":
            return

        missing: list[str] = []
        if not self.ACCESS_TOKEN_SECRET:
            missing.append("ACCESS_TOKEN_SECRET")
        if not self.REFRESH_TOKEN_SECRET:
            missing.append("REFRESH_TOKEN_SECRET")
        if not self.DATABASE_URL and not (self.DB_HOST and self.DB_NAME and self.DB_USER):
            missing.append("DATABASE_URL")
        if not self.CORS_ORIGINS:
            missing.append("CORS_ORIGINS")
        if missing:
            raise ConfigurationError(f"Missing required prod env vars: {', '.join(missing)}")

        for name in ("ACCESS_TOKEN_SECRET", "REFRESH_TOKEN_SECRET"):
            if len(getattr(self, name)) < MIN_PROD_SECRET_LENGTH:
                raise ConfigurationError(f"{name} must be at least {MIN_PROD_SECRET_LENGTH} characters in prod")
        if self.ACCESS_TOKEN_SECRET == self.REFRESH_TOKEN_SECRET:
            raise ConfigurationError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must differ in prod")

        cors_joined = ",".join(self.CORS_ORIGINS)
        if "localhost" in cors_joined or "127.0.0.1" in cors_joined:
            raise ConfigurationError("CORS_ORIGINS contains localhost/dev origins in prod")

    @property
    def is_prod(self) -> bool:
        return self.ENV == "prod"

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not self.DB_HOST:
            # Local dev without Postgres
            return "sqlite+pysqlite:///./refresh_guard.db"
        encoded_password = quote_plus(self.DB_PASSWORD)
        return (
            f"postgresql+psycopg2://{self.DB_USER}:{encoded_password}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
            f"?sslmode={self.DB_SSLMODE}"
        )

    def token_settings(self) -> TokenSettings:
        return TokenSettings(
            access_secret=self.ACCESS_TOKEN_SECRET,
            refresh_secret=self.REFRESH_TOKEN_SECRET,
            access_ttl=timedelta(minutes=self.ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_ttl=timedelta(days=self.REFRESH_TOKEN_EXPIRE_DAYS),
            algorithm=self.JWT_ALGORITHM,
        )


settings = Settings()


@lru_cache(maxsize=1)
def require_token_secrets() -> TokenSettings:
    """
    Fail fast at startup when signing keys are absent. The validated instance
    is cached and shared with request-time dependencies.
    """
    return settings.token_settings()
