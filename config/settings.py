"""Application settings loaded from the environment (and a `.env` file when present)."""

import os
import logfire

from functools import lru_cache

from dotenv import load_dotenv

from pydantic import BaseModel, Field

from typing import Annotated, List


def _get_int(key: str, default: int) -> int:
    """Read an integer environment variable, falling back to `default` when unset or invalid."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        logfire.warning(f"Invalid integer value for {key}: {value}, using default: {default}")
        return default


def _get_float(key: str, default: float) -> float:
    """Read a float environment variable, falling back to `default` when unset or invalid."""
    value = os.getenv(key)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        logfire.warning(f"Invalid float value for {key}: {value}, using default: {default}")
        return default


class Settings(BaseModel):
    """Runtime configuration for the auth service."""

    # JWT
    jwt_secret: Annotated[str, Field(min_length=1)]
    jwt_issuer: Annotated[str, Field(default="gotchu.lol")]
    jwt_audience: Annotated[str, Field(default="gotchu-users")]

    # Sessions
    session_expiry: Annotated[int, Field(default=86400, gt=0)]  # seconds
    user_cache_expiry: Annotated[int, Field(default=1800, gt=0)]  # seconds
    bcrypt_rounds: Annotated[int, Field(default=12, ge=4, le=31)]

    # Redis
    redis_host: Annotated[str, Field(default="localhost")]
    redis_port: Annotated[int, Field(default=6379)]
    redis_username: Annotated[str | None, Field(default=None)]
    redis_password: Annotated[str | None, Field(default=None)]
    redis_db: Annotated[int, Field(default=0)]
    redis_socket_timeout: Annotated[float, Field(default=5.0, gt=0)]
    redis_connect_timeout: Annotated[float, Field(default=10.0, gt=0)]

    # MongoDB
    database_connection_string: Annotated[str, Field(default="mongodb://localhost:27017")]
    database_name: Annotated[str, Field(default="gotchu")]
    database_timeout_ms: Annotated[int, Field(default=5000, gt=0)]

    # Rate limiting
    auth_rate_limit_max: Annotated[int, Field(default=5, gt=0)]
    auth_rate_limit_window: Annotated[int, Field(default=300, gt=0)]  # seconds
    rate_limit_max: Annotated[int, Field(default=100, gt=0)]
    rate_limit_window: Annotated[int, Field(default=300, gt=0)]  # seconds

    # Email verification
    smtp_server: Annotated[str | None, Field(default=None)]
    smtp_port: Annotated[int, Field(default=587)]
    smtp_username: Annotated[str | None, Field(default=None)]
    smtp_password: Annotated[str | None, Field(default=None)]
    from_email: Annotated[str, Field(default="noreply@gotchu.lol")]
    site_url: Annotated[str, Field(default="https://gotchu.lol")]
    email_verification_expiry: Annotated[int, Field(default=86400, gt=0)]  # seconds
    verification_resend_cooldown: Annotated[int, Field(default=60, gt=0)]  # seconds

    # Two-factor authentication
    totp_issuer: Annotated[str, Field(default="gotchu.lol")]
    totp_setup_expiry: Annotated[int, Field(default=600, gt=0)]  # seconds
    pending_2fa_expiry: Annotated[int, Field(default=300, gt=0)]  # seconds

    # HTTP
    cors_origins: Annotated[List[str], Field(default=["http://localhost:3000", "http://localhost:5173"])]

    logfire_token: Annotated[str | None, Field(default=None)]


def load_settings() -> Settings:
    """Build a `Settings` instance from environment variables.

    Raises:
        pydantic.ValidationError: When `JWT_SECRET` is missing or a value is out of range.
    """
    load_dotenv()

    cors_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173")

    return Settings(
        jwt_secret=os.getenv("JWT_SECRET", ""),
        jwt_issuer=os.getenv("JWT_ISSUER", "gotchu.lol"),
        jwt_audience=os.getenv("JWT_AUDIENCE", "gotchu-users"),
        session_expiry=_get_int("SESSION_EXPIRY", 86400),
        user_cache_expiry=_get_int("USER_CACHE_EXPIRY", 1800),
        bcrypt_rounds=_get_int("BCRYPT_ROUNDS", 12),
        redis_host=os.getenv("REDIS_HOST", "localhost"),
        redis_port=_get_int("REDIS_PORT", 6379),
        redis_username=os.getenv("REDIS_USERNAME") or None,
        redis_password=os.getenv("REDIS_PASSWORD") or None,
        redis_db=_get_int("REDIS_DB", 0),
        redis_socket_timeout=_get_float("REDIS_SOCKET_TIMEOUT", 5.0),
        redis_connect_timeout=_get_float("REDIS_CONNECT_TIMEOUT", 10.0),
        database_connection_string=os.getenv("DATABASE_CONNECTION_STRING", "mongodb://localhost:27017"),
        database_name=os.getenv("DATABASE_NAME", "gotchu"),
        database_timeout_ms=_get_int("DATABASE_TIMEOUT_MS", 5000),
        auth_rate_limit_max=_get_int("AUTH_RATE_LIMIT_MAX", 5),
        auth_rate_limit_window=_get_int("AUTH_RATE_LIMIT_WINDOW", 300),
        rate_limit_max=_get_int("RATE_LIMIT_MAX", 100),
        rate_limit_window=_get_int("RATE_LIMIT_WINDOW", 300),
        smtp_server=os.getenv("SMTP_SERVER") or None,
        smtp_port=_get_int("SMTP_PORT", 587),
        smtp_username=os.getenv("SMTP_USERNAME") or None,
        smtp_password=os.getenv("SMTP_PASSWORD") or None,
        from_email=os.getenv("FROM_EMAIL", "noreply@gotchu.lol"),
        site_url=os.getenv("SITE_URL", "https://gotchu.lol"),
        email_verification_expiry=_get_int("EMAIL_VERIFICATION_EXPIRY", 86400),
        verification_resend_cooldown=_get_int("VERIFICATION_RESEND_COOLDOWN", 60),
        totp_issuer=os.getenv("TOTP_ISSUER", "gotchu.lol"),
        totp_setup_expiry=_get_int("TOTP_SETUP_EXPIRY", 600),
        pending_2fa_expiry=_get_int("PENDING_2FA_EXPIRY", 300),
        cors_origins=[origin.strip() for origin in cors_origins.split(",") if origin.strip()],
        logfire_token=os.getenv("LOGFIRE_WRITE_TOKEN") or None,
    )


@lru_cache
def get_settings() -> Settings:
    """Cached settings used by the application factory."""
    return load_settings()
