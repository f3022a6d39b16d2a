"""Defines schema of session, token and rate limit data used by the auth layer"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from typing import Annotated, Optional

from models.helpers import Plan


class SessionRecord(BaseModel):
    """Server-side session stored in Redis under `session:<id>`."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Annotated[str, Field(alias="userId")]
    username: Annotated[str, Field()]
    email: Annotated[str, Field()]
    is_verified: Annotated[bool, Field(default=False, alias="isVerified")]
    plan: Annotated[Plan, Field(default=Plan.FREE)]
    created_at: Annotated[datetime, Field(alias="createdAt")]


class TokenClaims(BaseModel):
    """Claims carried by a bearer token."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: Annotated[str, Field(alias="userId")]
    session_id: Annotated[str, Field(alias="sessionId")]
    username: Annotated[Optional[str], Field(default=None)]
    sub: Annotated[str, Field()]
    iss: Annotated[str, Field()]
    aud: Annotated[str, Field()]
    exp: Annotated[int, Field()]
    iat: Annotated[int, Field()]
    jti: Annotated[Optional[str], Field(default=None)]


class RateLimitResult(BaseModel):
    """Outcome of a single fixed-window counter increment."""

    count: int
    limit: int
    remaining: int
    exceeded: bool
    reset_at: int  # Unix timestamp at which the current window closes


class AuthResult(BaseModel):
    """Everything a client needs after a successful register or login."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: Annotated[str, Field(alias="sessionId")]
    token: str
    user: SessionRecord
    expires_at: Annotated[datetime, Field(alias="expiresAt")]


class PendingLogin(BaseModel):
    """Password check passed, the account still owes a TOTP code."""

    model_config = ConfigDict(populate_by_name=True)

    pending_token: Annotated[str, Field(alias="pendingToken")]
    user_id: Annotated[str, Field(alias="userId")]
    expires_at: Annotated[datetime, Field(alias="expiresAt")]
