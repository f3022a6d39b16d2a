import pytz

from datetime import datetime

from pydantic import Field

from typing import Annotated, Optional

from beanie import Document, Indexed, PydanticObjectId

from .helpers import Plan


class User(Document):
    """Profile owner. Usernames and emails are stored lower-cased so the unique
    indexes enforce case-insensitive uniqueness.
    """
    username: Annotated[str, Indexed(unique=True), Field(max_length=30, min_length=3)]
    email: Annotated[str, Indexed(unique=True), Field(max_length=255)]
    display_name: Annotated[Optional[str], Field(default=None, max_length=100)]
    bio: Annotated[Optional[str], Field(default=None)]
    avatar_url: Annotated[Optional[str], Field(default=None, max_length=500)]
    is_verified: Annotated[bool, Field(default=False)]
    plan: Annotated[Plan, Field(default=Plan.FREE)]
    theme: Annotated[str, Field(default="dark", max_length=20)]
    two_factor_enabled: Annotated[bool, Field(default=False)]
    is_active: Annotated[bool, Field(default=True)]
    last_login_at: Annotated[Optional[datetime], Field(default=None)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]
    updated_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]

    class Settings:
        name = "users"


class UserCredential(Document):
    """Password hash and TOTP secret, kept apart from the profile document.
    """
    user_id: Annotated[PydanticObjectId, Indexed(unique=True)]
    password_hash: Annotated[str, Field()]
    totp_secret: Annotated[Optional[str], Field(default=None)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]
    updated_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(pytz.utc))]

    class Settings:
        name = "user_credentials"
