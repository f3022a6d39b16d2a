"""Contains the schema definition for requests and responses related to users and authentication
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from typing import Annotated, Optional

from models.helpers import Plan

from schema.security import SessionRecord


class UserRecord(BaseModel):
    """Describes a user as returned by the user repository (never includes credential material)."""

    id: Annotated[str, Field(description="Unique identifier for the user")]
    username: Annotated[str, Field(max_length=30)]
    email: Annotated[str, Field(max_length=255)]
    display_name: Annotated[Optional[str], Field(default=None)]
    bio: Annotated[Optional[str], Field(default=None)]
    avatar_url: Annotated[Optional[str], Field(default=None)]
    is_verified: Annotated[bool, Field(default=False)]
    plan: Annotated[Plan, Field(default=Plan.FREE)]
    theme: Annotated[str, Field(default="dark")]
    two_factor_enabled: Annotated[bool, Field(default=False)]
    is_active: Annotated[bool, Field(default=True)]
    last_login_at: Annotated[Optional[datetime], Field(default=None)]
    created_at: Annotated[datetime, Field()]
    updated_at: Annotated[datetime, Field()]

    def to_profile(self) -> "UserProfile":
        return UserProfile.model_validate(self.model_dump(exclude={"updated_at"}))


class UserProfile(BaseModel):
    """Safe user snapshot cached in Redis under `user:<id>` and exposed on `/me`."""

    model_config = ConfigDict(populate_by_name=True)

    id: Annotated[str, Field()]
    username: Annotated[str, Field()]
    email: Annotated[str, Field()]
    display_name: Annotated[Optional[str], Field(default=None, alias="displayName")]
    bio: Annotated[Optional[str], Field(default=None)]
    avatar_url: Annotated[Optional[str], Field(default=None, alias="avatarUrl")]
    is_verified: Annotated[bool, Field(default=False, alias="isVerified")]
    plan: Annotated[Plan, Field(default=Plan.FREE)]
    theme: Annotated[str, Field(default="dark")]
    is_active: Annotated[bool, Field(default=True, alias="isActive")]
    two_factor_enabled: Annotated[bool, Field(default=False, alias="twoFactorEnabled")]
    created_at: Annotated[Optional[datetime], Field(default=None, alias="createdAt")]
    last_login_at: Annotated[Optional[datetime], Field(default=None, alias="lastLoginAt")]


class AuthContext(BaseModel):
    """Identity attached to a request by the auth dependencies. Both fields are None for anonymous requests."""

    user: Optional[UserProfile] = None
    session: Optional[SessionRecord] = None
    session_id: Optional[str] = None


class RegisterRequest(BaseModel):
    """Describes the structure of the register request.

    Fields are optional here so the endpoint can answer with `MISSING_FIELDS`
    instead of a generic validation error.
    """

    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    """Describes the structure of the login request. `identifier` is a username or an email."""

    identifier: Optional[str] = None
    password: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    """Describes the structure of the change password request."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: Annotated[Optional[str], Field(default=None, alias="currentPassword")]
    new_password: Annotated[Optional[str], Field(default=None, alias="newPassword")]


class AuthData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user: SessionRecord
    session_id: Annotated[str, Field(alias="sessionId")]
    token: str
    expires_at: Annotated[datetime, Field(alias="expiresAt")]


class AuthResponse(BaseModel):
    """Describes the structure of the register and login responses."""

    success: Annotated[bool, Field(default=True)]
    message: str
    data: AuthData


class CurrentUserData(BaseModel):
    user: UserProfile
    session: Optional[SessionRecord] = None


class CurrentUserResponse(BaseModel):
    """Describes the structure of the current user response."""

    success: Annotated[bool, Field(default=True)]
    data: CurrentUserData


class RefreshData(BaseModel):
    token: str
    session: SessionRecord


class RefreshResponse(BaseModel):
    """Describes the structure of the session refresh response."""

    success: Annotated[bool, Field(default=True)]
    message: Annotated[str, Field(default="Session refreshed")]
    data: RefreshData


class MessageResponse(BaseModel):
    success: Annotated[bool, Field(default=True)]
    message: str


class UsernameAvailabilityResponse(BaseModel):
    success: Annotated[bool, Field(default=True)]
    username: str
    available: bool


class VerifyEmailRequest(BaseModel):
    token: Optional[str] = None


class ResendVerificationRequest(BaseModel):
    email: Optional[str] = None


class LoginTwoFactorRequest(BaseModel):
    """Second login step for accounts with 2FA enabled."""

    model_config = ConfigDict(populate_by_name=True)

    pending_token: Annotated[Optional[str], Field(default=None, alias="pendingToken")]
    code: Optional[str] = None


class TwoFactorCodeRequest(BaseModel):
    code: Optional[str] = None


class DisableTwoFactorRequest(BaseModel):
    password: Optional[str] = None


class PendingLoginData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    pending_token: Annotated[str, Field(alias="pendingToken")]
    expires_at: Annotated[datetime, Field(alias="expiresAt")]


class PendingLoginResponse(BaseModel):
    """Returned by login instead of a session when the account has 2FA enabled."""

    model_config = ConfigDict(populate_by_name=True)

    success: Annotated[bool, Field(default=True)]
    message: Annotated[str, Field(default="2FA verification required")]
    requires_2fa: Annotated[bool, Field(default=True, alias="requires2fa")]
    data: PendingLoginData


class TwoFactorSetupData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    secret: str
    otpauth_url: Annotated[str, Field(alias="otpauthUrl")]
    expires_at: Annotated[datetime, Field(alias="expiresAt")]


class TwoFactorSetupResponse(BaseModel):
    success: Annotated[bool, Field(default=True)]
    message: Annotated[str, Field(default="2FA secret generated successfully")]
    data: TwoFactorSetupData
