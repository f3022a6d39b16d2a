"""Typed errors raised by the authentication layer.

Every error carries a stable `kind` so callers can map it to an outward
status code without inspecting message text.
"""

from enum import Enum

from typing import Dict, Optional

from fastapi import HTTPException

from schema.security import RateLimitResult


class AuthErrorKind(str, Enum):
    """Closed set of authentication error kinds."""

    USERNAME_EXISTS = "USERNAME_EXISTS"
    EMAIL_EXISTS = "EMAIL_EXISTS"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    INVALID_TOKEN = "INVALID_TOKEN"
    INVALID_SESSION = "INVALID_SESSION"
    RATE_LIMITED = "RATE_LIMITED"
    STORE_UNAVAILABLE = "STORE_UNAVAILABLE"
    REPOSITORY_UNAVAILABLE = "REPOSITORY_UNAVAILABLE"
    PASSWORD_UNCHANGED = "PASSWORD_UNCHANGED"
    WEAK_PASSWORD = "WEAK_PASSWORD"
    INVALID_VERIFICATION_TOKEN = "INVALID_VERIFICATION_TOKEN"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"
    VERIFICATION_COOLDOWN = "VERIFICATION_COOLDOWN"
    INVALID_2FA_CODE = "INVALID_2FA_CODE"
    INVALID_PENDING_LOGIN = "INVALID_PENDING_LOGIN"
    TWO_FACTOR_NOT_ENABLED = "TWO_FACTOR_NOT_ENABLED"
    TWO_FACTOR_ALREADY_ENABLED = "TWO_FACTOR_ALREADY_ENABLED"
    TWO_FACTOR_SETUP_REQUIRED = "TWO_FACTOR_SETUP_REQUIRED"


class AuthError(Exception):
    """Base class for all authentication errors."""

    kind: AuthErrorKind
    default_message: str = "Authentication error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class UsernameExists(AuthError):
    kind = AuthErrorKind.USERNAME_EXISTS
    default_message = "Username already exists"


class EmailExists(AuthError):
    kind = AuthErrorKind.EMAIL_EXISTS
    default_message = "Email already exists"


class InvalidCredentials(AuthError):
    kind = AuthErrorKind.INVALID_CREDENTIALS
    default_message = "Invalid username/email or password"


class InvalidToken(AuthError):
    kind = AuthErrorKind.INVALID_TOKEN
    default_message = "Invalid or expired token"


class InvalidSession(AuthError):
    kind = AuthErrorKind.INVALID_SESSION
    default_message = "Invalid or expired session"


class RateLimited(AuthError):
    """Raised when an identifier exceeded its authentication attempt budget."""

    kind = AuthErrorKind.RATE_LIMITED
    default_message = "Too many login attempts. Please try again later."

    def __init__(self, result: RateLimitResult, message: Optional[str] = None):
        self.result = result
        super().__init__(message)


class StoreUnavailable(AuthError):
    """The session store (Redis) could not be reached or timed out."""

    kind = AuthErrorKind.STORE_UNAVAILABLE
    default_message = "Session store unavailable"


class RepositoryUnavailable(AuthError):
    """The user repository (MongoDB) could not be reached or timed out."""

    kind = AuthErrorKind.REPOSITORY_UNAVAILABLE
    default_message = "User repository unavailable"


class PasswordUnchanged(AuthError):
    kind = AuthErrorKind.PASSWORD_UNCHANGED
    default_message = "New password must be different from current password"


class WeakPassword(AuthError):
    kind = AuthErrorKind.WEAK_PASSWORD
    default_message = "Password must be at least 8 characters long"


class InvalidVerificationToken(AuthError):
    kind = AuthErrorKind.INVALID_VERIFICATION_TOKEN
    default_message = "Invalid or expired verification token"


class AlreadyVerified(AuthError):
    kind = AuthErrorKind.ALREADY_VERIFIED
    default_message = "Email is already verified"


class VerificationCooldown(AuthError):
    kind = AuthErrorKind.VERIFICATION_COOLDOWN
    default_message = "Please wait before requesting another verification email"


class InvalidTwoFactorCode(AuthError):
    kind = AuthErrorKind.INVALID_2FA_CODE
    default_message = "Invalid 2FA code"


class InvalidPendingLogin(AuthError):
    """The two-factor login step referenced an unknown or expired pending login."""

    kind = AuthErrorKind.INVALID_PENDING_LOGIN
    default_message = "Login attempt expired. Please log in again."


class TwoFactorNotEnabled(AuthError):
    kind = AuthErrorKind.TWO_FACTOR_NOT_ENABLED
    default_message = "2FA is not enabled for this account"


class TwoFactorAlreadyEnabled(AuthError):
    kind = AuthErrorKind.TWO_FACTOR_ALREADY_ENABLED
    default_message = "2FA is already enabled for this account"


class TwoFactorSetupRequired(AuthError):
    kind = AuthErrorKind.TWO_FACTOR_SETUP_REQUIRED
    default_message = "No 2FA setup in progress. Generate a new secret first."


def http_error(
    status_code: int, error: str, code: str, headers: Optional[Dict[str, str]] = None
) -> HTTPException:
    """Build an `HTTPException` whose detail renders as `{"success": false, "error", "code"}`."""
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "code": code},
        headers=headers,
    )
