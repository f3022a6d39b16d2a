"""
Auth router for handling registration, login, logout, session, email
verification and two-factor authentication endpoints.
"""

import time
import logfire

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status

from typing import Annotated, Dict, Optional, Tuple, Union

from middleware.auth import (
    get_auth_service,
    optional_auth,
    rate_limit_auth,
    rate_limit_headers,
    require_auth,
    session_id_header,
)

from schema.users import (
    AuthContext,
    AuthData,
    AuthResponse,
    ChangePasswordRequest,
    CurrentUserData,
    CurrentUserResponse,
    DisableTwoFactorRequest,
    LoginRequest,
    LoginTwoFactorRequest,
    MessageResponse,
    PendingLoginData,
    PendingLoginResponse,
    RefreshData,
    RefreshResponse,
    RegisterRequest,
    ResendVerificationRequest,
    TwoFactorCodeRequest,
    TwoFactorSetupData,
    TwoFactorSetupResponse,
    UsernameAvailabilityResponse,
    VerifyEmailRequest,
)
from schema.security import AuthResult, PendingLogin

from security.errors import AuthError, AuthErrorKind, RateLimited, http_error

from services.auth import AuthService
from services.validation import is_email_valid, is_password_strong, is_username_valid


router = APIRouter(
    prefix="/api/auth",
    tags=["Auth"],
)


# Status and code for every error kind a client can act on. Anything else
# (store or repository outages) becomes the endpoint's generic 500.
ERROR_RESPONSES: Dict[AuthErrorKind, Tuple[int, str]] = {
    AuthErrorKind.USERNAME_EXISTS: (status.HTTP_409_CONFLICT, "USER_EXISTS"),
    AuthErrorKind.EMAIL_EXISTS: (status.HTTP_409_CONFLICT, "USER_EXISTS"),
    AuthErrorKind.INVALID_CREDENTIALS: (status.HTTP_401_UNAUTHORIZED, "INVALID_CREDENTIALS"),
    AuthErrorKind.INVALID_TOKEN: (status.HTTP_401_UNAUTHORIZED, "INVALID_TOKEN"),
    AuthErrorKind.INVALID_SESSION: (status.HTTP_401_UNAUTHORIZED, "INVALID_SESSION"),
    AuthErrorKind.RATE_LIMITED: (status.HTTP_429_TOO_MANY_REQUESTS, "RATE_LIMITED"),
    AuthErrorKind.PASSWORD_UNCHANGED: (status.HTTP_400_BAD_REQUEST, "PASSWORD_UNCHANGED"),
    AuthErrorKind.WEAK_PASSWORD: (status.HTTP_400_BAD_REQUEST, "WEAK_PASSWORD"),
    AuthErrorKind.INVALID_VERIFICATION_TOKEN: (status.HTTP_400_BAD_REQUEST, "INVALID_VERIFICATION_TOKEN"),
    AuthErrorKind.ALREADY_VERIFIED: (status.HTTP_400_BAD_REQUEST, "ALREADY_VERIFIED"),
    AuthErrorKind.VERIFICATION_COOLDOWN: (status.HTTP_429_TOO_MANY_REQUESTS, "VERIFICATION_COOLDOWN"),
    AuthErrorKind.INVALID_2FA_CODE: (status.HTTP_401_UNAUTHORIZED, "INVALID_2FA_CODE"),
    AuthErrorKind.INVALID_PENDING_LOGIN: (status.HTTP_401_UNAUTHORIZED, "INVALID_PENDING_LOGIN"),
    AuthErrorKind.TWO_FACTOR_NOT_ENABLED: (status.HTTP_400_BAD_REQUEST, "TWO_FACTOR_NOT_ENABLED"),
    AuthErrorKind.TWO_FACTOR_ALREADY_ENABLED: (status.HTTP_409_CONFLICT, "TWO_FACTOR_ALREADY_ENABLED"),
    AuthErrorKind.TWO_FACTOR_SETUP_REQUIRED: (status.HTTP_400_BAD_REQUEST, "TWO_FACTOR_SETUP_REQUIRED"),
}


def auth_error_response(e: AuthError, error: str, code: str) -> HTTPException:
    """Map `e` by its kind, falling back to a 500 with `error` and `code`."""
    response = ERROR_RESPONSES.get(e.kind)
    if response is None:
        logfire.error(f"{code}: {e.kind.value}: {e.message}")
        return http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, error, code)

    status_code, error_code = response

    headers = None
    if isinstance(e, RateLimited):
        headers = rate_limit_headers(e.result)
        headers["Retry-After"] = str(max(0, e.result.reset_at - int(time.time())))

    return http_error(status_code, e.message, error_code, headers=headers)


def _auth_data(result: AuthResult) -> AuthData:
    return AuthData(
        user=result.user,
        session_id=result.session_id,
        token=result.token,
        expires_at=result.expires_at,
    )


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=AuthResponse,
)
async def register(
    payload: RegisterRequest,
    background_tasks: BackgroundTasks,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    rate_limit_identifier: Annotated[Optional[str], Depends(rate_limit_auth)],
):
    """Create an account, log it in and email a verification link.

    ### Possible failures
        - 400 `MISSING_FIELDS`, `INVALID_USERNAME`, `INVALID_EMAIL`, `WEAK_PASSWORD`
        - 409 `USER_EXISTS`
        - 429 `RATE_LIMITED`
    """
    if not payload.username or not payload.email or not payload.password:
        raise http_error(
            status.HTTP_400_BAD_REQUEST,
            "Username, email, and password are required",
            "MISSING_FIELDS",
        )

    is_valid, message = is_username_valid(payload.username)
    if not is_valid:
        raise http_error(status.HTTP_400_BAD_REQUEST, message, "INVALID_USERNAME")

    is_valid, message = is_email_valid(payload.email)
    if not is_valid:
        raise http_error(status.HTTP_400_BAD_REQUEST, message, "INVALID_EMAIL")

    is_valid, message = is_password_strong(payload.password)
    if not is_valid:
        raise http_error(status.HTTP_400_BAD_REQUEST, message, "WEAK_PASSWORD")

    try:
        result = await auth_service.register(
            username=payload.username,
            email=payload.email,
            password=payload.password,
        )
    except AuthError as e:
        raise auth_error_response(e, "Failed to create account. Please try again.", "REGISTRATION_ERROR")
    except Exception as e:
        logfire.error(f"Registration error for {payload.username}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to create account. Please try again.",
            "REGISTRATION_ERROR",
        )

    if rate_limit_identifier:
        await auth_service.clear_auth_rate_limit(rate_limit_identifier)

    # The account exists at this point; a lost email can be re-requested
    try:
        token = await auth_service.issue_email_verification(result.user.user_id)
        background_tasks.add_task(
            auth_service.verification.send_verification_email,
            result.user.email,
            result.user.username,
            token,
        )
    except Exception as e:
        logfire.error(f"Could not issue verification email for {result.user.username}: {str(e)}")

    return AuthResponse(message="Account created successfully", data=_auth_data(result))


@router.post(
    "/login",
    status_code=status.HTTP_200_OK,
    response_model=Union[AuthResponse, PendingLoginResponse],
)
async def login(
    payload: LoginRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    rate_limit_identifier: Annotated[Optional[str], Depends(rate_limit_auth)],
):
    """Log in with a username or email and a password.

    Accounts with 2FA enabled get `requires2fa` and a `pendingToken` instead of
    a session; finish with `POST /api/auth/login/2fa`.

    ### Possible failures
        - 400 `MISSING_CREDENTIALS`
        - 401 `INVALID_CREDENTIALS`
        - 429 `RATE_LIMITED`
    """
    if not payload.identifier or not payload.password:
        raise http_error(
            status.HTTP_400_BAD_REQUEST,
            "Username/email and password are required",
            "MISSING_CREDENTIALS",
        )

    try:
        result = await auth_service.login(
            identifier=payload.identifier,
            password=payload.password,
        )
    except AuthError as e:
        raise auth_error_response(e, "Login failed. Please try again.", "LOGIN_ERROR")
    except Exception as e:
        logfire.error(f"Login error for {payload.identifier}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Login failed. Please try again.",
            "LOGIN_ERROR",
        )

    if isinstance(result, PendingLogin):
        return PendingLoginResponse(
            data=PendingLoginData(pending_token=result.pending_token, expires_at=result.expires_at)
        )

    if rate_limit_identifier:
        await auth_service.clear_auth_rate_limit(rate_limit_identifier)

    return AuthResponse(message="Login successful", data=_auth_data(result))


@router.post(
    "/login/2fa",
    status_code=status.HTTP_200_OK,
    response_model=AuthResponse,
)
async def login_two_factor(
    payload: LoginTwoFactorRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Finish a login that answered `requires2fa` with the current TOTP code.

    ### Possible failures
        - 400 `MISSING_FIELDS`
        - 401 `INVALID_2FA_CODE`, `INVALID_PENDING_LOGIN`
        - 429 `RATE_LIMITED`
    """
    if not payload.pending_token or not payload.code:
        raise http_error(
            status.HTTP_400_BAD_REQUEST,
            "Pending token and 2FA code are required",
            "MISSING_FIELDS",
        )

    try:
        result = await auth_service.login_two_factor(payload.pending_token, payload.code)
    except AuthError as e:
        raise auth_error_response(e, "Login failed. Please try again.", "LOGIN_ERROR")
    except Exception as e:
        logfire.error(f"2FA login error: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Login failed. Please try again.",
            "LOGIN_ERROR",
        )

    return AuthResponse(message="Login successful", data=_auth_data(result))


@router.post(
    "/logout",
    status_code=status.HTTP_200_OK,
    response_model=MessageResponse,
)
async def logout(
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    context: Annotated[AuthContext, Depends(optional_auth)],
    session_id: Annotated[Optional[str], Depends(session_id_header)],
):
    """Destroy the current session. Succeeds even when there is nothing to destroy."""
    target_session_id = session_id or context.session_id

    try:
        if target_session_id:
            await auth_service.destroy_session(target_session_id)
    except Exception as e:
        logfire.error(f"Logout error: {str(e)}")
        raise http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Logout failed", "LOGOUT_ERROR")

    return MessageResponse(message="Logout successful")


@router.get(
    "/me",
    status_code=status.HTTP_200_OK,
    response_model=CurrentUserResponse,
)
async def get_current_user(
    context: Annotated[AuthContext, Depends(require_auth)],
):
    """Return the authenticated user's profile and session."""
    return CurrentUserResponse(data=CurrentUserData(user=context.user, session=context.session))


@router.post(
    "/refresh",
    status_code=status.HTTP_200_OK,
    response_model=RefreshResponse,
)
async def refresh_session(
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    session_id: Annotated[Optional[str], Depends(session_id_header)],
):
    """Extend the session named by `X-Session-ID` and issue a fresh token for it."""
    if not session_id:
        raise http_error(status.HTTP_400_BAD_REQUEST, "Session ID required", "MISSING_SESSION_ID")

    try:
        token, session = await auth_service.refresh_token(session_id)
    except AuthError as e:
        raise auth_error_response(e, "Failed to refresh session", "SESSION_REFRESH_ERROR")
    except Exception as e:
        logfire.error(f"Refresh session error: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to refresh session",
            "SESSION_REFRESH_ERROR",
        )

    return RefreshResponse(data=RefreshData(token=token, session=session))


@router.get(
    "/username/{username}",
    status_code=status.HTTP_200_OK,
    response_model=UsernameAvailabilityResponse,
)
async def check_username_availability(
    username: str,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Report whether `username` is well-formed and not yet taken."""
    is_valid, message = is_username_valid(username)
    if not is_valid:
        raise http_error(status.HTTP_400_BAD_REQUEST, message, "INVALID_USERNAME")

    try:
        available = await auth_service.is_username_available(username)
    except Exception as e:
        logfire.error(f"Username check error for {username}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to check username availability",
            "USERNAME_CHECK_ERROR",
        )

    return UsernameAvailabilityResponse(username=username.strip().lower(), available=available)


@router.post(
    "/change-password",
    status_code=status.HTTP_200_OK,
    response_model=MessageResponse,
)
async def change_password(
    payload: ChangePasswordRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    context: Annotated[AuthContext, Depends(require_auth)],
):
    """Change the authenticated user's password. Existing sessions stay valid.

    ### Possible failures
        - 400 `MISSING_FIELDS`, `WEAK_PASSWORD`, `PASSWORD_UNCHANGED`
        - 401 `INVALID_CREDENTIALS`
    """
    if not payload.current_password or not payload.new_password:
        raise http_error(
            status.HTTP_400_BAD_REQUEST,
            "Current password and new password are required",
            "MISSING_FIELDS",
        )

    try:
        await auth_service.change_password(
            user_id=context.user.id,
            current_password=payload.current_password,
            new_password=payload.new_password,
        )
    except AuthError as e:
        raise auth_error_response(e, "Failed to change password", "PASSWORD_CHANGE_ERROR")
    except Exception as e:
        logfire.error(f"Password change error for user {context.user.id}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to change password",
            "PASSWORD_CHANGE_ERROR",
        )

    return MessageResponse(message="Password changed successfully")


@router.post(
    "/verify-email",
    status_code=status.HTTP_200_OK,
    response_model=Union[AuthResponse, MessageResponse],
)
async def verify_email(
    payload: VerifyEmailRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Redeem the token from the verification email.

    Logs the account in unless it has 2FA enabled, in which case only a
    message is returned.

    ### Possible failures
        - 400 `MISSING_TOKEN`, `INVALID_VERIFICATION_TOKEN`
    """
    if not payload.token or not payload.token.strip():
        raise http_error(status.HTTP_400_BAD_REQUEST, "Verification token is required", "MISSING_TOKEN")

    try:
        result = await auth_service.verify_email(payload.token.strip())
    except AuthError as e:
        raise auth_error_response(e, "Failed to verify email", "EMAIL_VERIFICATION_ERROR")
    except Exception as e:
        logfire.error(f"Email verification error: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to verify email",
            "EMAIL_VERIFICATION_ERROR",
        )

    if result is None:
        return MessageResponse(message="Email verified successfully")

    return AuthResponse(message="Email verified successfully! Welcome to Gotchu!", data=_auth_data(result))


@router.post(
    "/resend-verification",
    status_code=status.HTTP_200_OK,
    response_model=MessageResponse,
)
async def resend_verification(
    payload: ResendVerificationRequest,
    background_tasks: BackgroundTasks,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
):
    """Email a fresh verification link. Unknown addresses get the same answer as known ones.

    ### Possible failures
        - 400 `INVALID_EMAIL`, `ALREADY_VERIFIED`
        - 429 `VERIFICATION_COOLDOWN`
    """
    is_valid, _ = is_email_valid(payload.email or "")
    if not is_valid:
        raise http_error(status.HTTP_400_BAD_REQUEST, "Valid email is required", "INVALID_EMAIL")

    try:
        issued = await auth_service.resend_verification(payload.email)
    except AuthError as e:
        raise auth_error_response(e, "Failed to send verification email", "RESEND_VERIFICATION_ERROR")
    except Exception as e:
        logfire.error(f"Resend verification error: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to send verification email",
            "RESEND_VERIFICATION_ERROR",
        )

    if issued is not None:
        user, token = issued
        background_tasks.add_task(
            auth_service.verification.send_verification_email, user.email, user.username, token
        )

    return MessageResponse(message="Verification email sent successfully")


@router.post(
    "/2fa/setup",
    status_code=status.HTTP_200_OK,
    response_model=TwoFactorSetupResponse,
)
async def setup_two_factor(
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    context: Annotated[AuthContext, Depends(require_auth)],
):
    """Generate a TOTP secret to load into an authenticator app. Confirm it with `/2fa/enable`.

    ### Possible failures
        - 409 `TWO_FACTOR_ALREADY_ENABLED`
    """
    try:
        secret, otpauth_url, expires_at = await auth_service.setup_two_factor(context.user)
    except AuthError as e:
        raise auth_error_response(e, "Failed to generate 2FA secret", "TWO_FACTOR_ERROR")
    except Exception as e:
        logfire.error(f"2FA setup error for user {context.user.id}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Failed to generate 2FA secret",
            "TWO_FACTOR_ERROR",
        )

    return TwoFactorSetupResponse(
        data=TwoFactorSetupData(secret=secret, otpauth_url=otpauth_url, expires_at=expires_at)
    )


@router.post(
    "/2fa/enable",
    status_code=status.HTTP_200_OK,
    response_model=MessageResponse,
)
async def enable_two_factor(
    payload: TwoFactorCodeRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    context: Annotated[AuthContext, Depends(require_auth)],
):
    """Turn 2FA on with a code from the authenticator app set up by `/2fa/setup`.

    ### Possible failures
        - 400 `MISSING_FIELDS`, `TWO_FACTOR_SETUP_REQUIRED`
        - 401 `INVALID_2FA_CODE`
    """
    if not payload.code:
        raise http_error(status.HTTP_400_BAD_REQUEST, "2FA code is required", "MISSING_FIELDS")

    try:
        await auth_service.enable_two_factor(context.user.id, payload.code)
    except AuthError as e:
        raise auth_error_response(e, "Failed to enable 2FA", "TWO_FACTOR_ERROR")
    except Exception as e:
        logfire.error(f"2FA enable error for user {context.user.id}: {str(e)}")
        raise http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to enable 2FA", "TWO_FACTOR_ERROR")

    return MessageResponse(message="2FA enabled successfully")


@router.post(
    "/2fa/disable",
    status_code=status.HTTP_200_OK,
    response_model=MessageResponse,
)
async def disable_two_factor(
    payload: DisableTwoFactorRequest,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    context: Annotated[AuthContext, Depends(require_auth)],
):
    """Turn 2FA off. Requires the account password.

    ### Possible failures
        - 400 `MISSING_FIELDS`, `TWO_FACTOR_NOT_ENABLED`
        - 401 `INVALID_CREDENTIALS`
    """
    if not payload.password:
        raise http_error(status.HTTP_400_BAD_REQUEST, "Password is required", "MISSING_FIELDS")

    try:
        await auth_service.disable_two_factor(context.user, payload.password)
    except AuthError as e:
        raise auth_error_response(e, "Failed to disable 2FA", "TWO_FACTOR_ERROR")
    except Exception as e:
        logfire.error(f"2FA disable error for user {context.user.id}: {str(e)}")
        raise http_error(status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to disable 2FA", "TWO_FACTOR_ERROR")

    return MessageResponse(message="2FA disabled successfully")
