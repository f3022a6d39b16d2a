"""Request authentication gates implemented as FastAPI dependencies.

A request is identified by the `X-Session-ID` header first and by an
`Authorization: Bearer <jwt>` header second. Either way the identity only
holds while the referenced server-side session is alive.
"""

import time
import logfire

from fastapi import Depends, Request, Response, status
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer

from typing import Annotated, Dict, Optional

from models.helpers import ADMIN_PLANS, PREMIUM_PLANS
from schema.security import RateLimitResult
from schema.users import AuthContext
from security.errors import InvalidToken, RateLimited, http_error
from services.auth import AuthService


session_id_header = APIKeyHeader(name="X-Session-ID", auto_error=False)
bearer_scheme = HTTPBearer(auto_error=False)


class _Unauthenticated(Exception):
    """Internal signal carrying the 401 code for a failed resolution."""

    def __init__(self, error: str, code: str):
        self.error = error
        self.code = code
        super().__init__(error)


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


async def _resolve_identity(
    auth_service: AuthService,
    session_id: Optional[str],
    credentials: Optional[HTTPAuthorizationCredentials],
) -> AuthContext:
    """Resolve headers into a user and session.

    Raises:
        _Unauthenticated: When the request carries no usable identity.
        StoreUnavailable | RepositoryUnavailable: On infrastructure failures.
    """
    if not session_id and credentials is None:
        raise _Unauthenticated("Authentication required", "AUTH_REQUIRED")

    session = None
    resolved_session_id = None

    if session_id:
        session = await auth_service.validate_session(session_id)
        resolved_session_id = session_id

    if session is None and credentials is not None:
        try:
            claims = auth_service.verify_jwt(credentials.credentials)
        except InvalidToken:
            raise _Unauthenticated("Invalid or expired token", "INVALID_TOKEN")

        session = await auth_service.validate_session(claims.session_id)
        resolved_session_id = claims.session_id

    if session is None:
        raise _Unauthenticated("Invalid or expired session", "INVALID_SESSION")

    user = await auth_service.get_user_by_id(session.user_id)
    if user is None or not user.is_active:
        raise _Unauthenticated("User account not found or inactive", "USER_INACTIVE")

    return AuthContext(user=user, session=session, session_id=resolved_session_id)


async def require_auth(
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    session_id: Annotated[Optional[str], Depends(session_id_header)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> AuthContext:
    """Reject the request unless it carries a live session for an active user.

    Raises:
        HTTPException: 401 with `AUTH_REQUIRED`, `INVALID_TOKEN`, `INVALID_SESSION`
            or `USER_INACTIVE`; 500 with `AUTH_ERROR` on any other failure.

    Returns:
        AuthContext: The authenticated user and session, also set on `request.state`.
    """
    try:
        context = await _resolve_identity(auth_service, session_id, credentials)
    except _Unauthenticated as e:
        raise http_error(status.HTTP_401_UNAUTHORIZED, e.error, e.code)
    except Exception as e:
        logfire.error(f"Auth middleware error on {request.url.path}: {str(e)}")
        raise http_error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal authentication error",
            "AUTH_ERROR",
        ) from e

    request.state.user = context.user
    request.state.session = context.session
    return context


async def optional_auth(
    request: Request,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    session_id: Annotated[Optional[str], Depends(session_id_header)],
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> AuthContext:
    """Like `require_auth`, but any failure yields an anonymous context instead of an error."""
    try:
        context = await _resolve_identity(auth_service, session_id, credentials)
    except _Unauthenticated:
        context = AuthContext()
    except Exception as e:
        logfire.warning(f"Optional auth failed on {request.url.path}, continuing anonymously: {str(e)}")
        context = AuthContext()

    request.state.user = context.user
    request.state.session = context.session
    return context


async def require_admin(
    context: Annotated[AuthContext, Depends(require_auth)],
) -> AuthContext:
    if context.user.plan not in ADMIN_PLANS:
        raise http_error(status.HTTP_403_FORBIDDEN, "Admin access required", "ADMIN_REQUIRED")
    return context


async def require_premium(
    context: Annotated[AuthContext, Depends(require_auth)],
) -> AuthContext:
    if context.user.plan not in PREMIUM_PLANS:
        raise http_error(status.HTTP_403_FORBIDDEN, "Premium subscription required", "PREMIUM_REQUIRED")
    return context


def rate_limit_headers(result: RateLimitResult) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(result.limit),
        "X-RateLimit-Remaining": str(result.remaining),
        "X-RateLimit-Reset": str(result.reset_at),
    }


async def rate_limit_auth(
    request: Request,
    response: Response,
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> Optional[str]:
    """Count an authentication attempt against the identifier in the JSON body.

    The identifier is `identifier`, else `username`, else `email`. Without one
    no attempt is counted and the endpoint reports the missing field.

    Raises:
        HTTPException: 429 with `RATE_LIMITED` and `Retry-After` once the budget is spent.

    Returns:
        Optional[str]: The identifier that was counted, so the endpoint can clear it on success.
    """
    try:
        body = await request.json()
    except ValueError:
        body = None

    if not isinstance(body, dict):
        return None

    identifier = body.get("identifier") or body.get("username") or body.get("email")
    if not identifier or not isinstance(identifier, str):
        return None

    try:
        result = await auth_service.check_auth_rate_limit(identifier)
    except RateLimited as e:
        request.state.auth_rate_limit = e.result
        headers = rate_limit_headers(e.result)
        headers["Retry-After"] = str(max(0, e.result.reset_at - int(time.time())))
        raise http_error(status.HTTP_429_TOO_MANY_REQUESTS, e.message, "RATE_LIMITED", headers=headers)

    # Error responses pick these up from request.state in the HTTPException handler
    request.state.auth_rate_limit = result
    response.headers.update(rate_limit_headers(result))
    return identifier
