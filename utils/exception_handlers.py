"""Application-wide exception handlers rendering the `{"success": false, "error", "code"}` body."""

import logfire

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from middleware.auth import rate_limit_headers


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Flatten `HTTPException` details built by `security.errors.http_error`"""
    if isinstance(exc.detail, dict) and "code" in exc.detail:
        error = exc.detail.get("error")
        code = exc.detail["code"]
    else:
        error = exc.detail
        code = f"HTTP_{exc.status_code}"

    if exc.status_code >= 500:
        logfire.error(f"HTTP {exc.status_code} {code} on {request.url.path}")
    else:
        logfire.debug(f"HTTP {exc.status_code} {code} on {request.url.path}")

    # The attempt was counted even though the endpoint failed
    headers = {}
    auth_rate_limit = getattr(request.state, "auth_rate_limit", None)
    if auth_rate_limit is not None:
        headers.update(rate_limit_headers(auth_rate_limit))
    headers.update(getattr(exc, "headers", None) or {})

    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": error, "code": code},
        headers=headers or None,
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logfire.warning("Validation error on {path}", path=request.url.path, errors=exc.errors())

    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Invalid request data",
            "code": "VALIDATION_ERROR",
            "errors": jsonable_encoder(exc.errors()),
        },
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logfire.error(f"Unexpected error on {request.url.path}: {str(exc)}")

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"success": False, "error": "Internal server error", "code": "INTERNAL_ERROR"},
    )
