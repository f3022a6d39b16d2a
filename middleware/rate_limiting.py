"""
FastAPI Rate Limiting Middleware using a Redis fixed window

This module applies a per-client request budget shared by every API instance.
Counters live in the session store under `rate_limit:global:<client>`, so the
limit holds across workers. When the store is down requests are let through.
"""

import time
import logfire

from typing import Callable, Optional

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from services.rate_limiter import RateLimiter


GLOBAL_RATE_LIMIT_PREFIX = "global:"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    FastAPI middleware for rate limiting using fixed windows in Redis.

    This middleware tracks requests per client IP address and enforces
    `max_requests` per `window_seconds` using the application's `RateLimiter`.
    """

    def __init__(
        self,
        app: FastAPI,
        max_requests: int = 100,
        window_seconds: int = 300,
        exclude_paths: Optional[list] = None,
    ):
        """
        Initialize the rate limiting middleware.

        Args:
            app: FastAPI application instance
            max_requests: Maximum requests allowed per window (default: 100)
            window_seconds: Window length in seconds (default: 300)
            exclude_paths: List of paths to exclude from rate limiting (default: None)
        """
        super().__init__(app)

        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.exclude_paths = set(exclude_paths) if exclude_paths else set()

        logfire.info(
            f"Rate limiter initialized: {max_requests} requests per {window_seconds}s"
        )

    def _get_client_identifier(self, request: Request) -> str:
        """
        Extract client identifier from the request.

        `ProxyHeadersMiddleware` has already replaced the client address with the
        forwarded one when the request came through a trusted proxy, so raw
        X-Forwarded-For headers are never read here.
        """
        return request.client.host if request.client else "unknown"

    def _should_exclude_path(self, path: str) -> bool:
        return path in self.exclude_paths

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process incoming requests and enforce rate limiting.

        Returns:
            The downstream response with rate limit headers, or a 429 JSON response
        """
        if self._should_exclude_path(request.url.path):
            return await call_next(request)

        rate_limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if rate_limiter is None:
            return await call_next(request)

        client_id = self._get_client_identifier(request)

        result = await rate_limiter.check_rate_limit(
            f"{GLOBAL_RATE_LIMIT_PREFIX}{client_id}",
            self.max_requests,
            self.window_seconds,
        )

        headers = {
            "X-Global-RateLimit-Limit": str(result.limit),
            "X-Global-RateLimit-Remaining": str(result.remaining),
            "X-Global-RateLimit-Reset": str(result.reset_at),
        }

        if result.exceeded:
            logfire.warning(f"Rate limit exceeded for {client_id} on {request.url.path}")

            retry_after = max(0, result.reset_at - int(time.time()))
            headers["Retry-After"] = str(retry_after)

            return JSONResponse(
                status_code=429,
                content={
                    "success": False,
                    "error": "Too many requests. Please try again later.",
                    "code": "RATE_LIMITED",
                },
                headers=headers,
            )

        response = await call_next(request)

        response.headers.update(headers)

        return response
