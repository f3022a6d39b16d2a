import os
import logfire
import uvicorn

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from contextlib import asynccontextmanager

from typing import Optional

from middleware.rate_limiting import RateLimitMiddleware

from motor.motor_asyncio import AsyncIOMotorClient
from beanie import init_beanie

from config.settings import Settings, get_settings

from models.users import User, UserCredential

from routers import auth, health

from security.errors import StoreUnavailable

from services.auth import AuthService
from services.rate_limiter import RateLimiter
from services.session_store import SessionStore
from services.users import BeanieUserRepository, UserRepository

from utils.exception_handlers import (
    general_exception_handler,
    http_exception_handler,
    validation_exception_handler,
)
from utils.logger import configure_logging, instrument_libraries


def create_app(
    settings: Optional[Settings] = None,
    session_store: Optional[SessionStore] = None,
    user_repository: Optional[UserRepository] = None,
) -> FastAPI:
    """Build the API.

    Args:
        settings (Optional[Settings]): Defaults to the environment-derived settings.
        session_store (Optional[SessionStore]): Defaults to a Redis store built from `settings`.
        user_repository (Optional[UserRepository]): Defaults to MongoDB via Beanie,
            initialized during startup.

    Returns:
        FastAPI: The configured application.
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logfire.info("Starting Gotchu API...")

        store = session_store or SessionStore.from_settings(settings)
        try:
            await store.connect()
        except StoreUnavailable:
            # Connection is retried lazily on first use
            logfire.error("Redis unavailable at startup, continuing without it")

        mongo_client = None
        repository = user_repository
        if repository is None:
            mongo_client = AsyncIOMotorClient(
                settings.database_connection_string,
                serverSelectionTimeoutMS=settings.database_timeout_ms,
            )  # * Connect to MongoDB

            await init_beanie(
                database=mongo_client[settings.database_name],
                document_models=[User, UserCredential],
            )
            logfire.info("Database initialized successfully")
            repository = BeanieUserRepository()

        app.state.session_store = store
        app.state.rate_limiter = RateLimiter(store)
        app.state.auth_service = AuthService.from_settings(settings, store, repository)

        yield

        logfire.info("Shutting down Gotchu API...")
        if mongo_client is not None:
            mongo_client.close()
        await store.close()
        logfire.info("Application shutdown complete")

    app = FastAPI(
        title="Gotchu API",
        description="Authentication and session management for Gotchu profiles.",
        lifespan=lifespan,
    )

    if settings.logfire_token:
        instrument_libraries(app)

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    app.add_middleware(
        RateLimitMiddleware,
        max_requests=settings.rate_limit_max,
        window_seconds=settings.rate_limit_window,
        exclude_paths=["/health", "/docs", "/redoc", "/openapi.json"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
            "X-Global-RateLimit-Limit",
            "X-Global-RateLimit-Remaining",
            "X-Global-RateLimit-Reset",
            "Retry-After",
        ],
    )
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts=["127.0.0.1"])

    app.include_router(auth.router)
    app.include_router(health.router)

    return app


# Configure logfire BEFORE creating FastAPI app
configure_logging(token=os.getenv("LOGFIRE_WRITE_TOKEN"))

app = create_app()


if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
