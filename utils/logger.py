"""Universal logfire setup for the application."""

import logfire

from fastapi import FastAPI


def configure_logging(token: str | None = None):
    """Configure logfire. Spans are only exported when a write token is present."""
    logfire.configure(token=token, send_to_logfire="if-token-present", service_name="gotchu-api")


def instrument_libraries(app: FastAPI):
    """Instrument common libraries for better observability."""
    logfire.instrument_fastapi(app)
    logfire.instrument_pymongo()
    logfire.instrument_redis()
