"""
Health router reporting whether the session store is reachable.
"""

import logfire

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from security.errors import StoreUnavailable


router = APIRouter(tags=["Health"])


@router.get("/health", status_code=status.HTTP_200_OK)
async def health(request: Request):
    try:
        await request.app.state.session_store.ping()
    except StoreUnavailable as e:
        logfire.error(f"Health check failed, Redis unavailable: {str(e)}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "degraded", "redis": "unavailable"},
        )

    return {"status": "ok", "redis": "connected"}
