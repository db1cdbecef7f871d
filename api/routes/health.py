"""
Health Check Route
==================
Liveness endpoint for Docker healthcheck and monitoring, with a count of
the chat sessions currently bound in this process.
"""

from fastapi import APIRouter, Request
from starlette.responses import JSONResponse

router = APIRouter()


@router.get("/health")
async def health_check(request: Request):
    """Returns 200 while the API server is running."""
    sessions = getattr(request.app.state, "sessions", None)
    return JSONResponse(
        {
            "status": "healthy",
            "service": "blinkchat-api",
            "live_sessions": len(sessions) if sessions is not None else 0,
        }
    )
