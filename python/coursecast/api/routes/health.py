"""Health check endpoints."""

from fastapi import APIRouter

from coursecast.responses import success_response

router = APIRouter()


@router.get("/health")
async def health_check() -> dict:
    """Liveness check. Does not touch the database, store or provider."""
    return success_response({"status": "ok"})
