"""Route registration. Each module under routes/ owns one URL prefix."""

from fastapi import APIRouter

from coursecast.api.routes.health import router as health_router
from coursecast.api.routes.lessons import router as lessons_router
from coursecast.api.routes.notifications import router as notifications_router
from coursecast.api.routes.subtitles import router as subtitles_router
from coursecast.api.routes.videos import router as videos_router
from coursecast.api.routes.webhooks import router as webhooks_router


def create_api_router() -> APIRouter:
    """Create the API router with every route group registered.

    Subtitle routes are registered before video routes so that
    /videos/subtitles/... never falls through to /videos/{filename}/....
    """
    api_router = APIRouter()
    api_router.include_router(health_router, tags=["health"])
    api_router.include_router(lessons_router, tags=["lessons"])
    api_router.include_router(subtitles_router, tags=["subtitles"])
    api_router.include_router(videos_router, tags=["videos"])
    api_router.include_router(webhooks_router, tags=["webhooks"])
    api_router.include_router(notifications_router, tags=["notifications"])
    return api_router


__all__ = ["create_api_router"]
