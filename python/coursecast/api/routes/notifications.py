"""Availability subscription and notification routes."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.orm import Session

from coursecast.api.deps import get_db
from coursecast.auth.middleware import Viewer, get_viewer
from coursecast.responses import success_response
from coursecast.services import notifications as notifications_service

router = APIRouter()


@router.post("/lessons/{lesson_id}/notify-when-ready", status_code=201)
def subscribe(
    lesson_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Ask to be notified once the lesson's video is ready.

    400 E_ALREADY_SUBSCRIBED on a duplicate. A subscription on an already
    ready video is delivered by the next reconciliation pass.
    """
    result = notifications_service.subscribe_for_viewer(db, viewer.user_id, lesson_id)
    return success_response(result.model_dump(mode="json"))


@router.delete("/lessons/{lesson_id}/notify-when-ready", status_code=204)
def unsubscribe(
    lesson_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    notifications_service.unsubscribe_for_viewer(db, viewer.user_id, lesson_id)
    return Response(status_code=204)


@router.get("/me/video-subscriptions")
def list_subscriptions(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = notifications_service.list_subscriptions(db, viewer.user_id)
    return success_response([s.model_dump(mode="json") for s in result])


@router.get("/me/notifications")
def list_notifications(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    limit: Annotated[int, Query(ge=1, le=100)] = 50,
    unread_only: bool = False,
) -> dict:
    """Newest-first in-app notifications for the viewer."""
    result = notifications_service.list_notifications(
        db, viewer.user_id, limit=limit, unread_only=unread_only
    )
    return success_response([n.model_dump(mode="json") for n in result])
