"""Lesson routes.

Routes are transport-only:
- Extract viewer_user_id from request.state
- Call exactly one service function
- Return success(...) or raise ApiError
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from coursecast.api.deps import get_db, get_storage, get_transcoder
from coursecast.auth.middleware import Viewer, get_viewer
from coursecast.responses import success_response
from coursecast.schemas.lesson import CreateLessonRequest
from coursecast.services import lessons as lessons_service
from coursecast.services import playback as playback_service
from coursecast.services import subtitles as subtitles_service
from coursecast.services.transcoding import TranscodingAdapter
from coursecast.storage import StorageClientBase

router = APIRouter()


@router.post("/courses/{course_id}/lessons", status_code=201)
def create_lesson(
    course_id: int,
    request: CreateLessonRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Create a lesson in a course the viewer manages."""
    result = lessons_service.create_lesson(
        db,
        viewer.user_id,
        course_id,
        title=request.title,
        description=request.description,
        order_index=request.order_index,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/lessons/{lesson_id}")
def get_lesson(
    lesson_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    """Lesson metadata with its live video summary and subtitle tracks."""
    result = lessons_service.get_lesson_metadata(db, viewer.user_id, lesson_id)
    return success_response(result.model_dump(mode="json"))


@router.get("/lessons/{lesson_id}/video")
def get_lesson_video(
    lesson_id: int,
    response: Response,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
) -> dict:
    """Resolve the lesson's video to a playable URL.

    Playback URLs are private to the viewer and expire with their
    signature, so the response may only be cached until then.
    """
    result = playback_service.get_lesson_playback(
        db, viewer.user_id, lesson_id, storage=storage, transcoder=transcoder
    )
    if result.stream_url and result.expires_in:
        response.headers["Cache-Control"] = f"private, max-age={result.expires_in}"
    else:
        response.headers["Cache-Control"] = "no-store"
    return success_response(result.model_dump(mode="json"))


@router.delete("/lessons/{lesson_id}/video", status_code=204)
def delete_lesson_video(
    lesson_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    """Detach the lesson's video. Stored bytes are deleted asynchronously."""
    lessons_service.delete_lesson_video(db, viewer.user_id, lesson_id)
    return Response(status_code=204)


@router.get("/lessons/{lesson_id}/subtitles")
def list_lesson_subtitles(
    lesson_id: int,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> dict:
    result = subtitles_service.list_subtitles(db, viewer.user_id, lesson_id)
    return success_response([s.model_dump(mode="json") for s in result])
