"""Subtitle routes."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from coursecast.api.deps import get_db, get_storage
from coursecast.auth.middleware import Viewer, get_viewer
from coursecast.config import get_settings
from coursecast.responses import success_response
from coursecast.services import subtitles as subtitles_service
from coursecast.storage import StorageClientBase

router = APIRouter()


@router.post("/videos/subtitles", status_code=201)
def upload_subtitle(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    lesson_ref: Annotated[int, Form()],
    language_code: Annotated[str, Form()],
    language_name: Annotated[str, Form()],
    file: Annotated[UploadFile, File()],
) -> dict:
    """Upload a WebVTT or SubRip track for one language of a lesson."""
    # One byte past the limit is enough for the size check.
    content = file.file.read(get_settings().max_subtitle_bytes + 1)
    result = subtitles_service.upload_subtitle(
        db,
        viewer.user_id,
        lesson_ref,
        language_code,
        language_name,
        file.content_type,
        content,
        storage=storage,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/videos/subtitles/{filename}")
def get_subtitle(
    filename: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> RedirectResponse:
    redirect = subtitles_service.resolve_subtitle_redirect(
        db, viewer.user_id, filename, storage=storage
    )
    return RedirectResponse(redirect.url, status_code=302)


@router.delete("/videos/subtitles/{subtitle_id}", status_code=204)
def delete_subtitle(
    subtitle_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
) -> Response:
    subtitles_service.delete_subtitle(db, viewer.user_id, subtitle_id)
    return Response(status_code=204)
