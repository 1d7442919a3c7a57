"""Video upload and streaming routes.

Three upload paths, chosen by the ticket's target:
- provider-direct: client PUTs to the provider, then completes the ticket
- store-direct: client PUTs to a presigned store URL, then completes
- server-proxied: client POSTs multipart to /videos/upload

Routes are transport-only: one service call, success(...) or ApiError.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from coursecast.api.deps import get_db, get_storage, get_transcoder
from coursecast.auth.middleware import Viewer, get_viewer
from coursecast.responses import success_response
from coursecast.schemas.video import (
    CompleteTicketRequest,
    DirectUploadRequest,
    UploadTicketRequest,
)
from coursecast.services import playback as playback_service
from coursecast.services import upload as upload_service
from coursecast.services.transcoding import TranscodingAdapter
from coursecast.storage import StorageClientBase

router = APIRouter()


@router.post("/videos/upload-tickets", status_code=201)
def issue_upload_ticket(
    request: UploadTicketRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
) -> dict:
    """Reserve an upload for a lesson and pick where the bytes should go.

    Re-requesting with the same content_hash returns the live ticket.
    """
    result = upload_service.issue_upload_ticket(
        db,
        viewer.user_id,
        request.lesson_ref,
        request.filename,
        request.content_type,
        size_bytes=request.size_bytes,
        content_hash=request.content_hash,
        storage=storage,
        transcoder=transcoder,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/videos/upload-tickets/{ticket_id}/complete")
def complete_upload_ticket(
    ticket_id: UUID,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
    request: CompleteTicketRequest | None = None,
) -> dict:
    """Confirm the client finished its PUT. Safe to retry."""
    result = upload_service.complete_upload_ticket(
        db,
        viewer.user_id,
        ticket_id,
        size_bytes=request.size_bytes if request else None,
        storage=storage,
        transcoder=transcoder,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/videos/direct-upload")
def request_direct_upload(
    request: DirectUploadRequest,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
) -> dict:
    """Provider direct-upload URL for a lesson; 503 when the provider is unavailable."""
    result = upload_service.request_direct_upload(
        db,
        viewer.user_id,
        request.lesson_ref,
        request.filename,
        request.content_type,
        size_bytes=request.size_bytes,
        content_hash=request.content_hash,
        storage=storage,
        transcoder=transcoder,
    )
    return success_response(result.model_dump(mode="json"))


@router.post("/videos/upload")
def upload_video(
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
    transcoder: Annotated[TranscodingAdapter, Depends(get_transcoder)],
    lesson_ref: Annotated[int, Form()],
    file: Annotated[UploadFile, File()],
) -> dict:
    """Server-proxied upload: stream the file to the store and attach it."""
    result = upload_service.upload_video_file(
        db,
        viewer.user_id,
        lesson_ref,
        file.filename or "upload",
        file.content_type,
        file.file,
        storage=storage,
        transcoder=transcoder,
    )
    return success_response(result.model_dump(mode="json"))


@router.get("/videos/{filename}/stream")
def stream_video(
    filename: str,
    viewer: Annotated[Viewer, Depends(get_viewer)],
    db: Annotated[Session, Depends(get_db)],
    storage: Annotated[StorageClientBase, Depends(get_storage)],
) -> RedirectResponse:
    """302 to a signed URL for a store-hosted video. Range requests go to the store."""
    redirect = playback_service.resolve_stream_redirect(
        db, viewer.user_id, filename, storage=storage
    )
    return RedirectResponse(
        redirect.url,
        status_code=302,
        headers={"Cache-Control": f"private, max-age={redirect.expires_in}"},
    )
