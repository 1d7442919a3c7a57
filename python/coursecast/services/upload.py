"""Upload orchestration service layer.

Chooses and drives the upload path for a lesson video. The target is
picked once, when the ticket is issued, and never changes afterwards:

    provider-direct  client PUTs to a provider upload URL; webhooks drive status
    store-direct     client PUTs to a presigned store URL, then completes the ticket
    server-proxied   client POSTs multipart to /videos/upload

Key invariants:
- Tickets are one-shot. Completing twice returns the same video.
- Re-issuing for the same (uploader, lesson, content hash) returns the same
  ticket and never creates a second Video row.
- Stored bytes are verified (existence, size, magic bytes) before any Video
  row references them.
- Store writes happen before the attach transaction; a failed transaction
  leaves an orphan object for the sweep to collect.
"""

import hashlib
import os
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import BinaryIO, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursecast.config import Environment, Settings, get_settings
from coursecast.db.models import (
    Lesson,
    TicketStatus,
    UploadTargetKind,
    UploadTicket,
    Video,
    VideoStatus,
    as_utc,
    utcnow,
)
from coursecast.db.session import run_in_transaction
from coursecast.errors import (
    ApiError,
    ApiErrorCode,
    InvalidRequestError,
    NotFoundError,
    ServiceUnavailableError,
)
from coursecast.logging import get_logger, get_request_id
from coursecast.schemas.video import DirectUploadOut, UploadResultOut, UploadTicketOut
from coursecast.services.lessons import (
    attach_video,
    get_lesson_for_manager,
    lock_video,
    promote_video,
    set_video_status,
)
from coursecast.services.transcoding import (
    ProviderError,
    TranscodingAdapter,
    call_provider,
)
from coursecast.storage import (
    StorageClientBase,
    StorageError,
    StoreUnavailable,
    build_video_key,
    with_store_retry,
)

logger = get_logger(__name__)

T = TypeVar("T")

SERVER_PROXIED_UPLOAD_PATH = "/videos/upload"
MAGIC_PREFIX_LEN = 12

_EBML_MAGIC = b"\x1a\x45\xdf\xa3"
_OGG_MAGIC = b"OggS"
_FTYP_MAGIC = b"ftyp"

# Containers accepted for each declared MIME type
_MIME_CONTAINERS: dict[str, frozenset[str]] = {
    "video/mp4": frozenset({"mp4"}),
    "video/quicktime": frozenset({"mp4"}),
    "video/webm": frozenset({"webm"}),
    "video/ogg": frozenset({"ogg"}),
}


# =============================================================================
# Validation
# =============================================================================


def normalize_mime(content_type: str | None) -> str:
    """Lowercase MIME type without parameters ("video/webm;codecs=vp9" -> "video/webm")."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def detect_container(head: bytes) -> str | None:
    """Identify the container from its leading bytes."""
    if len(head) >= 8 and head[4:8] == _FTYP_MAGIC:
        return "mp4"
    if head.startswith(_EBML_MAGIC):
        return "webm"
    if head.startswith(_OGG_MAGIC):
        return "ogg"
    return None


def validate_video_declaration(
    content_type: str | None, size_bytes: int | None, settings: Settings
) -> str:
    """Check the declared MIME type and size. Returns the normalized MIME type.

    Raises:
        InvalidRequestError: E_INVALID_CONTENT_TYPE or E_FILE_TOO_LARGE.
    """
    mime = normalize_mime(content_type)
    if mime not in settings.allowed_video_mime_set:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CONTENT_TYPE,
            f"Unsupported video type '{mime or content_type}'. "
            f"Expected one of: {', '.join(sorted(settings.allowed_video_mime_set))}",
        )
    if size_bytes is not None and size_bytes > settings.max_video_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE,
            f"File size {size_bytes} bytes exceeds maximum {settings.max_video_bytes} bytes",
        )
    return mime


def validate_magic_bytes(head: bytes, mime: str) -> str:
    """Check that the file content matches a supported container for ``mime``.

    Raises:
        InvalidRequestError: E_INVALID_FILE_TYPE on mismatch.
    """
    container = detect_container(head)
    expected = _MIME_CONTAINERS.get(mime)
    if container is None or (expected is not None and container not in expected):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_FILE_TYPE,
            "File content does not match a supported video format",
        )
    return container


def ticket_fingerprint(uploader_id: UUID, lesson_id: int, content_hash: str | None) -> str:
    """Identity of a logical upload attempt.

    Without a content hash every request is a new attempt.
    """
    if not content_hash:
        return uuid4().hex
    return hashlib.sha256(f"{uploader_id}:{lesson_id}:{content_hash}".encode()).hexdigest()


# =============================================================================
# Store helpers
# =============================================================================


def _store_call(operation: Callable[[], T], *, action: str) -> T:
    """Run a store operation with backoff, mapping failures to API errors."""
    try:
        return with_store_retry(operation, action=action)
    except StoreUnavailable as e:
        raise ServiceUnavailableError(
            ApiErrorCode.E_STORE_UNAVAILABLE, "Object store unavailable, try again later"
        ) from e
    except StorageError as e:
        logger.error("store_call_failed", action=action, code=e.code, error=e.message)
        raise ApiError(ApiErrorCode.E_UPLOAD_FAILED, "Upload failed") from e


def _discard_object(storage: StorageClientBase, key: str, reason: str) -> None:
    try:
        storage.delete(key)
        logger.info("rejected_object_deleted", storage_key=key, reason=reason)
    except StorageError as e:
        # The orphan sweep collects it later.
        logger.warning("rejected_object_delete_failed", storage_key=key, error=e.message)


def _stored_upload_status(settings: Settings, transcoder: TranscodingAdapter) -> VideoStatus:
    """Store-hosted uploads are playable at once unless sent for transcoding."""
    if settings.transcode_stored_uploads and transcoder.is_configured:
        return VideoStatus.processing
    return VideoStatus.ready


# =============================================================================
# Ticket issuance
# =============================================================================


def _ticket_out(ticket: UploadTicket, now: datetime) -> UploadTicketOut:
    expires_at = as_utc(ticket.expires_at)
    target = UploadTargetKind(ticket.target)
    headers = {}
    if target == UploadTargetKind.store_direct:
        headers = {"Content-Type": ticket.content_type}
    return UploadTicketOut(
        ticket_id=ticket.id,
        target=target.value,
        status=TicketStatus(ticket.status).value,
        upload_url=ticket.upload_url or SERVER_PROXIED_UPLOAD_PATH,
        upload_headers=headers,
        upload_id=ticket.provider_upload_id,
        storage_key=ticket.storage_key,
        video_ref=ticket.video_id,
        expires_at=expires_at,
        expires_in=max(int((expires_at - now).total_seconds()), 0),
    )


def _reusable_video(db: Session, ticket: UploadTicket) -> Video | None:
    if ticket.video_id is None:
        return None
    video = db.get(Video, ticket.video_id)
    if video is None or video.superseded_at is not None:
        return None
    if VideoStatus(video.status) != VideoStatus.uploading:
        return None
    return video


def _try_provider_direct(
    db: Session,
    ticket: UploadTicket,
    lesson: Lesson,
    viewer_id: UUID,
    transcoder: TranscodingAdapter,
    settings: Settings,
    now: datetime,
) -> bool:
    try:
        upload = call_provider(
            lambda: transcoder.create_direct_upload(
                cors_origin=settings.provider_cors_origin, passthrough=str(ticket.id)
            ),
            action="create_direct_upload",
        )
    except ProviderError as e:
        logger.warning("direct_upload_unavailable", lesson_id=lesson.id, error=e.message)
        return False

    ticket.target = UploadTargetKind.provider_direct
    ticket.upload_url = upload.upload_url
    ticket.provider_upload_id = upload.upload_id
    ticket.storage_key = None
    ticket.expires_at = now + timedelta(seconds=upload.expires_in)

    video = _reusable_video(db, ticket)
    if video is None:
        video = Video(
            lesson_id=lesson.id,
            uploader_id=viewer_id,
            status=VideoStatus.uploading,
            original_filename=ticket.filename,
            content_type=ticket.content_type,
            size_bytes=ticket.size_bytes,
            created_at=now,
            updated_at=now,
        )
        db.add(video)
    video.provider_upload_id = upload.upload_id
    video.updated_at = now
    # The ticket row is flushed with the video, so it must be complete here.
    db.flush()
    ticket.video_id = video.id
    return True


def _try_store_direct(
    ticket: UploadTicket,
    lesson: Lesson,
    storage: StorageClientBase,
    settings: Settings,
    now: datetime,
) -> bool:
    if not storage.supports_presigned_upload:
        return False
    key = build_video_key(lesson.id, ticket.filename)
    try:
        presigned = with_store_retry(
            lambda: storage.presign_put(key, ticket.content_type, settings.signed_url_ttl_seconds),
            action="presign_put",
        )
    except StorageError as e:
        logger.warning("store_direct_unavailable", lesson_id=lesson.id, error=e.message)
        return False

    ticket.target = UploadTargetKind.store_direct
    ticket.upload_url = presigned.url
    ticket.storage_key = key
    ticket.provider_upload_id = None
    ticket.video_id = None
    ticket.expires_at = now + timedelta(seconds=presigned.expires_in)
    return True


def _assign_target(
    db: Session,
    ticket: UploadTicket,
    lesson: Lesson,
    viewer_id: UUID,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
    settings: Settings,
    now: datetime,
) -> None:
    ticket.status = TicketStatus.issued
    ticket.consumed_at = None

    if transcoder.supports_direct_upload and _try_provider_direct(
        db, ticket, lesson, viewer_id, transcoder, settings, now
    ):
        return
    if _try_store_direct(ticket, lesson, storage, settings, now):
        return

    ticket.target = UploadTargetKind.server_proxied
    ticket.upload_url = SERVER_PROXIED_UPLOAD_PATH
    ticket.storage_key = None
    ticket.provider_upload_id = None
    ticket.video_id = None
    ticket.expires_at = now + timedelta(seconds=settings.signed_url_ttl_seconds)


def _ticket_is_live(ticket: UploadTicket, now: datetime) -> bool:
    if TicketStatus(ticket.status) == TicketStatus.consumed:
        return True
    return TicketStatus(ticket.status) == TicketStatus.issued and as_utc(ticket.expires_at) > now


def issue_upload_ticket(
    db: Session,
    viewer_id: UUID,
    lesson_id: int,
    filename: str,
    content_type: str,
    size_bytes: int | None = None,
    content_hash: str | None = None,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> UploadTicketOut:
    """Issue (or re-issue) an upload ticket and choose its target.

    Target preference: provider-direct, then store-direct, then server-proxied.
    A ticket for the same logical attempt that is still valid, or already
    consumed, is returned unchanged. An expired one is re-issued in place.

    Raises:
        NotFoundError: Lesson does not exist.
        ForbiddenError: Viewer cannot manage the lesson's course.
        InvalidRequestError: Content type or size rejected.
    """
    settings = get_settings()
    mime = validate_video_declaration(content_type, size_bytes, settings)
    lesson = get_lesson_for_manager(db, viewer_id, lesson_id)
    fingerprint = ticket_fingerprint(viewer_id, lesson.id, content_hash)
    now = utcnow()

    ticket = db.execute(
        select(UploadTicket).where(UploadTicket.fingerprint == fingerprint)
    ).scalar_one_or_none()

    if ticket is not None and _ticket_is_live(ticket, now):
        logger.info("upload_ticket_reused", ticket_id=str(ticket.id), lesson_id=lesson.id)
        return _ticket_out(ticket, now)

    reissued = ticket is not None
    if ticket is None:
        ticket = UploadTicket(
            id=uuid4(),
            fingerprint=fingerprint,
            uploader_id=viewer_id,
            lesson_id=lesson.id,
            filename=filename,
            content_type=mime,
            size_bytes=size_bytes,
            status=TicketStatus.issued,
            created_at=now,
        )
        db.add(ticket)
    elif size_bytes is not None:
        ticket.size_bytes = size_bytes

    _assign_target(
        db,
        ticket,
        lesson,
        viewer_id,
        storage=storage,
        transcoder=transcoder,
        settings=settings,
        now=now,
    )

    try:
        db.commit()
    except IntegrityError:
        # Concurrent issue for the same attempt won the insert.
        db.rollback()
        ticket = db.execute(
            select(UploadTicket).where(UploadTicket.fingerprint == fingerprint)
        ).scalar_one()
        logger.info("upload_ticket_race_resolved", ticket_id=str(ticket.id))
        return _ticket_out(ticket, now)

    logger.info(
        "upload_ticket_issued",
        ticket_id=str(ticket.id),
        lesson_id=lesson.id,
        target=UploadTargetKind(ticket.target).value,
        reissued=reissued,
    )
    return _ticket_out(ticket, now)


def request_direct_upload(
    db: Session,
    viewer_id: UUID,
    lesson_id: int,
    filename: str,
    content_type: str,
    size_bytes: int | None = None,
    content_hash: str | None = None,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> DirectUploadOut:
    """Issue a provider-direct ticket and return just the provider upload URL.

    Raises:
        ServiceUnavailableError: The provider cannot take direct uploads right now.
    """
    if not transcoder.supports_direct_upload:
        raise ServiceUnavailableError(
            ApiErrorCode.E_PROVIDER_UNAVAILABLE, "Direct upload is not available"
        )
    ticket = issue_upload_ticket(
        db,
        viewer_id,
        lesson_id,
        filename,
        content_type,
        size_bytes,
        content_hash,
        storage=storage,
        transcoder=transcoder,
    )
    if ticket.target != UploadTargetKind.provider_direct.value or ticket.upload_id is None:
        raise ServiceUnavailableError(
            ApiErrorCode.E_PROVIDER_UNAVAILABLE, "Direct upload is not available"
        )
    return DirectUploadOut(
        upload_url=ticket.upload_url,
        upload_id=ticket.upload_id,
        expires_in=ticket.expires_in,
        ticket_id=ticket.ticket_id,
        video_ref=ticket.video_ref,
    )


# =============================================================================
# Ticket completion
# =============================================================================


def _result(video: Video) -> UploadResultOut:
    return UploadResultOut(
        video_ref=video.id,
        lesson_ref=video.lesson_id,
        status=VideoStatus(video.status).value,
        size_bytes=video.size_bytes,
    )


def _lock_ticket(db: Session, ticket_id: UUID) -> UploadTicket | None:
    return db.execute(
        select(UploadTicket).where(UploadTicket.id == ticket_id).with_for_update()
    ).scalar_one_or_none()


def _raise_expired(db: Session, ticket: UploadTicket) -> None:
    ticket.status = TicketStatus.expired
    db.commit()
    logger.info("upload_ticket_expired", ticket_id=str(ticket.id))
    raise ApiError(ApiErrorCode.E_TICKET_EXPIRED, "Upload ticket expired; request a new one")


def complete_upload_ticket(
    db: Session,
    viewer_id: UUID,
    ticket_id: UUID,
    size_bytes: int | None = None,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> UploadResultOut:
    """Finalize a direct upload and attach its video to the lesson.

    provider-direct: the pre-created video becomes the lesson's live video.
    store-direct: the stored object is verified, then attached.

    Raises:
        NotFoundError: Unknown ticket, or not the viewer's.
        ApiError: E_TICKET_EXPIRED (410) when the upload window has passed.
        InvalidRequestError: Object missing, too large, or not a video.
    """
    settings = get_settings()
    now = utcnow()

    ticket = _lock_ticket(db, ticket_id)
    if ticket is None or ticket.uploader_id != viewer_id:
        raise NotFoundError(ApiErrorCode.E_TICKET_NOT_FOUND, "Upload ticket not found")

    if TicketStatus(ticket.status) == TicketStatus.consumed:
        video = db.get(Video, ticket.video_id)
        db.commit()
        return _result(video)

    target = UploadTargetKind(ticket.target)
    if target == UploadTargetKind.server_proxied:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"Server-proxied tickets complete through POST {SERVER_PROXIED_UPLOAD_PATH}",
        )

    expired = TicketStatus(ticket.status) == TicketStatus.expired or as_utc(
        ticket.expires_at
    ) <= now

    if target == UploadTargetKind.provider_direct:
        video = db.get(Video, ticket.video_id)
        arrived = video is not None and VideoStatus(video.status) != VideoStatus.uploading
        # Once the provider has the bytes the URL expiry no longer matters.
        if expired and not arrived:
            _raise_expired(db, ticket)
        if VideoStatus(video.status) != VideoStatus.failed:
            promote_video(db, video, now)
        if size_bytes is not None and video.size_bytes is None:
            video.size_bytes = size_bytes
        ticket.status = TicketStatus.consumed
        ticket.consumed_at = now
        db.commit()
        logger.info("upload_ticket_completed", ticket_id=str(ticket.id), video_id=str(video.id))
        return _result(video)

    if expired:
        _raise_expired(db, ticket)

    key = ticket.storage_key
    lesson_id = ticket.lesson_id
    filename = ticket.filename
    mime = ticket.content_type
    # Release the ticket lock while talking to the store.
    db.commit()

    metadata = _store_call(lambda: storage.head(key), action="head")
    if metadata is None:
        raise InvalidRequestError(
            ApiErrorCode.E_STORAGE_MISSING, "Uploaded object not found; upload the file first"
        )
    if metadata.size_bytes > settings.max_video_bytes:
        _discard_object(storage, key, "too_large")
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE,
            f"File size {metadata.size_bytes} bytes exceeds maximum "
            f"{settings.max_video_bytes} bytes",
        )
    if size_bytes is not None and size_bytes != metadata.size_bytes:
        logger.warning(
            "upload_size_mismatch",
            ticket_id=str(ticket_id),
            declared=size_bytes,
            stored=metadata.size_bytes,
        )

    head = _store_call(lambda: storage.read_prefix(key, MAGIC_PREFIX_LEN), action="read_prefix")
    try:
        validate_magic_bytes(head, mime)
    except InvalidRequestError:
        _discard_object(storage, key, "magic_mismatch")
        raise

    status = _stored_upload_status(settings, transcoder)

    def work() -> Video:
        locked = _lock_ticket(db, ticket_id)
        if TicketStatus(locked.status) == TicketStatus.consumed:
            return db.get(Video, locked.video_id)
        video = attach_video(
            db,
            lesson_id,
            viewer_id,
            storage_key=key,
            size_bytes=metadata.size_bytes,
            status=status,
            original_filename=filename,
            content_type=mime,
            now=now,
        )
        locked.status = TicketStatus.consumed
        locked.consumed_at = now
        locked.video_id = video.id
        locked.size_bytes = metadata.size_bytes
        return video

    video = run_in_transaction(db, work)
    logger.info("upload_ticket_completed", ticket_id=str(ticket_id), video_id=str(video.id))

    if VideoStatus(video.status) == VideoStatus.processing and not video.provider_asset_id:
        _enqueue_submit_stored_video(video.id, get_request_id())
    return _result(video)


# =============================================================================
# Server-proxied upload
# =============================================================================


def _file_size(fileobj: BinaryIO) -> int:
    fileobj.seek(0, os.SEEK_END)
    size = fileobj.tell()
    fileobj.seek(0)
    return size


def upload_video_file(
    db: Session,
    viewer_id: UUID,
    lesson_id: int,
    filename: str,
    content_type: str | None,
    fileobj: BinaryIO,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> UploadResultOut:
    """Accept a multipart upload, store it, and attach it to the lesson.

    Checks run before any bytes are written: MIME in the allowed set,
    size <= MAX_VIDEO_BYTES, magic bytes matching the declared container.

    Raises:
        InvalidRequestError: 400 for type/content errors, 413 for size.
        ServiceUnavailableError: Store still failing after retries.
        ApiError: E_UPLOAD_FAILED on a terminal store error.
    """
    settings = get_settings()
    mime = validate_video_declaration(content_type, None, settings)
    lesson = get_lesson_for_manager(db, viewer_id, lesson_id)

    size = _file_size(fileobj)
    if size == 0:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_FILE_TYPE, "Uploaded file is empty")
    if size > settings.max_video_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE,
            f"File size {size} bytes exceeds maximum {settings.max_video_bytes} bytes",
        )
    validate_magic_bytes(fileobj.read(MAGIC_PREFIX_LEN), mime)

    key = build_video_key(lesson.id, filename or "video")

    def put() -> None:
        fileobj.seek(0)
        storage.put(key, fileobj, mime)

    _store_call(put, action="video_put")
    logger.info("video_object_stored", lesson_id=lesson.id, storage_key=key, size_bytes=size)

    status = _stored_upload_status(settings, transcoder)
    video = run_in_transaction(
        db,
        lambda: attach_video(
            db,
            lesson.id,
            viewer_id,
            storage_key=key,
            size_bytes=size,
            status=status,
            original_filename=filename,
            content_type=mime,
        ),
    )
    logger.info("video_uploaded", lesson_id=lesson.id, video_id=str(video.id), status=status.value)

    if status == VideoStatus.processing:
        _enqueue_submit_stored_video(video.id, get_request_id())
    return _result(video)


# =============================================================================
# Server-side transcode trigger
# =============================================================================


def _enqueue_submit_stored_video(video_id: UUID, request_id: str | None) -> bool:
    """Enqueue the submit_stored_video Celery task.

    Returns:
        True if the task was enqueued, False otherwise.
    """
    settings = get_settings()

    # In test environment, don't enqueue - let tests call the service directly
    if settings.coursecast_env == Environment.TEST:
        logger.debug("skipping_task_enqueue", reason="test_environment")
        return False

    try:
        from coursecast.tasks import submit_stored_video_task

        submit_stored_video_task.apply_async(
            args=[str(video_id)],
            kwargs={"request_id": request_id},
            queue="transcode",
        )
        logger.info("submit_task_enqueued", video_id=str(video_id), request_id=request_id)
        return True
    except Exception as e:
        # Provider status sync picks the video up later.
        logger.warning("submit_task_enqueue_failed", video_id=str(video_id), error=str(e))
        return False


def submit_stored_video(
    db: Session,
    video_id: UUID,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> str | None:
    """Hand a store-hosted video to the provider for transcoding.

    Terminal provider failures (or transient ones after retries) mark the
    video failed with the error string.

    Returns:
        The provider asset id, or None if nothing was submitted.
    """
    settings = get_settings()
    video = db.get(Video, video_id)
    if video is None:
        logger.warning("submit_video_missing", video_id=str(video_id))
        return None
    if (
        VideoStatus(video.status) != VideoStatus.processing
        or video.provider_asset_id
        or not video.storage_key
    ):
        logger.info("submit_skipped", video_id=str(video_id), status=video.status)
        return None

    key = video.storage_key
    try:
        source_url = with_store_retry(
            lambda: storage.presign_get(key, settings.signed_url_ttl_seconds),
            action="presign_get",
        )
        asset_id = call_provider(
            lambda: transcoder.submit(source_url, passthrough=str(video_id)),
            action="submit",
        )
    except (ProviderError, StorageError) as e:
        db.rollback()
        set_video_status(
            db, video_id, VideoStatus.failed, error=f"transcode_submit_failed: {e.message}"
        )
        return None

    locked = lock_video(db, video_id)
    if locked is not None and not locked.provider_asset_id:
        locked.provider_asset_id = asset_id
        locked.updated_at = utcnow()
    db.commit()
    logger.info("video_submitted", video_id=str(video_id), asset_id=asset_id)
    return asset_id
