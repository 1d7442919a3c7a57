"""Subtitle track service layer.

One WebVTT track per (lesson, language). SubRip uploads are converted to
WebVTT before storage so players only ever see one format.
"""

import re
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursecast.auth.permissions import can_view_lesson
from coursecast.config import get_settings
from coursecast.db.models import Subtitle, utcnow
from coursecast.errors import (
    ApiError,
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    ServiceUnavailableError,
)
from coursecast.logging import get_logger
from coursecast.schemas.subtitle import SubtitleOut
from coursecast.services.lessons import (
    enqueue_deletion,
    get_lesson_for_manager,
    get_lesson_for_viewer,
    subtitle_out,
)
from coursecast.services.playback import SignedRedirect
from coursecast.storage import (
    StorageClientBase,
    StorageError,
    StoreUnavailable,
    build_subtitle_key,
    sanitize_name,
    with_store_retry,
)

logger = get_logger(__name__)

LANGUAGE_CODE_RE = re.compile(r"[a-z]{2,3}(-[A-Z]{2,3})?")
LANGUAGE_NAME_MAX_LEN = 100
ALLOWED_SUBTITLE_MIMES = frozenset({"text/vtt", "application/x-subrip", "text/plain"})

_SRT_TIMING_RE = re.compile(
    r"^(\d{1,2}:\d{2}:\d{2}),(\d{3})(\s+-->\s+)(\d{1,2}:\d{2}:\d{2}),(\d{3})(.*)$"
)


def srt_to_vtt(text: str) -> str:
    """Convert SubRip text to WebVTT (comma decimal separators become dots)."""
    lines = []
    for line in text.replace("\r\n", "\n").replace("\r", "\n").split("\n"):
        match = _SRT_TIMING_RE.match(line)
        if match:
            start, start_ms, arrow, end, end_ms, rest = match.groups()
            line = f"{start}.{start_ms}{arrow}{end}.{end_ms}{rest}"
        lines.append(line)
    return "WEBVTT\n\n" + "\n".join(lines).strip() + "\n"


def _looks_like_srt(text: str) -> bool:
    return any(_SRT_TIMING_RE.match(line.strip()) for line in text.splitlines()[:20])


def normalize_subtitle(content: bytes) -> bytes:
    """Return WebVTT bytes for a WebVTT or SubRip upload.

    Raises:
        InvalidRequestError: Not UTF-8 text, or neither format.
    """
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_FILE_TYPE, "Subtitles must be UTF-8 text"
        ) from e

    if text.lstrip().startswith("WEBVTT"):
        return text.lstrip().encode("utf-8")
    if _looks_like_srt(text):
        return srt_to_vtt(text).encode("utf-8")
    raise InvalidRequestError(
        ApiErrorCode.E_INVALID_FILE_TYPE, "Subtitles must be WebVTT or SubRip"
    )


def validate_subtitle_fields(
    language_code: str, language_name: str, content_type: str | None, size_bytes: int
) -> str:
    """Validate upload metadata. Returns the trimmed language name."""
    settings = get_settings()
    if not LANGUAGE_CODE_RE.fullmatch(language_code or ""):
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_LANGUAGE,
            "language_code must look like 'en' or 'pt-BR'",
        )
    name = (language_name or "").strip()
    if not 1 <= len(name) <= LANGUAGE_NAME_MAX_LEN:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"language_name must be 1-{LANGUAGE_NAME_MAX_LEN} characters",
        )
    mime = (content_type or "").split(";", 1)[0].strip().lower()
    if mime not in ALLOWED_SUBTITLE_MIMES:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_CONTENT_TYPE,
            f"Unsupported subtitle type '{mime}'. "
            f"Expected one of: {', '.join(sorted(ALLOWED_SUBTITLE_MIMES))}",
        )
    if size_bytes > settings.max_subtitle_bytes:
        raise InvalidRequestError(
            ApiErrorCode.E_FILE_TOO_LARGE,
            f"Subtitle size {size_bytes} bytes exceeds maximum "
            f"{settings.max_subtitle_bytes} bytes",
        )
    return name


def _has_track(db: Session, lesson_id: int, language_code: str) -> bool:
    return (
        db.execute(
            select(Subtitle.id).where(
                Subtitle.lesson_id == lesson_id, Subtitle.language_code == language_code
            )
        ).scalar_one_or_none()
        is not None
    )


def upload_subtitle(
    db: Session,
    viewer_id: UUID,
    lesson_id: int,
    language_code: str,
    language_name: str,
    content_type: str | None,
    content: bytes,
    *,
    storage: StorageClientBase,
) -> SubtitleOut:
    """POST /videos/subtitles.

    Raises:
        InvalidRequestError: Bad language, MIME, size, format, or a duplicate track.
        ForbiddenError: Viewer cannot manage the course.
        ServiceUnavailableError: Store unavailable after retries.
    """
    name = validate_subtitle_fields(language_code, language_name, content_type, len(content))
    lesson = get_lesson_for_manager(db, viewer_id, lesson_id)

    if _has_track(db, lesson.id, language_code):
        raise InvalidRequestError(
            ApiErrorCode.E_DUPLICATE_SUBTITLE,
            f"A '{language_code}' subtitle already exists for this lesson",
        )

    vtt = normalize_subtitle(content)
    key = build_subtitle_key(lesson.id, language_code)
    try:
        with_store_retry(lambda: storage.put(key, vtt, "text/vtt"), action="subtitle_put")
    except StoreUnavailable as e:
        raise ServiceUnavailableError(
            ApiErrorCode.E_STORE_UNAVAILABLE, "Object store unavailable, try again later"
        ) from e
    except StorageError as e:
        logger.error("subtitle_store_failed", storage_key=key, error=e.message)
        raise ApiError(ApiErrorCode.E_UPLOAD_FAILED, "Subtitle upload failed") from e

    subtitle = Subtitle(
        lesson_id=lesson.id,
        language_code=language_code,
        language_name=name,
        storage_key=key,
        size_bytes=len(vtt),
        uploaded_by=viewer_id,
        created_at=utcnow(),
    )
    db.add(subtitle)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        # Lost a race for the same language; drop the bytes we just wrote.
        enqueue_deletion(db, storage_key=key, reason="duplicate_subtitle")
        db.commit()
        raise InvalidRequestError(
            ApiErrorCode.E_DUPLICATE_SUBTITLE,
            f"A '{language_code}' subtitle already exists for this lesson",
        ) from e

    logger.info(
        "subtitle_uploaded",
        lesson_id=lesson.id,
        language_code=language_code,
        storage_key=key,
        converted=not content.lstrip(b"\xef\xbb\xbf").lstrip().startswith(b"WEBVTT"),
    )
    return subtitle_out(subtitle)


def list_subtitles(db: Session, viewer_id: UUID, lesson_id: int) -> list[SubtitleOut]:
    """GET /lessons/{lesson_id}/subtitles."""
    lesson = get_lesson_for_viewer(db, viewer_id, lesson_id)
    rows = (
        db.execute(
            select(Subtitle)
            .where(Subtitle.lesson_id == lesson.id)
            .order_by(Subtitle.language_code)
        )
        .scalars()
        .all()
    )
    return [subtitle_out(s) for s in rows]


def delete_subtitle(db: Session, viewer_id: UUID, subtitle_id: UUID) -> None:
    """DELETE /videos/subtitles/{subtitle_id}. The stored file is queued for deletion."""
    subtitle = db.get(Subtitle, subtitle_id)
    if subtitle is None:
        raise NotFoundError(ApiErrorCode.E_SUBTITLE_NOT_FOUND, "Subtitle not found")
    get_lesson_for_manager(db, viewer_id, subtitle.lesson_id)

    enqueue_deletion(db, storage_key=subtitle.storage_key, reason="subtitle_deleted")
    db.delete(subtitle)
    db.commit()
    logger.info(
        "subtitle_deleted", lesson_id=subtitle.lesson_id, language_code=subtitle.language_code
    )


def resolve_subtitle_redirect(
    db: Session, viewer_id: UUID, filename: str, *, storage: StorageClientBase
) -> SignedRedirect:
    """GET /videos/subtitles/{filename}: signed URL for a subtitle track."""
    if not filename or sanitize_name(filename) != filename:
        raise NotFoundError(ApiErrorCode.E_SUBTITLE_NOT_FOUND, "Subtitle not found")

    subtitle = db.execute(
        select(Subtitle).where(Subtitle.storage_key.endswith(f"/{filename}", autoescape=True))
    ).scalar_one_or_none()
    if subtitle is None:
        raise NotFoundError(ApiErrorCode.E_SUBTITLE_NOT_FOUND, "Subtitle not found")
    if not can_view_lesson(db, viewer_id, subtitle.lesson_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Not enrolled in this course")

    ttl = get_settings().signed_url_ttl_seconds
    try:
        url = with_store_retry(
            lambda: storage.presign_get(subtitle.storage_key, ttl), action="presign_get"
        )
    except StorageError as e:
        raise ServiceUnavailableError(
            ApiErrorCode.E_STORE_UNAVAILABLE, "Could not sign subtitle URL"
        ) from e
    return SignedRedirect(url=url, expires_in=ttl)
