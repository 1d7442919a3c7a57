"""Playback authorization service layer.

Resolves a lesson to a playable URL for a requesting user:
1. Load the lesson and its live video
2. Authorize: course owner, enrolled learner, or admin
3. Not ready -> status (and error) only, never a URL
4. Provider-hosted -> adaptive manifest URL; store-hosted -> signed GET URL

URLs are minted per request and never cached beyond their signed TTL.
"""

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from coursecast.auth.permissions import can_view_lesson
from coursecast.config import get_settings
from coursecast.db.models import Lesson, Video, VideoStatus
from coursecast.errors import (
    ApiErrorCode,
    ForbiddenError,
    NotFoundError,
    ServiceUnavailableError,
)
from coursecast.logging import bind_video_context, get_logger
from coursecast.schemas.video import PlaybackOut
from coursecast.services.lessons import get_lesson, get_live_video
from coursecast.services.transcoding import ProviderError, TranscodingAdapter
from coursecast.storage import (
    StorageClientBase,
    StorageError,
    StoragePurpose,
    purpose_of,
    sanitize_name,
    with_store_retry,
)

logger = get_logger(__name__)

# Renditions available at each provider max_stored_resolution tier
_QUALITY_LADDER = [("SD", "480p"), ("HD", "720p"), ("FHD", "1080p"), ("UHD", "2160p")]


def available_qualities(max_stored_resolution: str | None) -> list[str]:
    """Quality hints for a provider-hosted asset."""
    if not max_stored_resolution:
        return ["auto"]
    tiers = [tier for tier, _ in _QUALITY_LADDER]
    if max_stored_resolution not in tiers:
        return ["auto"]
    top = tiers.index(max_stored_resolution)
    return [label for _, label in _QUALITY_LADDER[: top + 1]]


def _signed_store_url(storage: StorageClientBase, key: str, ttl: int) -> str:
    try:
        return with_store_retry(lambda: storage.presign_get(key, ttl), action="presign_get")
    except StorageError as e:
        logger.error("playback_sign_failed", storage_key=key, error=e.message)
        raise ServiceUnavailableError(
            ApiErrorCode.E_STORE_UNAVAILABLE, "Could not sign playback URL"
        ) from e


def get_lesson_playback(
    db: Session,
    viewer_id: UUID,
    lesson_id: int,
    *,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
) -> PlaybackOut:
    """GET /lessons/{lesson_id}/video.

    Raises:
        NotFoundError: Lesson missing, or it has no video.
        ForbiddenError: E_PLAYBACK_FORBIDDEN when the viewer is not authorized.
        ServiceUnavailableError: URL could not be minted.
    """
    settings = get_settings()
    ttl = settings.signed_url_ttl_seconds

    lesson = get_lesson(db, lesson_id)
    if not can_view_lesson(db, viewer_id, lesson.id):
        logger.info("playback_denied", lesson_id=lesson.id, user_id=str(viewer_id))
        raise ForbiddenError(
            ApiErrorCode.E_PLAYBACK_FORBIDDEN, "You are not enrolled in this course"
        )

    video = get_live_video(db, lesson)
    if video is None:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "This lesson has no video")
    bind_video_context(lesson_id=lesson.id, video_id=video.id)

    status = VideoStatus(video.status)
    if status != VideoStatus.ready:
        return PlaybackOut(
            video_ref=video.id,
            status=status.value,
            error=video.processing_error if status == VideoStatus.failed else None,
        )

    if video.playback_id:
        try:
            stream_url = transcoder.playback_url(video.playback_id, ttl=ttl)
            thumbnail_url = transcoder.thumbnail_url(video.playback_id, ttl=ttl)
        except ProviderError as e:
            logger.error("playback_provider_failed", error=e.message)
            raise ServiceUnavailableError(
                ApiErrorCode.E_PROVIDER_UNAVAILABLE, "Video provider unavailable"
            ) from e
        return PlaybackOut(
            video_ref=video.id,
            status=status.value,
            stream_url=stream_url,
            kind="hls",
            supports_adaptive=True,
            available_qualities=available_qualities(video.max_stored_resolution),
            thumbnail_url=thumbnail_url,
            expires_in=ttl,
        )

    return PlaybackOut(
        video_ref=video.id,
        status=status.value,
        stream_url=_signed_store_url(storage, video.storage_key, ttl),
        kind="file",
        supports_adaptive=False,
        available_qualities=["source"],
        expires_in=ttl,
    )


@dataclass(frozen=True)
class SignedRedirect:
    url: str
    expires_in: int


def resolve_stream_redirect(
    db: Session, viewer_id: UUID, filename: str, *, storage: StorageClientBase
) -> SignedRedirect:
    """GET /videos/{filename}/stream: signed URL for a store-hosted live video.

    Only the lesson's current video is reachable this way; superseded rows
    return 404 like unknown names.
    """
    if not filename or sanitize_name(filename) != filename:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Video not found")

    candidates = (
        db.execute(
            select(Video)
            .join(Lesson, Lesson.video_id == Video.id)
            .where(Video.storage_key.endswith(f"/{filename}", autoescape=True))
        )
        .scalars()
        .all()
    )
    video = next(
        (v for v in candidates if purpose_of(v.storage_key) == StoragePurpose.VIDEOS), None
    )
    if video is None:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Video not found")

    if not can_view_lesson(db, viewer_id, video.lesson_id):
        raise ForbiddenError(
            ApiErrorCode.E_PLAYBACK_FORBIDDEN, "You are not enrolled in this course"
        )
    if VideoStatus(video.status) != VideoStatus.ready:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Video is not ready")

    ttl = get_settings().signed_url_ttl_seconds
    return SignedRedirect(url=_signed_store_url(storage, video.storage_key, ttl), expires_in=ttl)
