"""Lesson/video metadata service layer.

Owns every write that ties a lesson to a video:
- create_lesson
- attach_video / replace_video / promote_video / delete_lesson_video
- transition_video / set_video_status (the only callers of video_lifecycle.apply)

Key invariants:
- lessons.video_id is the single live pointer; a replaced video keeps its row
  with superseded_at set and its stored bytes/provider asset queued for deletion
- per-lesson writes lock the lesson row (SELECT ... FOR UPDATE)
- status transitions lock the video row
- attach functions never commit; the caller owns the transaction
- notification fan-out runs only after the ready transition commits
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coursecast.auth.permissions import can_manage_course, can_view_lesson
from coursecast.db.models import (
    Course,
    Lesson,
    StorageDeletion,
    Subtitle,
    Video,
    VideoStatus,
    as_utc,
    utcnow,
)
from coursecast.errors import (
    ApiErrorCode,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
    StateConflict,
)
from coursecast.logging import bind_video_context, get_logger
from coursecast.schemas.lesson import LessonOut, VideoSummaryOut
from coursecast.schemas.subtitle import SubtitleOut
from coursecast.services import video_lifecycle
from coursecast.services.video_lifecycle import LifecycleEvent, Transition
from coursecast.storage.paths import filename_from_key

logger = get_logger(__name__)

TITLE_MIN_LEN = 3
TITLE_MAX_LEN = 200
DESCRIPTION_MAX_LEN = 5000


# =============================================================================
# Lookups
# =============================================================================


def get_lesson(db: Session, lesson_id: int, *, for_update: bool = False) -> Lesson:
    """Load a lesson, optionally row-locked.

    Raises:
        NotFoundError: If the lesson does not exist.
    """
    query = select(Lesson).where(Lesson.id == lesson_id)
    if for_update:
        query = query.with_for_update()
    lesson = db.execute(query).scalar_one_or_none()
    if lesson is None:
        raise NotFoundError(ApiErrorCode.E_LESSON_NOT_FOUND, "Lesson not found")
    return lesson


def get_lesson_for_manager(
    db: Session, viewer_id: UUID, lesson_id: int, *, for_update: bool = False
) -> Lesson:
    """Load a lesson the viewer may modify (course owner or admin)."""
    lesson = get_lesson(db, lesson_id, for_update=for_update)
    if not can_manage_course(db, viewer_id, lesson.course_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the course owner can do this")
    return lesson


def get_lesson_for_viewer(db: Session, viewer_id: UUID, lesson_id: int) -> Lesson:
    """Load a lesson the viewer may watch (owner, enrolled, or admin)."""
    lesson = get_lesson(db, lesson_id)
    if not can_view_lesson(db, viewer_id, lesson.id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Not enrolled in this course")
    return lesson


def get_live_video(db: Session, lesson: Lesson) -> Video | None:
    if lesson.video_id is None:
        return None
    return db.get(Video, lesson.video_id)


# =============================================================================
# Views
# =============================================================================


def video_hosting(video: Video) -> str | None:
    if video.playback_id or video.provider_asset_id:
        return "provider"
    if video.storage_key:
        return "store"
    return None


def video_summary(video: Video) -> VideoSummaryOut:
    return VideoSummaryOut(
        id=video.id,
        status=VideoStatus(video.status).value,
        hosting=video_hosting(video),
        size_bytes=video.size_bytes,
        duration_s=video.duration_s,
        original_filename=video.original_filename,
        processing_error=video.processing_error,
        created_at=as_utc(video.created_at),
        processing_started_at=as_utc(video.processing_started_at),
        processing_completed_at=as_utc(video.processing_completed_at),
    )


def subtitle_out(subtitle: Subtitle) -> SubtitleOut:
    filename = filename_from_key(subtitle.storage_key)
    return SubtitleOut(
        id=subtitle.id,
        lesson_id=subtitle.lesson_id,
        language_code=subtitle.language_code,
        language_name=subtitle.language_name,
        filename=filename,
        url=f"/videos/subtitles/{filename}",
        size_bytes=subtitle.size_bytes,
        created_at=as_utc(subtitle.created_at),
    )


def _lesson_out(db: Session, lesson: Lesson) -> LessonOut:
    video = get_live_video(db, lesson)
    subtitles = (
        db.execute(
            select(Subtitle)
            .where(Subtitle.lesson_id == lesson.id)
            .order_by(Subtitle.language_code)
        )
        .scalars()
        .all()
    )
    return LessonOut(
        id=lesson.id,
        course_id=lesson.course_id,
        title=lesson.title,
        description=lesson.description,
        order_index=lesson.order_index,
        video=video_summary(video) if video else None,
        subtitles=[subtitle_out(s) for s in subtitles],
        created_at=as_utc(lesson.created_at),
        updated_at=as_utc(lesson.updated_at),
    )


def get_lesson_metadata(db: Session, viewer_id: UUID, lesson_id: int) -> LessonOut:
    """Lesson fields, current video summary and subtitle list."""
    lesson = get_lesson_for_viewer(db, viewer_id, lesson_id)
    return _lesson_out(db, lesson)


# =============================================================================
# Lesson creation
# =============================================================================


def _validate_lesson_fields(title: str, description: str | None, order_index: int | None) -> str:
    title = (title or "").strip()
    if not TITLE_MIN_LEN <= len(title) <= TITLE_MAX_LEN:
        raise InvalidRequestError(
            ApiErrorCode.E_TITLE_INVALID,
            f"Title must be {TITLE_MIN_LEN}-{TITLE_MAX_LEN} characters",
        )
    if description is not None and len(description) > DESCRIPTION_MAX_LEN:
        raise InvalidRequestError(
            ApiErrorCode.E_INVALID_REQUEST,
            f"Description must be at most {DESCRIPTION_MAX_LEN} characters",
        )
    if order_index is not None and order_index < 0:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Order must be >= 0")
    return title


def create_lesson(
    db: Session,
    viewer_id: UUID,
    course_id: int,
    title: str,
    description: str | None = None,
    order_index: int | None = None,
) -> LessonOut:
    """Create a lesson in a course the viewer manages.

    When order_index is omitted the lesson is appended after the last one.

    Raises:
        NotFoundError: Course does not exist.
        ForbiddenError: Viewer is not the course owner or an admin.
        InvalidRequestError: Title, description or order out of range.
    """
    title = _validate_lesson_fields(title, description, order_index)

    course = db.get(Course, course_id)
    if course is None:
        raise NotFoundError(ApiErrorCode.E_COURSE_NOT_FOUND, "Course not found")
    if not can_manage_course(db, viewer_id, course_id):
        raise ForbiddenError(ApiErrorCode.E_FORBIDDEN, "Only the course owner can add lessons")

    if order_index is None:
        last = db.execute(
            select(func.max(Lesson.order_index)).where(Lesson.course_id == course_id)
        ).scalar()
        order_index = 0 if last is None else last + 1

    now = utcnow()
    lesson = Lesson(
        course_id=course_id,
        title=title,
        description=description,
        order_index=order_index,
        created_at=now,
        updated_at=now,
    )
    db.add(lesson)
    db.commit()

    logger.info("lesson_created", lesson_id=lesson.id, course_id=course_id)
    return _lesson_out(db, lesson)


# =============================================================================
# Video attachment
# =============================================================================


def enqueue_deletion(
    db: Session,
    *,
    storage_key: str | None = None,
    provider_asset_id: str | None = None,
    reason: str,
) -> StorageDeletion | None:
    """Queue a stored object and/or provider asset for best-effort deletion."""
    if not storage_key and not provider_asset_id:
        return None
    row = StorageDeletion(
        storage_key=storage_key,
        provider_asset_id=provider_asset_id,
        reason=reason,
        enqueued_at=utcnow(),
    )
    db.add(row)
    logger.info(
        "storage_deletion_enqueued",
        storage_key=storage_key,
        provider_asset_id=provider_asset_id,
        reason=reason,
    )
    return row


def _retire_video(db: Session, video: Video, now: datetime, reason: str) -> None:
    video.superseded_at = now
    video.updated_at = now
    enqueue_deletion(
        db,
        storage_key=video.storage_key,
        provider_asset_id=video.provider_asset_id,
        reason=reason,
    )
    logger.info("video_superseded", video_id=str(video.id), reason=reason)


def _make_live(db: Session, lesson: Lesson, video: Video, now: datetime) -> None:
    prior = get_live_video(db, lesson)
    if prior is not None and prior.id != video.id:
        _retire_video(db, prior, now, "replaced")
    lesson.video_id = video.id
    lesson.updated_at = now
    logger.info(
        "video_attached",
        lesson_id=lesson.id,
        video_id=str(video.id),
        replaced_video_id=str(prior.id) if prior and prior.id != video.id else None,
    )


def attach_video(
    db: Session,
    lesson_id: int,
    uploader_id: UUID,
    *,
    storage_key: str | None = None,
    provider_asset_id: str | None = None,
    provider_upload_id: str | None = None,
    size_bytes: int | None = None,
    status: VideoStatus = VideoStatus.processing,
    original_filename: str | None = None,
    content_type: str | None = None,
    now: datetime | None = None,
) -> Video:
    """Insert a Video and make it the lesson's live video.

    Locks the lesson, inserts the video, retires any prior video (queuing its
    object and asset for deletion) and moves lessons.video_id. Does not commit.

    A store-hosted upload that is not sent for transcoding is ``ready``
    immediately with processing_completed_at = now.
    """
    if not (storage_key or provider_asset_id or provider_upload_id):
        raise ValueError("attach_video needs a storage key or provider identifier")

    now = now or utcnow()
    lesson = get_lesson(db, lesson_id, for_update=True)

    video = Video(
        lesson_id=lesson.id,
        uploader_id=uploader_id,
        storage_key=storage_key,
        provider_asset_id=provider_asset_id,
        provider_upload_id=provider_upload_id,
        size_bytes=size_bytes,
        status=status,
        original_filename=original_filename,
        content_type=content_type,
        created_at=now,
        updated_at=now,
    )
    if status in (VideoStatus.processing, VideoStatus.ready):
        video.processing_started_at = now
    if status == VideoStatus.ready:
        video.processing_completed_at = now
    db.add(video)
    # lessons.video_id references the new row; it must exist first.
    db.flush()

    _make_live(db, lesson, video, now)
    bind_video_context(lesson_id=lesson.id, video_id=video.id)
    return video


def replace_video(db: Session, lesson_id: int, uploader_id: UUID, **kwargs) -> Video:
    """Attach a new video to a lesson that already has one.

    Raises:
        NotFoundError: The lesson has no current video to replace.
    """
    lesson = get_lesson(db, lesson_id, for_update=True)
    if lesson.video_id is None:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Lesson has no video to replace")
    return attach_video(db, lesson_id, uploader_id, **kwargs)


def promote_video(db: Session, video: Video, now: datetime | None = None) -> bool:
    """Make a pre-created (ticketed) video live once its bytes have arrived.

    Uploads that finish out of order resolve to the most recently created
    video: an older one arriving late is retired instead of promoted.

    Returns:
        True if the video is (now) live.
    """
    if video.superseded_at is not None:
        return False
    now = now or utcnow()
    lesson = get_lesson(db, video.lesson_id, for_update=True)
    if lesson.video_id == video.id:
        return True

    current = get_live_video(db, lesson)
    if current is not None and as_utc(current.created_at) > as_utc(video.created_at):
        _retire_video(db, video, now, "superseded_by_newer_upload")
        return False

    _make_live(db, lesson, video, now)
    return True


def delete_lesson_video(db: Session, viewer_id: UUID, lesson_id: int) -> None:
    """Detach the lesson's video and queue its asset for deletion.

    Raises:
        NotFoundError: Lesson missing or has no video.
        ForbiddenError: Viewer cannot manage the course.
    """
    lesson = get_lesson_for_manager(db, viewer_id, lesson_id, for_update=True)
    video = get_live_video(db, lesson)
    if video is None:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Lesson has no video")

    now = utcnow()
    _retire_video(db, video, now, "deleted")
    lesson.video_id = None
    lesson.updated_at = now
    db.commit()

    logger.info("lesson_video_deleted", lesson_id=lesson.id, video_id=str(video.id))


# =============================================================================
# Status transitions
# =============================================================================


def transition_video(
    db: Session, video: Video, event: LifecycleEvent, now: datetime | None = None
) -> Transition | None:
    """Apply a lifecycle event to a row-locked video. Does not commit.

    Side effects inside the same transaction:
    - a store copy released by a provider ready is queued for deletion
    - a not-yet-live video whose bytes reached the provider is promoted

    Raises:
        StateConflict: Non-monotonic transition (caller logs and ignores).
    """
    now = now or utcnow()
    bind_video_context(lesson_id=video.lesson_id, video_id=video.id)
    transition = video_lifecycle.apply(video, event, now)
    if transition is None:
        return None

    if transition.released_storage_key:
        enqueue_deletion(
            db, storage_key=transition.released_storage_key, reason="transcoded"
        )
    if transition.to_status in (VideoStatus.processing, VideoStatus.ready):
        promote_video(db, video, now)

    logger.info(
        "video_status_transition",
        video_id=str(video.id),
        lesson_id=video.lesson_id,
        from_status=transition.from_status.value,
        to_status=transition.to_status.value,
    )
    return transition


def lock_video(db: Session, video_id: UUID) -> Video | None:
    return db.execute(
        select(Video).where(Video.id == video_id).with_for_update()
    ).scalar_one_or_none()


def set_video_status(
    db: Session,
    video_id: UUID,
    new_status: VideoStatus,
    *,
    playback_id: str | None = None,
    error: str | None = None,
) -> Transition | None:
    """Move a video to ``new_status`` and commit.

    Idempotent replays and non-monotonic requests return None; the latter
    are logged as state_conflict_ignored and leave the row untouched.
    Ready transitions fan out availability notifications after commit.

    Raises:
        NotFoundError: Video does not exist.
    """
    video = lock_video(db, video_id)
    if video is None:
        raise NotFoundError(ApiErrorCode.E_VIDEO_NOT_FOUND, "Video not found")

    event = video_lifecycle.event_for_status(new_status, playback_id=playback_id, error=error)
    try:
        transition = transition_video(db, video, event)
    except StateConflict as e:
        db.rollback()
        logger.warning(
            "state_conflict_ignored",
            video_id=str(video_id),
            current=e.current,
            attempted=e.attempted,
            reason=e.reason,
        )
        return None

    db.commit()
    if transition is not None:
        after_transition_commit(db, video, transition)
    return transition


def after_transition_commit(db: Session, video: Video, transition: Transition) -> None:
    """Post-commit effects of a transition."""
    if transition.became_ready:
        from coursecast.services.notifications import fan_out_ready

        fan_out_ready(db, video.id)
