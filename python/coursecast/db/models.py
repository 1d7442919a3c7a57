"""SQLAlchemy ORM models for CourseCast.

Defines all database tables using SQLAlchemy 2.x declarative patterns.
Enums are Python enums stored as constrained strings so the schema runs
unchanged on PostgreSQL and on the SQLite engine used by the test suite.

Lesson <-> Video coupling:
    lessons.video_id is the single live pointer. A replaced video keeps its
    row with superseded_at set; it is never re-pointed or reused.
"""

from datetime import UTC, datetime
from enum import Enum as PyEnum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from drivers that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def _str_enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
        length=32,
    )


# =============================================================================
# Enums
# =============================================================================


class UserRole(str, PyEnum):
    """Platform roles relevant to video access."""

    student = "student"
    teacher = "teacher"
    admin = "admin"


class VideoStatus(str, PyEnum):
    """Video processing lifecycle states.

    States:
        uploading: Row exists, bytes not yet confirmed at the provider
        processing: Provider asset exists and is transcoding
        ready: Playable (playback_id or storage_key present)
        failed: Terminal failure recorded in processing_error
    """

    uploading = "uploading"
    processing = "processing"
    ready = "ready"
    failed = "failed"


class UploadTargetKind(str, PyEnum):
    """Upload path chosen for a ticket."""

    provider_direct = "provider-direct"
    store_direct = "store-direct"
    server_proxied = "server-proxied"


class TicketStatus(str, PyEnum):
    """Upload ticket lifecycle: issued -> (consumed | expired)."""

    issued = "issued"
    consumed = "consumed"
    expired = "expired"


class WebhookOutcome(str, PyEnum):
    """Recorded result of applying a provider webhook."""

    applied = "applied"
    ignored = "ignored"
    conflict = "conflict"
    buffered = "buffered"


# =============================================================================
# Models
# =============================================================================


class User(Base):
    """User account model.

    The user ID matches the identity provider subject (sub claim).
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True)
    role: Mapped[UserRole] = mapped_column(
        _str_enum(UserRole, "user_role"), nullable=False, default=UserRole.student
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class Course(Base):
    """Course owned by a teacher. Only the fields video access needs."""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_user_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    lessons: Mapped[list["Lesson"]] = relationship("Lesson", back_populates="course")


class Enrollment(Base):
    """Student enrollment in a course."""

    __tablename__ = "enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (UniqueConstraint("course_id", "user_id", name="uq_enrollments_course_user"),)


class Lesson(Base):
    """A unit within a course holding at most one live video."""

    __tablename__ = "lessons"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    course_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("courses.id", ondelete="CASCADE"), nullable=False
    )
    title: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    video_id: Mapped[UUID | None] = mapped_column(
        Uuid,
        ForeignKey("videos.id", name="fk_lessons_video_id", use_alter=True, ondelete="SET NULL"),
        nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    course: Mapped[Course] = relationship("Course", back_populates="lessons")

    __table_args__ = (
        CheckConstraint("order_index >= 0", name="ck_lessons_order_index_nonnegative"),
    )


class Video(Base):
    """One uploaded asset and its processing lifecycle.

    Exactly one of storage_key / provider_asset_id is set at steady state;
    both may be set briefly while a stored upload is being transcoded.
    """

    __tablename__ = "videos"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    lesson_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    uploader_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_upload_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_asset_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    playback_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_filename: Mapped[str | None] = mapped_column(Text, nullable=True)
    content_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    duration_s: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_stored_resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[VideoStatus] = mapped_column(
        _str_enum(VideoStatus, "video_status"), nullable=False
    )
    processing_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    superseded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    notified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        Index("ix_videos_provider_asset_id", "provider_asset_id"),
        Index("ix_videos_provider_upload_id", "provider_upload_id"),
        Index("ix_videos_lesson_id", "lesson_id"),
        CheckConstraint("size_bytes IS NULL OR size_bytes >= 0", name="ck_videos_size_nonnegative"),
    )


class Subtitle(Base):
    """WebVTT subtitle track for a lesson. One per (lesson, language)."""

    __tablename__ = "subtitles"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    lesson_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    language_code: Mapped[str] = mapped_column(Text, nullable=False)
    language_name: Mapped[str] = mapped_column(Text, nullable=False)
    storage_key: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    uploaded_by: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("lesson_id", "language_code", name="uq_subtitles_lesson_language"),
    )


class UploadTicket(Base):
    """Ephemeral, one-shot authorization to upload bytes for a lesson."""

    __tablename__ = "upload_tickets"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    fingerprint: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    uploader_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    lesson_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    target: Mapped[UploadTargetKind] = mapped_column(
        _str_enum(UploadTargetKind, "upload_target_kind"), nullable=False
    )
    upload_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_upload_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    status: Mapped[TicketStatus] = mapped_column(
        _str_enum(TicketStatus, "ticket_status"), nullable=False, default=TicketStatus.issued
    )
    video_id: Mapped[UUID | None] = mapped_column(Uuid, ForeignKey("videos.id"), nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    consumed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class AvailabilitySubscription(Base):
    """A user's request to be told when a lesson's video becomes ready."""

    __tablename__ = "availability_subscriptions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    lesson_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "lesson_id", name="uq_availability_subscriptions_user_lesson"),
    )


class Notification(Base):
    """In-app notification outbox row. One per (user, video, kind)."""

    __tablename__ = "notifications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    lesson_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lessons.id", ondelete="CASCADE"), nullable=False
    )
    video_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("videos.id"), nullable=False)
    kind: Mapped[str] = mapped_column(Text, nullable=False, default="video_ready")
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    read_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("user_id", "video_id", "kind", name="uq_notifications_user_video_kind"),
    )


class StorageDeletion(Base):
    """Queued best-effort deletion of a stale object or provider asset."""

    __tablename__ = "storage_deletions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    storage_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    provider_asset_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    enqueued_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "storage_key IS NOT NULL OR provider_asset_id IS NOT NULL",
            name="ck_storage_deletions_target",
        ),
    )


class WebhookEvent(Base):
    """Deduplication ledger for provider webhooks."""

    __tablename__ = "webhook_events"

    event_id: Mapped[str] = mapped_column(Text, primary_key=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    outcome: Mapped[WebhookOutcome] = mapped_column(
        _str_enum(WebhookOutcome, "webhook_outcome"), nullable=False
    )
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )


class PendingWebhook(Base):
    """Webhook whose video could not be located yet. Retried, then discarded."""

    __tablename__ = "pending_webhooks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    event_id: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    first_seen_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    last_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
