"""Video ingestion schema - users, courses, lessons, videos, subtitles, tickets,
subscriptions, notifications and the reconciliation queues

Revision ID: 0001
Revises:
Create Date: 2026-10-18

Enums are stored as constrained text (no native PG enums) so the ORM
models also run on SQLite in tests.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _created_at(name: str = "created_at") -> sa.Column:
    return sa.Column(
        name,
        sa.TIMESTAMP(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    # ==========================================================================
    # users / courses / enrollments
    # ==========================================================================
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("role", sa.String(32), server_default="student", nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "role IN ('student', 'teacher', 'admin')", name="ck_users_role"
        ),
    )

    op.create_table(
        "courses",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("owner_user_id", sa.UUID(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["owner_user_id"], ["users.id"]),
    )

    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("course_id", "user_id", name="uq_enrollments_course_user"),
    )

    # ==========================================================================
    # lessons / videos (lessons.video_id added after videos exists)
    # ==========================================================================
    op.create_table(
        "lessons",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("course_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("order_index", sa.Integer(), server_default="0", nullable=False),
        sa.Column("video_id", sa.UUID(), nullable=True),
        _created_at(),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["course_id"], ["courses.id"], ondelete="CASCADE"),
        sa.CheckConstraint("order_index >= 0", name="ck_lessons_order_index_nonnegative"),
    )

    op.create_table(
        "videos",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        sa.Column("uploader_id", sa.UUID(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=True),
        sa.Column("provider_upload_id", sa.Text(), nullable=True),
        sa.Column("provider_asset_id", sa.Text(), nullable=True),
        sa.Column("playback_id", sa.Text(), nullable=True),
        sa.Column("original_filename", sa.Text(), nullable=True),
        sa.Column("content_type", sa.Text(), nullable=True),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("duration_s", sa.Float(), nullable=True),
        sa.Column("max_stored_resolution", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("superseded_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("notified_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.Column("processing_started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("processing_completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at("updated_at"),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploader_id"], ["users.id"]),
        sa.CheckConstraint(
            "status IN ('uploading', 'processing', 'ready', 'failed')",
            name="ck_videos_status",
        ),
        sa.CheckConstraint(
            "size_bytes IS NULL OR size_bytes >= 0", name="ck_videos_size_nonnegative"
        ),
    )
    op.create_index("ix_videos_provider_asset_id", "videos", ["provider_asset_id"])
    op.create_index("ix_videos_provider_upload_id", "videos", ["provider_upload_id"])
    op.create_index("ix_videos_lesson_id", "videos", ["lesson_id"])
    # Stuck-video sync scans live rows by status and age
    op.create_index(
        "ix_videos_live_status_updated",
        "videos",
        ["status", "updated_at"],
        postgresql_where=sa.text("superseded_at IS NULL"),
    )

    op.create_foreign_key(
        "fk_lessons_video_id",
        "lessons",
        "videos",
        ["video_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # ==========================================================================
    # subtitles
    # ==========================================================================
    op.create_table(
        "subtitles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        sa.Column("language_code", sa.Text(), nullable=False),
        sa.Column("language_name", sa.Text(), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("uploaded_by", sa.UUID(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["uploaded_by"], ["users.id"]),
        sa.UniqueConstraint("lesson_id", "language_code", name="uq_subtitles_lesson_language"),
    )

    # ==========================================================================
    # upload_tickets
    # ==========================================================================
    op.create_table(
        "upload_tickets",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("fingerprint", sa.Text(), nullable=False),
        sa.Column("uploader_id", sa.UUID(), nullable=False),
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        sa.Column("target", sa.String(32), nullable=False),
        sa.Column("upload_url", sa.Text(), nullable=True),
        sa.Column("storage_key", sa.Text(), nullable=True),
        sa.Column("provider_upload_id", sa.Text(), nullable=True),
        sa.Column("filename", sa.Text(), nullable=False),
        sa.Column("content_type", sa.Text(), nullable=False),
        sa.Column("size_bytes", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(32), server_default="issued", nullable=False),
        sa.Column("video_id", sa.UUID(), nullable=True),
        sa.Column("expires_at", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("consumed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("fingerprint", name="uq_upload_tickets_fingerprint"),
        sa.ForeignKeyConstraint(["uploader_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"]),
        sa.CheckConstraint(
            "target IN ('provider-direct', 'store-direct', 'server-proxied')",
            name="ck_upload_tickets_target",
        ),
        sa.CheckConstraint(
            "status IN ('issued', 'consumed', 'expired')", name="ck_upload_tickets_status"
        ),
    )
    op.create_index(
        "ix_upload_tickets_issued_expires",
        "upload_tickets",
        ["expires_at"],
        postgresql_where=sa.text("status = 'issued'"),
    )

    # ==========================================================================
    # subscriptions / notifications
    # ==========================================================================
    op.create_table(
        "availability_subscriptions",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.UniqueConstraint(
            "user_id", "lesson_id", name="uq_availability_subscriptions_user_lesson"
        ),
    )

    op.create_table(
        "notifications",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("user_id", sa.UUID(), nullable=False),
        sa.Column("lesson_id", sa.Integer(), nullable=False),
        sa.Column("video_id", sa.UUID(), nullable=False),
        sa.Column("kind", sa.Text(), server_default="video_ready", nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        _created_at(),
        sa.Column("read_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["video_id"], ["videos.id"]),
        sa.UniqueConstraint(
            "user_id", "video_id", "kind", name="uq_notifications_user_video_kind"
        ),
    )
    op.create_index(
        "ix_notifications_user_created", "notifications", ["user_id", "created_at"]
    )

    # ==========================================================================
    # reconciliation queues
    # ==========================================================================
    op.create_table(
        "storage_deletions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=True),
        sa.Column("provider_asset_id", sa.Text(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("last_error", sa.Text(), nullable=True),
        _created_at("enqueued_at"),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "storage_key IS NOT NULL OR provider_asset_id IS NOT NULL",
            name="ck_storage_deletions_target",
        ),
    )

    op.create_table(
        "webhook_events",
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("outcome", sa.String(32), nullable=False),
        _created_at("received_at"),
        sa.PrimaryKeyConstraint("event_id"),
        sa.CheckConstraint(
            "outcome IN ('applied', 'ignored', 'conflict', 'buffered')",
            name="ck_webhook_events_outcome",
        ),
    )
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])

    op.create_table(
        "pending_webhooks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("event_id", sa.Text(), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("attempts", sa.Integer(), server_default="0", nullable=False),
        _created_at("first_seen_at"),
        sa.Column("last_attempt_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("event_id", name="uq_pending_webhooks_event_id"),
    )


def downgrade() -> None:
    op.drop_table("pending_webhooks")
    op.drop_index("ix_webhook_events_received_at", table_name="webhook_events")
    op.drop_table("webhook_events")
    op.drop_table("storage_deletions")
    op.drop_index("ix_notifications_user_created", table_name="notifications")
    op.drop_table("notifications")
    op.drop_table("availability_subscriptions")
    op.drop_index("ix_upload_tickets_issued_expires", table_name="upload_tickets")
    op.drop_table("upload_tickets")
    op.drop_table("subtitles")
    op.drop_constraint("fk_lessons_video_id", "lessons", type_="foreignkey")
    op.drop_index("ix_videos_live_status_updated", table_name="videos")
    op.drop_index("ix_videos_lesson_id", table_name="videos")
    op.drop_index("ix_videos_provider_upload_id", table_name="videos")
    op.drop_index("ix_videos_provider_asset_id", table_name="videos")
    op.drop_table("videos")
    op.drop_table("lessons")
    op.drop_table("enrollments")
    op.drop_table("courses")
    op.drop_table("users")
