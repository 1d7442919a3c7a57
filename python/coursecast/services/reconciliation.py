"""Periodic reconciliation passes.

Each pass is idempotent and safe to re-run; tasks call them on a beat
schedule and log the returned counts.

- sweep_orphan_objects: videos/* objects no Video row references
- process_storage_deletions: drain the storage_deletions queue
- sync_provider_status: poll the provider for videos stuck mid-lifecycle
- expire_upload_tickets: close tickets whose upload window has passed
"""

from datetime import datetime, timedelta

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from coursecast.config import get_settings
from coursecast.db.models import (
    StorageDeletion,
    Subtitle,
    TicketStatus,
    UploadTargetKind,
    UploadTicket,
    Video,
    VideoStatus,
    as_utc,
    utcnow,
)
from coursecast.errors import StateConflict
from coursecast.logging import get_logger
from coursecast.services.lessons import (
    after_transition_commit,
    lock_video,
    transition_video,
)
from coursecast.services.transcoding import ProviderError, TranscodingAdapter, call_provider
from coursecast.services.video_lifecycle import (
    AssetCreated,
    AssetFailed,
    AssetReady,
    LifecycleEvent,
)
from coursecast.storage import (
    StorageClientBase,
    StorageError,
    StoragePurpose,
    purpose_prefix,
)

logger = get_logger(__name__)

MAX_DELETION_ATTEMPTS = 10
DELETION_BATCH_SIZE = 100
SYNC_BATCH_SIZE = 50


def sweep_orphan_objects(
    db: Session, storage: StorageClientBase, now: datetime | None = None
) -> int:
    """Delete videos/* objects older than the grace period with no Video row.

    Objects inside the grace window may belong to an upload whose attach
    transaction has not committed yet, so they are left alone.

    Returns:
        Number of objects deleted.
    """
    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.orphan_grace_hours)

    deleted = 0
    for obj in storage.list_objects(purpose_prefix(StoragePurpose.VIDEOS)):
        if obj.last_modified is None or as_utc(obj.last_modified) > cutoff:
            continue
        referenced = db.execute(
            select(Video.id).where(Video.storage_key == obj.key).limit(1)
        ).scalar_one_or_none()
        if referenced is not None:
            continue
        try:
            storage.delete(obj.key)
        except StorageError as e:
            logger.warning("orphan_object_delete_failed", storage_key=obj.key, error=e.message)
            continue
        deleted += 1
        logger.info("orphan_object_deleted", storage_key=obj.key, size_bytes=obj.size_bytes)

    if deleted:
        logger.info("orphan_sweep_completed", deleted=deleted)
    return deleted


def _still_referenced(db: Session, key: str) -> bool:
    video = db.execute(
        select(Video.id)
        .where(Video.storage_key == key, Video.superseded_at.is_(None))
        .limit(1)
    ).scalar_one_or_none()
    if video is not None:
        return True
    subtitle = db.execute(
        select(Subtitle.id).where(Subtitle.storage_key == key).limit(1)
    ).scalar_one_or_none()
    return subtitle is not None


def process_storage_deletions(
    db: Session,
    storage: StorageClientBase,
    transcoder: TranscodingAdapter,
    now: datetime | None = None,
) -> dict[str, int]:
    """Best-effort deletion of queued objects and provider assets.

    Failures bump ``attempts``; rows are abandoned after MAX_DELETION_ATTEMPTS.

    Returns:
        Counts: completed, failed.
    """
    now = now or utcnow()
    rows = (
        db.execute(
            select(StorageDeletion)
            .where(
                StorageDeletion.completed_at.is_(None),
                StorageDeletion.attempts < MAX_DELETION_ATTEMPTS,
            )
            .order_by(StorageDeletion.enqueued_at)
            .limit(DELETION_BATCH_SIZE)
        )
        .scalars()
        .all()
    )

    counts = {"completed": 0, "failed": 0}
    for row in rows:
        row.attempts += 1
        try:
            if row.storage_key and not _still_referenced(db, row.storage_key):
                storage.delete(row.storage_key)
            if row.provider_asset_id and transcoder.is_configured:
                call_provider(
                    lambda asset_id=row.provider_asset_id: transcoder.delete_asset(asset_id),
                    action="delete_asset",
                )
        except (StorageError, ProviderError) as e:
            row.last_error = e.message[:1000]
            db.commit()
            counts["failed"] += 1
            logger.warning(
                "storage_deletion_failed",
                deletion_id=row.id,
                attempts=row.attempts,
                error=e.message,
            )
            continue

        row.completed_at = now
        row.last_error = None
        db.commit()
        counts["completed"] += 1
        logger.info(
            "storage_deletion_completed",
            deletion_id=row.id,
            storage_key=row.storage_key,
            provider_asset_id=row.provider_asset_id,
        )
    return counts


def _event_from_provider(
    video: Video, transcoder: TranscodingAdapter
) -> LifecycleEvent | None:
    asset_id = video.provider_asset_id
    if asset_id is None and video.provider_upload_id:
        upload = call_provider(
            lambda: transcoder.get_upload(video.provider_upload_id), action="get_upload"
        )
        if upload.status in ("errored", "cancelled", "timed_out"):
            return AssetFailed(error=upload.error or f"upload_{upload.status}")
        asset_id = upload.asset_id
    if asset_id is None:
        return None

    asset = call_provider(lambda: transcoder.get_asset(asset_id), action="get_asset")
    if asset.is_ready:
        return AssetReady(
            playback_id=asset.playback_id,
            asset_id=asset.asset_id,
            max_stored_resolution=asset.max_stored_resolution,
            duration_s=asset.duration_s,
        )
    if asset.is_errored:
        return AssetFailed(error=asset.error or "unknown_error", asset_id=asset.asset_id)
    return AssetCreated(asset_id=asset.asset_id)


def sync_provider_status(
    db: Session, transcoder: TranscodingAdapter, now: datetime | None = None
) -> int:
    """Poll the provider for videos stuck in uploading/processing.

    Provider state goes through the same lifecycle transition as webhooks,
    so a late webhook after a sync is a harmless replay.

    Returns:
        Number of videos whose status changed.
    """
    if not transcoder.is_configured:
        return 0
    settings = get_settings()
    now = now or utcnow()
    stale_before = now - timedelta(minutes=settings.provider_sync_stale_minutes)

    video_ids = (
        db.execute(
            select(Video.id)
            .where(
                Video.status.in_([VideoStatus.uploading, VideoStatus.processing]),
                Video.superseded_at.is_(None),
                Video.updated_at < stale_before,
                or_(Video.provider_asset_id.is_not(None), Video.provider_upload_id.is_not(None)),
            )
            .order_by(Video.updated_at)
            .limit(SYNC_BATCH_SIZE)
        )
        .scalars()
        .all()
    )

    changed = 0
    for video_id in video_ids:
        video = db.get(Video, video_id)
        try:
            event = _event_from_provider(video, transcoder)
        except ProviderError as e:
            logger.warning("provider_sync_failed", video_id=str(video_id), error=e.message)
            continue
        if event is None:
            continue

        video = lock_video(db, video_id)
        try:
            transition = transition_video(db, video, event, now)
        except StateConflict as e:
            db.rollback()
            logger.warning(
                "state_conflict_ignored",
                video_id=str(video_id),
                current=e.current,
                attempted=e.attempted,
                reason=e.reason,
            )
            continue
        db.commit()
        if transition is not None:
            changed += 1
            logger.info("provider_status_synced", video_id=str(video_id))
            after_transition_commit(db, video, transition)
    return changed


def expire_upload_tickets(db: Session, now: datetime | None = None) -> int:
    """Mark issued tickets past their expiry as expired.

    A provider-direct video still waiting for its bytes is failed with
    ``upload_expired`` so it never lingers in uploading.

    Returns:
        Number of tickets expired.
    """
    now = now or utcnow()
    tickets = (
        db.execute(
            select(UploadTicket).where(
                UploadTicket.status == TicketStatus.issued,
                UploadTicket.expires_at < now,
            )
        )
        .scalars()
        .all()
    )

    for ticket in tickets:
        ticket.status = TicketStatus.expired
        if UploadTargetKind(ticket.target) == UploadTargetKind.provider_direct and ticket.video_id:
            video = lock_video(db, ticket.video_id)
            if video is not None and VideoStatus(video.status) == VideoStatus.uploading:
                transition_video(db, video, AssetFailed(error="upload_expired"), now)
        db.commit()
        logger.info("upload_ticket_expired", ticket_id=str(ticket.id))
    return len(tickets)
