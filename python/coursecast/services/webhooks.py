"""Transcoding provider webhook handling.

Pipeline for POST /webhooks/transcode:
1. Verify the signature against the raw body (never mutate on failure)
2. Parse and normalize the event
3. Deduplicate by event id over the dedup window; duplicates get the
   recorded outcome back
4. Locate the video by asset id, then upload id (row-locked)
5. Apply the lifecycle event; conflicts are logged and ignored
6. Record the outcome in the ledger in the same transaction
7. Post-commit effects (notification fan-out)

Events whose video cannot be located yet are buffered in pending_webhooks
and retried by retry_pending_webhooks() until the buffer window passes.
"""

import json
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coursecast.config import get_settings
from coursecast.db.models import (
    PendingWebhook,
    Video,
    WebhookEvent,
    WebhookOutcome,
    as_utc,
    utcnow,
)
from coursecast.errors import (
    ApiErrorCode,
    InvalidRequestError,
    StateConflict,
    WebhookUnverifiedError,
)
from coursecast.logging import get_logger
from coursecast.services.lessons import after_transition_commit, transition_video
from coursecast.services.transcoding import (
    TranscodeEvent,
    TranscodeEventKind,
    TranscodingAdapter,
    parse_event,
)
from coursecast.services.video_lifecycle import (
    AssetCreated,
    AssetFailed,
    AssetReady,
    LifecycleEvent,
    Transition,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class WebhookResult:
    """Acknowledgement returned to the provider."""

    event_id: str | None
    event_type: str | None
    outcome: str
    duplicate: bool = False

    def to_dict(self) -> dict:
        return {
            "received": True,
            "event_id": self.event_id,
            "event_type": self.event_type,
            "outcome": self.outcome,
            "duplicate": self.duplicate,
        }


def verify_webhook_request(
    raw_body: bytes, signature_header: str | None, transcoder: TranscodingAdapter
) -> None:
    """Authenticate a webhook request.

    Without a configured secret, unsigned webhooks are accepted only in
    local/test environments.

    Raises:
        WebhookUnverifiedError: Signature missing, stale, or wrong.
    """
    settings = get_settings()
    if transcoder.has_webhook_secret:
        if not transcoder.verify_webhook(raw_body, signature_header):
            logger.warning(
                "webhook_unverified",
                reason="bad_signature" if signature_header else "missing_signature",
            )
            raise WebhookUnverifiedError()
        return

    if settings.webhook_secret_required:
        logger.error("webhook_unverified", reason="secret_not_configured")
        raise WebhookUnverifiedError("Webhook secret is not configured")
    logger.warning("webhook_unsigned_accepted", env=settings.coursecast_env.value)


def _parse_body(raw_body: bytes) -> dict:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Invalid JSON body") from e
    if not isinstance(payload, dict):
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, "Webhook body must be an object")
    return payload


def _to_lifecycle_event(event: TranscodeEvent) -> LifecycleEvent:
    if event.kind in (TranscodeEventKind.UPLOAD_ASSET_CREATED, TranscodeEventKind.ASSET_CREATED):
        return AssetCreated(asset_id=event.asset_id)
    if event.kind == TranscodeEventKind.ASSET_READY:
        return AssetReady(
            playback_id=event.playback_id,
            asset_id=event.asset_id,
            max_stored_resolution=event.max_stored_resolution,
            duration_s=event.duration_s,
        )
    return AssetFailed(error=event.error or "unknown_error", asset_id=event.asset_id)


def locate_video(db: Session, event: TranscodeEvent) -> Video | None:
    """Find (and row-lock) the video an event refers to."""
    if event.asset_id:
        video = db.execute(
            select(Video).where(Video.provider_asset_id == event.asset_id).with_for_update()
        ).scalar_one_or_none()
        if video is not None:
            return video
    if event.upload_id:
        return db.execute(
            select(Video).where(Video.provider_upload_id == event.upload_id).with_for_update()
        ).scalar_one_or_none()
    return None


def _apply_to_video(
    db: Session, video: Video, event: TranscodeEvent, now: datetime
) -> tuple[WebhookOutcome, Transition | None]:
    try:
        transition = transition_video(db, video, _to_lifecycle_event(event), now)
    except StateConflict as e:
        logger.warning(
            "state_conflict_ignored",
            event_id=event.event_id,
            video_id=str(video.id),
            current=e.current,
            attempted=e.attempted,
            reason=e.reason,
        )
        return WebhookOutcome.conflict, None
    if transition is None:
        return WebhookOutcome.ignored, None
    return WebhookOutcome.applied, transition


def _buffer(db: Session, event: TranscodeEvent, now: datetime) -> None:
    existing = db.execute(
        select(PendingWebhook).where(PendingWebhook.event_id == event.event_id)
    ).scalar_one_or_none()
    if existing is None:
        db.add(
            PendingWebhook(
                event_id=event.event_id,
                event_type=event.event_type,
                payload=event.raw,
                attempts=0,
                first_seen_at=now,
            )
        )
    logger.info(
        "webhook_buffered",
        event_id=event.event_id,
        event_type=event.event_type,
        upload_id=event.upload_id,
        asset_id=event.asset_id,
    )


def _recent_ledger_entry(
    db: Session, event_id: str, now: datetime, window: timedelta
) -> WebhookEvent | None:
    entry = db.get(WebhookEvent, event_id)
    if entry is None or as_utc(entry.received_at) <= now - window:
        return None
    return entry


def handle_webhook(
    db: Session,
    raw_body: bytes,
    signature_header: str | None,
    *,
    transcoder: TranscodingAdapter,
) -> WebhookResult:
    """Verify, deduplicate and apply one provider webhook.

    Raises:
        WebhookUnverifiedError: Signature check failed (nothing is written).
        InvalidRequestError: Body is not a valid event.
    """
    verify_webhook_request(raw_body, signature_header, transcoder)

    payload = _parse_body(raw_body)
    try:
        event = parse_event(payload)
    except ValueError as e:
        raise InvalidRequestError(ApiErrorCode.E_INVALID_REQUEST, str(e)) from e

    if event is None:
        logger.info("webhook_type_ignored", event_type=payload.get("type"))
        return WebhookResult(
            event_id=str(payload.get("id")),
            event_type=payload.get("type"),
            outcome=WebhookOutcome.ignored.value,
        )

    settings = get_settings()
    window = timedelta(hours=settings.webhook_dedup_window_hours)
    now = utcnow()

    seen = _recent_ledger_entry(db, event.event_id, now, window)
    if seen is not None:
        logger.info("webhook_duplicate_ignored", event_id=event.event_id, outcome=seen.outcome)
        return WebhookResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=WebhookOutcome(seen.outcome).value,
            duplicate=True,
        )

    video = locate_video(db, event)
    transition = None
    if video is None:
        _buffer(db, event, now)
        outcome = WebhookOutcome.buffered
    else:
        outcome, transition = _apply_to_video(db, video, event, now)

    # A stale ledger row past the window is reused for the new delivery.
    entry = db.get(WebhookEvent, event.event_id)
    if entry is None:
        db.add(
            WebhookEvent(
                event_id=event.event_id,
                event_type=event.event_type,
                outcome=outcome,
                received_at=now,
            )
        )
    else:
        entry.outcome = outcome
        entry.received_at = now

    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event committed first.
        db.rollback()
        entry = db.get(WebhookEvent, event.event_id)
        logger.info("webhook_duplicate_ignored", event_id=event.event_id, race=True)
        return WebhookResult(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=WebhookOutcome(entry.outcome).value if entry else outcome.value,
            duplicate=True,
        )

    logger.info(
        "webhook_processed",
        event_id=event.event_id,
        event_type=event.event_type,
        outcome=outcome.value,
        video_id=str(video.id) if video else None,
    )
    if transition is not None:
        after_transition_commit(db, video, transition)

    return WebhookResult(
        event_id=event.event_id, event_type=event.event_type, outcome=outcome.value
    )


# =============================================================================
# Reconciliation passes
# =============================================================================


def retry_pending_webhooks(db: Session, now: datetime | None = None) -> dict[str, int]:
    """Re-apply buffered webhooks whose video now exists.

    Events still unmatched after WEBHOOK_BUFFER_MINUTES are discarded.

    Returns:
        Counts: applied, discarded, pending.
    """
    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(minutes=settings.webhook_buffer_minutes)
    counts = {"applied": 0, "discarded": 0, "pending": 0}

    rows = (
        db.execute(select(PendingWebhook).order_by(PendingWebhook.first_seen_at))
        .scalars()
        .all()
    )
    for row in rows:
        try:
            event = parse_event(row.payload)
        except ValueError:
            event = None

        video = locate_video(db, event) if event is not None else None
        if video is None:
            if event is None or as_utc(row.first_seen_at) <= cutoff:
                db.delete(row)
                db.commit()
                logger.warning(
                    "webhook_discarded",
                    event_id=row.event_id,
                    event_type=row.event_type,
                    attempts=row.attempts,
                )
                counts["discarded"] += 1
            else:
                row.attempts += 1
                row.last_attempt_at = now
                db.commit()
                counts["pending"] += 1
            continue

        outcome, transition = _apply_to_video(db, video, event, now)
        entry = db.get(WebhookEvent, row.event_id)
        if entry is not None:
            entry.outcome = outcome
        db.delete(row)
        db.commit()
        logger.info("webhook_replayed", event_id=row.event_id, outcome=outcome.value)
        counts["applied"] += 1
        if transition is not None:
            after_transition_commit(db, video, transition)

    return counts


def prune_webhook_events(db: Session, now: datetime | None = None) -> int:
    """Drop dedup ledger rows older than the dedup window. Returns rows deleted."""
    settings = get_settings()
    now = now or utcnow()
    cutoff = now - timedelta(hours=settings.webhook_dedup_window_hours)
    result = db.execute(
        delete(WebhookEvent)
        .where(WebhookEvent.received_at < cutoff)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    if result.rowcount:
        logger.info("webhook_events_pruned", count=result.rowcount)
    return result.rowcount
