"""Availability subscriptions and notification fan-out.

A learner subscribes to a lesson ("notify me when the video is ready").
When the lesson's live video transitions to ready, every subscriber gets
exactly one in-app notification and the subscription is removed.

Fan-out commits per subscriber: a failed enqueue rolls back only that
subscriber's work, leaving the subscription for the reconciliation pass.
"""

from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coursecast.db.models import (
    AvailabilitySubscription,
    Lesson,
    Notification,
    Video,
    VideoStatus,
    as_utc,
    utcnow,
)
from coursecast.errors import ApiErrorCode, InvalidRequestError, NotFoundError
from coursecast.logging import get_logger
from coursecast.schemas.notification import NotificationOut, SubscriptionOut
from coursecast.services.lessons import get_lesson_for_viewer

logger = get_logger(__name__)

NOTIFICATION_KIND_VIDEO_READY = "video_ready"
MAX_NOTIFICATIONS_LIMIT = 100


def _subscription_out(sub: AvailabilitySubscription) -> SubscriptionOut:
    return SubscriptionOut(id=sub.id, lesson_id=sub.lesson_id, created_at=as_utc(sub.created_at))


def _find_subscription(
    db: Session, user_id: UUID, lesson_id: int
) -> AvailabilitySubscription | None:
    return db.execute(
        select(AvailabilitySubscription).where(
            AvailabilitySubscription.user_id == user_id,
            AvailabilitySubscription.lesson_id == lesson_id,
        )
    ).scalar_one_or_none()


def ensure_subscription(
    db: Session, user_id: UUID, lesson_id: int
) -> tuple[AvailabilitySubscription, bool]:
    """Create the (user, lesson) subscription if missing.

    Returns:
        (subscription, created)
    """
    existing = _find_subscription(db, user_id, lesson_id)
    if existing is not None:
        return existing, False

    sub = AvailabilitySubscription(user_id=user_id, lesson_id=lesson_id, created_at=utcnow())
    db.add(sub)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _find_subscription(db, user_id, lesson_id), False
    logger.info("subscription_created", lesson_id=lesson_id, user_id=str(user_id))
    return sub, True


def subscribe_for_viewer(db: Session, viewer_id: UUID, lesson_id: int) -> SubscriptionOut:
    """POST /lessons/{lesson_id}/notify-when-ready.

    Raises:
        NotFoundError: Lesson does not exist.
        ForbiddenError: Viewer cannot see the lesson.
        InvalidRequestError: Already subscribed.
    """
    lesson = get_lesson_for_viewer(db, viewer_id, lesson_id)

    sub, created = ensure_subscription(db, viewer_id, lesson.id)
    if not created:
        raise InvalidRequestError(
            ApiErrorCode.E_ALREADY_SUBSCRIBED, "Already subscribed to this lesson"
        )
    return _subscription_out(sub)


def unsubscribe_for_viewer(db: Session, viewer_id: UUID, lesson_id: int) -> None:
    """DELETE /lessons/{lesson_id}/notify-when-ready."""
    sub = _find_subscription(db, viewer_id, lesson_id)
    if sub is None:
        raise NotFoundError(ApiErrorCode.E_SUBSCRIPTION_NOT_FOUND, "Subscription not found")
    db.delete(sub)
    db.commit()
    logger.info("subscription_removed", lesson_id=lesson_id, user_id=str(viewer_id))


def list_subscriptions(db: Session, viewer_id: UUID) -> list[SubscriptionOut]:
    subs = (
        db.execute(
            select(AvailabilitySubscription)
            .where(AvailabilitySubscription.user_id == viewer_id)
            .order_by(AvailabilitySubscription.created_at.desc())
        )
        .scalars()
        .all()
    )
    return [_subscription_out(s) for s in subs]


def list_notifications(
    db: Session, viewer_id: UUID, limit: int = 50, unread_only: bool = False
) -> list[NotificationOut]:
    """Newest-first notification inbox for the viewer."""
    limit = max(1, min(limit, MAX_NOTIFICATIONS_LIMIT))
    query = select(Notification).where(Notification.user_id == viewer_id)
    if unread_only:
        query = query.where(Notification.read_at.is_(None))
    rows = (
        db.execute(query.order_by(Notification.created_at.desc()).limit(limit)).scalars().all()
    )
    return [
        NotificationOut(
            id=n.id,
            lesson_id=n.lesson_id,
            video_id=n.video_id,
            kind=n.kind,
            message=n.message,
            created_at=as_utc(n.created_at),
            read_at=as_utc(n.read_at),
        )
        for n in rows
    ]


# =============================================================================
# Fan-out
# =============================================================================


def _notify_subscriber(
    db: Session, sub: AvailabilitySubscription, video: Video, message: str
) -> bool:
    already = db.execute(
        select(
            exists().where(
                Notification.user_id == sub.user_id,
                Notification.video_id == video.id,
                Notification.kind == NOTIFICATION_KIND_VIDEO_READY,
            )
        )
    ).scalar()
    try:
        if not already:
            db.add(
                Notification(
                    user_id=sub.user_id,
                    lesson_id=video.lesson_id,
                    video_id=video.id,
                    kind=NOTIFICATION_KIND_VIDEO_READY,
                    message=message,
                    created_at=utcnow(),
                )
            )
        db.delete(sub)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.warning(
            "notification_enqueue_failed",
            user_id=str(sub.user_id),
            video_id=str(video.id),
            error=str(e),
        )
        return False
    return True


def fan_out_ready(db: Session, video_id: UUID) -> int:
    """Notify and unsubscribe every subscriber of a ready, live video.

    Safe to re-run: a subscriber already notified for this video is only
    unsubscribed, never notified twice.

    Returns:
        Number of subscribers processed successfully.
    """
    video = db.get(Video, video_id)
    if video is None or VideoStatus(video.status) != VideoStatus.ready:
        return 0
    lesson = db.get(Lesson, video.lesson_id)
    if lesson is None or lesson.video_id != video.id:
        return 0

    message = f"'{lesson.title}' is ready to watch"
    subs = (
        db.execute(
            select(AvailabilitySubscription)
            .where(AvailabilitySubscription.lesson_id == lesson.id)
            .order_by(AvailabilitySubscription.created_at)
        )
        .scalars()
        .all()
    )

    delivered = 0
    for sub in subs:
        if _notify_subscriber(db, sub, video, message):
            delivered += 1

    remaining = db.execute(
        select(exists().where(AvailabilitySubscription.lesson_id == lesson.id))
    ).scalar()
    if not remaining and video.notified_at is None:
        video.notified_at = utcnow()
        db.commit()

    logger.info(
        "notifications_fanned_out",
        lesson_id=lesson.id,
        video_id=str(video.id),
        delivered=delivered,
        failed=len(subs) - delivered,
    )
    return delivered


def reconcile_ready_notifications(db: Session) -> int:
    """Fan out for ready live videos whose lesson still has subscribers.

    Recovers from a crash between the ready commit and the fan-out.

    Returns:
        Number of notifications delivered.
    """
    video_ids = (
        db.execute(
            select(Video.id)
            .join(Lesson, Lesson.video_id == Video.id)
            .where(
                Video.status == VideoStatus.ready,
                exists().where(AvailabilitySubscription.lesson_id == Lesson.id),
            )
        )
        .scalars()
        .all()
    )
    total = 0
    for video_id in video_ids:
        total += fan_out_ready(db, video_id)
    if total:
        logger.info("ready_notifications_reconciled", delivered=total, videos=len(video_ids))
    return total
