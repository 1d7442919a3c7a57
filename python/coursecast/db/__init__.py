"""Database module for CourseCast.

Provides engine creation, session management, transaction helpers, and ORM models.
"""

from coursecast.db.engine import create_db_engine, get_engine
from coursecast.db.models import (
    AvailabilitySubscription,
    Base,
    Course,
    Enrollment,
    Lesson,
    Notification,
    PendingWebhook,
    StorageDeletion,
    Subtitle,
    TicketStatus,
    UploadTargetKind,
    UploadTicket,
    User,
    UserRole,
    Video,
    VideoStatus,
    WebhookEvent,
    WebhookOutcome,
)
from coursecast.db.session import get_db, run_in_transaction, transaction

__all__ = [
    # Engine and session
    "create_db_engine",
    "get_engine",
    "get_db",
    "transaction",
    "run_in_transaction",
    # Base
    "Base",
    # Enums
    "UserRole",
    "VideoStatus",
    "UploadTargetKind",
    "TicketStatus",
    "WebhookOutcome",
    # Models
    "User",
    "Course",
    "Enrollment",
    "Lesson",
    "Video",
    "Subtitle",
    "UploadTicket",
    "AvailabilitySubscription",
    "Notification",
    "StorageDeletion",
    "WebhookEvent",
    "PendingWebhook",
]
