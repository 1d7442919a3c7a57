"""Pydantic schemas for request/response models.

All schemas are re-exported here for convenient imports.
"""

from coursecast.schemas.lesson import CreateLessonRequest, LessonOut, VideoSummaryOut
from coursecast.schemas.notification import NotificationOut, SubscriptionOut
from coursecast.schemas.subtitle import SubtitleOut
from coursecast.schemas.video import (
    CompleteTicketRequest,
    DirectUploadOut,
    DirectUploadRequest,
    PlaybackOut,
    UploadResultOut,
    UploadTicketOut,
    UploadTicketRequest,
)

__all__ = [
    "CompleteTicketRequest",
    "CreateLessonRequest",
    "DirectUploadOut",
    "DirectUploadRequest",
    "LessonOut",
    "NotificationOut",
    "PlaybackOut",
    "SubscriptionOut",
    "SubtitleOut",
    "UploadResultOut",
    "UploadTicketOut",
    "UploadTicketRequest",
    "VideoSummaryOut",
]
