"""Availability subscription and notification Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict


class SubscriptionOut(BaseModel):
    """Response schema for a notify-when-ready subscription."""

    id: UUID
    lesson_id: int
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationOut(BaseModel):
    """Response schema for an in-app notification."""

    id: UUID
    lesson_id: int
    video_id: UUID
    kind: str
    message: str
    created_at: datetime
    read_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
