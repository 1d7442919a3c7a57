"""Lesson and video metadata Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from coursecast.schemas.subtitle import SubtitleOut


class CreateLessonRequest(BaseModel):
    """Request schema for POST /courses/{course_ref}/lessons.

    Length rules are enforced by the service so violations map to E_TITLE_INVALID.
    """

    title: str
    description: str | None = None
    order_index: int | None = Field(default=None, alias="order")

    model_config = ConfigDict(populate_by_name=True)


class VideoSummaryOut(BaseModel):
    """Current video of a lesson, without any playback URL."""

    id: UUID
    status: str
    hosting: Literal["provider", "store"] | None
    size_bytes: int | None
    duration_s: float | None
    original_filename: str | None
    processing_error: str | None
    created_at: datetime
    processing_started_at: datetime | None
    processing_completed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class LessonOut(BaseModel):
    """Response schema for a lesson with its video summary and subtitles."""

    id: int
    course_id: int
    title: str
    description: str | None
    order_index: int
    video: VideoSummaryOut | None = None
    subtitles: list[SubtitleOut] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
