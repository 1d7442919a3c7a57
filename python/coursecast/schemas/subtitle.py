"""Subtitle Pydantic schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel


class SubtitleOut(BaseModel):
    """Response schema for a subtitle track.

    ``url`` is the API path that redirects to a signed download URL.
    """

    id: UUID
    lesson_id: int
    language_code: str
    language_name: str
    filename: str
    url: str
    size_bytes: int
    created_at: datetime
