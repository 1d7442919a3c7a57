"""Video upload, ticket, and playback Pydantic schemas."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field

# =============================================================================
# Upload Schemas
# =============================================================================


class UploadResultOut(BaseModel):
    """Response schema for POST /videos/upload and ticket completion."""

    video_ref: UUID
    lesson_ref: int
    status: str
    size_bytes: int | None


class DirectUploadRequest(BaseModel):
    """Request schema for POST /videos/direct-upload."""

    lesson_ref: int
    filename: str = Field(default="recording.webm", min_length=1, max_length=255)
    content_type: str = "video/webm"
    size_bytes: int | None = Field(default=None, gt=0)
    content_hash: str | None = Field(default=None, max_length=128)


class DirectUploadOut(BaseModel):
    """Response schema for POST /videos/direct-upload."""

    upload_url: str
    upload_id: str
    expires_in: int
    ticket_id: UUID
    video_ref: UUID | None


class UploadTicketRequest(BaseModel):
    """Request schema for POST /videos/upload-tickets."""

    lesson_ref: int
    filename: str = Field(min_length=1, max_length=255)
    content_type: str
    size_bytes: int | None = Field(default=None, gt=0)
    content_hash: str | None = Field(default=None, max_length=128)


class UploadTicketOut(BaseModel):
    """Response schema for an upload ticket.

    target selects the branch the client must follow:
    - provider-direct: PUT the bytes to upload_url, then complete
    - store-direct: PUT the bytes to upload_url with upload_headers, then complete
    - server-proxied: POST multipart to upload_url (no completion call)
    """

    ticket_id: UUID
    target: Literal["provider-direct", "store-direct", "server-proxied"]
    status: str
    upload_url: str
    upload_headers: dict[str, str] = Field(default_factory=dict)
    upload_id: str | None = None
    storage_key: str | None = None
    video_ref: UUID | None = None
    expires_at: datetime
    expires_in: int


class CompleteTicketRequest(BaseModel):
    """Request schema for POST /videos/upload-tickets/{ticket_id}/complete."""

    size_bytes: int | None = Field(default=None, gt=0)


# =============================================================================
# Playback Schemas
# =============================================================================


class PlaybackOut(BaseModel):
    """Response schema for GET /lessons/{lesson_ref}/video.

    stream_url is present iff status is "ready".
    """

    video_ref: UUID
    status: str
    stream_url: str | None = None
    kind: Literal["hls", "file"] | None = None
    error: str | None = None
    supports_adaptive: bool = False
    available_qualities: list[str] = Field(default_factory=list)
    thumbnail_url: str | None = None
    expires_in: int | None = None
