"""Provider-neutral types for the transcoding adapter."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class DirectUpload:
    """Provider direct-upload ticket: the client PUTs bytes to upload_url."""

    upload_url: str
    upload_id: str
    expires_in: int


@dataclass(frozen=True)
class UploadInfo:
    """Provider view of a direct upload."""

    upload_id: str
    status: str
    asset_id: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class AssetInfo:
    """Provider view of an asset."""

    asset_id: str
    status: str  # preparing | ready | errored
    playback_id: str | None = None
    upload_id: str | None = None
    max_stored_resolution: str | None = None
    duration_s: float | None = None
    error: str | None = None

    @property
    def is_ready(self) -> bool:
        return self.status == "ready" and self.playback_id is not None

    @property
    def is_errored(self) -> bool:
        return self.status == "errored"


class TranscodeEventKind(str, Enum):
    """Normalized webhook event kinds."""

    UPLOAD_ASSET_CREATED = "upload_asset_created"
    ASSET_CREATED = "asset_created"
    ASSET_READY = "asset_ready"
    ASSET_ERRORED = "asset_errored"
    UPLOAD_ERRORED = "upload_errored"


@dataclass(frozen=True)
class TranscodeEvent:
    """A verified provider webhook, reduced to what the lifecycle needs."""

    event_id: str
    event_type: str
    kind: TranscodeEventKind
    upload_id: str | None = None
    asset_id: str | None = None
    playback_id: str | None = None
    error: str | None = None
    max_stored_resolution: str | None = None
    duration_s: float | None = None
    raw: dict = field(default_factory=dict, compare=False, repr=False)
