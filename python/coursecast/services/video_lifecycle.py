"""Video lifecycle state machine.

    uploading -> processing -> (ready | failed)

`uploading` is optional: a video may be created in `processing`, and a
`ready` event may arrive before the `processing` one. No transition leaves
`ready` or `failed`; a replacement upload is a new Video row.

apply() is the only function that mutates Video.status. It is:
- idempotent: replaying an event for the state the video is already in is a no-op
- monotonic: events that would move the video backward raise StateConflict

Because of those two properties, any interleaving of duplicate or
out-of-order provider events converges on the same final row.
"""

from dataclasses import dataclass
from datetime import datetime

from coursecast.db.models import Video, VideoStatus, utcnow
from coursecast.errors import StateConflict

_RANK = {
    VideoStatus.uploading: 0,
    VideoStatus.processing: 1,
    VideoStatus.ready: 2,
    VideoStatus.failed: 2,
}

TERMINAL_STATUSES = frozenset({VideoStatus.ready, VideoStatus.failed})

MAX_ERROR_LEN = 1000


@dataclass(frozen=True)
class AssetCreated:
    """Provider accepted the bytes and started transcoding."""

    asset_id: str | None = None

    target = VideoStatus.processing


@dataclass(frozen=True)
class AssetReady:
    """Asset is playable. Store-hosted videos pass no playback_id."""

    playback_id: str | None = None
    asset_id: str | None = None
    max_stored_resolution: str | None = None
    duration_s: float | None = None

    target = VideoStatus.ready


@dataclass(frozen=True)
class AssetFailed:
    """Transcoding or upload failed at the provider."""

    error: str
    asset_id: str | None = None

    target = VideoStatus.failed


LifecycleEvent = AssetCreated | AssetReady | AssetFailed


@dataclass(frozen=True)
class Transition:
    """What apply() changed, for logging and post-commit side effects."""

    from_status: VideoStatus
    to_status: VideoStatus
    released_storage_key: str | None = None

    @property
    def became_ready(self) -> bool:
        return self.to_status == VideoStatus.ready


def event_for_status(
    status: VideoStatus,
    *,
    playback_id: str | None = None,
    error: str | None = None,
    asset_id: str | None = None,
) -> LifecycleEvent:
    """Build the event that moves a video into ``status``."""
    if status == VideoStatus.processing:
        return AssetCreated(asset_id=asset_id)
    if status == VideoStatus.ready:
        return AssetReady(playback_id=playback_id, asset_id=asset_id)
    if status == VideoStatus.failed:
        return AssetFailed(error=error or "unknown_error", asset_id=asset_id)
    raise ValueError(f"No event moves a video into {status.value}")


def _fill_asset_id(video: Video, asset_id: str | None) -> None:
    if asset_id and not video.provider_asset_id:
        video.provider_asset_id = asset_id


def apply(video: Video, event: LifecycleEvent, now: datetime | None = None) -> Transition | None:
    """Apply a lifecycle event to a video row.

    Args:
        video: The (row-locked) Video to mutate.
        event: AssetCreated, AssetReady or AssetFailed.
        now: Timestamp for the transition (defaults to current UTC time).

    Returns:
        Transition if the status changed, None for an idempotent replay.

    Raises:
        StateConflict: If the event would move the video backward, out of a
            terminal state, or into ready without a playback locator.
    """
    now = now or utcnow()
    current = VideoStatus(video.status)
    target = event.target

    if current == target:
        # Replays may still carry an identifier the row is missing.
        _fill_asset_id(video, event.asset_id)
        return None

    if current in TERMINAL_STATUSES:
        raise StateConflict(current.value, target.value, "video is in a terminal state")

    if _RANK[target] < _RANK[current]:
        raise StateConflict(current.value, target.value, "transition would move backward")

    if isinstance(event, AssetReady):
        if not (event.playback_id or video.playback_id or video.storage_key):
            raise StateConflict(current.value, target.value, "no playback locator")

    _fill_asset_id(video, event.asset_id)
    if video.processing_started_at is None:
        video.processing_started_at = now

    released_key = None
    if isinstance(event, AssetReady):
        if event.playback_id:
            video.playback_id = event.playback_id
        if event.max_stored_resolution:
            video.max_stored_resolution = event.max_stored_resolution
        if event.duration_s is not None:
            video.duration_s = event.duration_s
        video.processing_error = None
        video.processing_completed_at = now
        # The provider now hosts the bytes; the staged store copy is redundant.
        if video.playback_id and video.provider_asset_id and video.storage_key:
            released_key = video.storage_key
            video.storage_key = None
    elif isinstance(event, AssetFailed):
        video.processing_error = event.error[:MAX_ERROR_LEN]
        video.processing_completed_at = now

    video.status = target
    video.updated_at = now
    return Transition(from_status=current, to_status=target, released_storage_key=released_key)
