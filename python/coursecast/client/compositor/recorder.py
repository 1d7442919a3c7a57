"""Recording session: drives the encoder from composited frames.

Adding or removing a source while recording closes the current encoder
segment and opens the next one with the new source set; segments are
concatenated into one artifact on stop. Layout changes do not restart the
encoder: they start a LayoutTransition and the very next frame already
moves toward the new layout.
"""

import enum
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from typing import Protocol

from coursecast.client.compositor.audio import MICROPHONE, AudioMixer
from coursecast.client.compositor.layouts import (
    Layout,
    LayoutType,
    PipPosition,
    VideoSource,
    build_layout,
)
from coursecast.client.compositor.metrics import MetricsSample, MetricsSampler
from coursecast.client.compositor.quality import BitrateController, QualityPreset, get_preset
from coursecast.client.compositor.transitions import DEFAULT_TRANSITION_MS, LayoutTransition
from coursecast.client.drafts import Draft, DraftMetadata, DraftStore
from coursecast.client.errors import RecordingTooShort
from coursecast.logging import get_logger

logger = get_logger(__name__)

MIN_RECORDING_S = 1.0
SYSTEM_AUDIO = "system-audio"
AUDIO_SOURCES = frozenset({MICROPHONE, SYSTEM_AUDIO})
VIDEO_SOURCES = frozenset(s.value for s in VideoSource)


class Encoder(Protocol):
    """Platform encoder. Receives composited frames, produces container bytes."""

    content_type: str

    def open_segment(self, preset: QualityPreset, bitrate_bps: int) -> None: ...

    def write_frame(self, layout: Layout, audio: Sequence[float], timestamp_s: float) -> None: ...

    def set_bitrate(self, bitrate_bps: int) -> None: ...

    def partial(self) -> bytes: ...

    def close_segment(self) -> bytes: ...

    def concat(self, segments: Sequence[bytes]) -> bytes: ...


class RecorderState(str, enum.Enum):
    IDLE = "idle"
    RECORDING = "recording"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass(frozen=True)
class Recording:
    blob: bytes
    duration_s: float
    segment_count: int
    layout: LayoutType
    quality: str
    content_type: str


class Recorder:
    def __init__(
        self,
        encoder: Encoder,
        *,
        layout: LayoutType | str = LayoutType.PICTURE_IN_PICTURE,
        pip_position: PipPosition | str = PipPosition.BOTTOM_RIGHT,
        quality: str | None = None,
        auto_adjust: bool = True,
        mixer: AudioMixer | None = None,
        on_metrics: Callable[[MetricsSample], None] | None = None,
        draft_store: DraftStore | None = None,
        draft_metadata: DraftMetadata | None = None,
        autosave_interval_s: float | None = None,
        transition_ms: int = DEFAULT_TRANSITION_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.encoder = encoder
        self.preset = get_preset(quality)
        self.bitrate = BitrateController(self.preset, auto_adjust=auto_adjust)
        self.mixer = mixer or AudioMixer()
        self.metrics = MetricsSampler(on_metrics)
        self.draft_store = draft_store
        self.draft_metadata = draft_metadata or DraftMetadata()
        self.autosave_interval_s = autosave_interval_s
        self.draft_id: str | None = None
        self.draft: Draft | None = None
        self._autosaving = False
        self.transition_ms = transition_ms
        self._clock = clock

        self.layout_type = LayoutType(layout)
        self.pip_position = PipPosition(pip_position)
        self.sources: set[str] = set()
        self.state = RecorderState.IDLE

        self._segments: list[bytes] = []
        self._started_at: float | None = None
        self._stopped_at: float | None = None
        self._transition: LayoutTransition | None = None
        self._result: Recording | None = None
        self._error: RecordingTooShort | None = None

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _target_layout(self) -> Layout:
        available = {VideoSource(s) for s in self.sources if s in VIDEO_SOURCES}
        return build_layout(
            self.layout_type,
            self.preset.width,
            self.preset.height,
            available=available,
            pip_position=self.pip_position,
        )

    def current_layout(self, now: float | None = None) -> Layout:
        now = self._clock() if now is None else now
        if self._transition is not None:
            if not self._transition.is_done(now):
                return self._transition.frame(now)
            self._transition = None
        return self._target_layout()

    def set_layout(
        self, layout: LayoutType | str, pip_position: PipPosition | str | None = None
    ) -> None:
        now = self._clock()
        start = self.current_layout(now)
        self.layout_type = LayoutType(layout)
        if pip_position is not None:
            self.pip_position = PipPosition(pip_position)
        self._transition = LayoutTransition(
            start, self._target_layout(), started_at=now, duration_ms=self.transition_ms
        )
        logger.info("recording_layout_changed", layout=self.layout_type.value)

    # ------------------------------------------------------------------
    # Sources
    # ------------------------------------------------------------------

    def _register(self, source: str) -> None:
        if source not in VIDEO_SOURCES | AUDIO_SOURCES:
            raise ValueError(f"Unknown source '{source}'")
        self.sources.add(source)
        if source in AUDIO_SOURCES:
            self.mixer.add_source(source)

    def _rotate_segment(self) -> None:
        self._segments.append(self.encoder.close_segment())
        self.encoder.open_segment(self.preset, self.bitrate.target_bitrate_bps)

    def add_source(self, source: str) -> None:
        if source in self.sources:
            return
        if self.state == RecorderState.RECORDING:
            self._rotate_segment()
        self._register(source)
        logger.info("recording_source_added", source=source, segments=len(self._segments))

    def remove_source(self, source: str) -> None:
        if source not in self.sources:
            return
        if self.state == RecorderState.RECORDING:
            self._rotate_segment()
        self.sources.discard(source)
        if source in AUDIO_SOURCES:
            self.mixer.remove_source(source)
        logger.info("recording_source_removed", source=source, segments=len(self._segments))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, sources: Sequence[str] = ()) -> None:
        """Open the first segment. With a draft store attached this also starts
        the autosave, so it must be called from the running event loop."""
        if self.state != RecorderState.IDLE:
            raise RuntimeError(f"Cannot start a recorder that is {self.state.value}")
        for source in sources:
            self._register(source)
        self.encoder.open_segment(self.preset, self.bitrate.target_bitrate_bps)
        self._started_at = self._clock()
        self.state = RecorderState.RECORDING
        if self.draft_store is not None:
            self.draft_id = self.draft_store.start_autosave(
                self.snapshot, self._draft_meta, interval_s=self.autosave_interval_s
            )
            self._autosaving = True
        logger.info(
            "recording_started",
            draft_id=self.draft_id,
            layout=self.layout_type.value,
            quality=self.preset.name,
            sources=sorted(self.sources),
        )

    def elapsed_s(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._stopped_at if self._stopped_at is not None else self._clock()
        return end - self._started_at

    def render_frame(
        self,
        audio_blocks: Mapping[str, Sequence[float]] | None = None,
        *,
        render_ms: float = 0.0,
        dropped: bool = False,
    ) -> Layout | None:
        """Composite and encode one frame. Returns the layout drawn, None if dropped."""
        if self.state != RecorderState.RECORDING:
            raise RuntimeError("Recorder is not recording")
        now = self._clock()
        self.metrics.record_frame(now, render_ms, dropped=dropped)
        self.bitrate.record_frame(now, dropped)
        new_bitrate = self.bitrate.maybe_adjust()
        if new_bitrate is not None:
            self.encoder.set_bitrate(new_bitrate)
        if dropped:
            return None

        layout = self.current_layout(now)
        self.encoder.write_frame(layout, self.mixer.mix(audio_blocks or {}), now - self._started_at)
        return layout

    def snapshot(self) -> bytes:
        """Everything captured so far, for auto-save."""
        if self._result is not None:
            return self._result.blob
        parts = list(self._segments)
        if self.state == RecorderState.RECORDING:
            parts.append(self.encoder.partial())
        return self.encoder.concat(parts) if parts else b""

    def _draft_meta(self) -> DraftMetadata:
        return self.draft_metadata.model_copy(
            update={
                "duration_s": self.elapsed_s(),
                "quality": self.preset.name,
                "layout": self.layout_type.value,
                "content_type": self.encoder.content_type,
            }
        )

    async def _flush_draft(self) -> None:
        if not self._autosaving:
            return
        self._autosaving = False
        self.draft = await self.draft_store.stop_autosave()

    async def stop(self) -> Recording:
        """Finalize the encoder, flush the draft, return the recording.

        Idempotent: later calls return the same recording (or raise the
        same error) without touching the encoder again.

        Raises:
            RecordingTooShort: Less than one second was captured.
        """
        if self._result is not None:
            return self._result
        if self._error is not None:
            raise self._error
        if self.state != RecorderState.RECORDING:
            raise RuntimeError("Recorder was never started")

        self._segments.append(self.encoder.close_segment())
        self._stopped_at = self._clock()
        duration = self.elapsed_s()

        if duration < MIN_RECORDING_S:
            self.state = RecorderState.FAILED
            self._error = RecordingTooShort(duration, MIN_RECORDING_S)
            await self._flush_draft()
            logger.info("recording_rejected_too_short", duration_s=round(duration, 3))
            raise self._error

        self._result = Recording(
            blob=self.encoder.concat(self._segments),
            duration_s=duration,
            segment_count=len(self._segments),
            layout=self.layout_type,
            quality=self.preset.name,
            content_type=self.encoder.content_type,
        )
        self.state = RecorderState.STOPPED
        await self._flush_draft()
        logger.info(
            "recording_stopped",
            duration_s=round(duration, 3),
            segments=len(self._segments),
            size_bytes=len(self._result.blob),
        )
        return self._result
