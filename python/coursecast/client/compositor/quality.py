"""Recording quality presets and dropped-frame driven bitrate adjustment."""

from collections import deque
from dataclasses import dataclass

from coursecast.logging import get_logger

logger = get_logger(__name__)

DROP_WINDOW_S = 5.0
DROP_THRESHOLD = 0.05


@dataclass(frozen=True)
class QualityPreset:
    name: str
    width: int
    height: int
    fps: int
    bitrate_bps: int


PRESETS: dict[str, QualityPreset] = {
    "480p": QualityPreset("480p", 854, 480, 30, 1_000_000),
    "720p": QualityPreset("720p", 1280, 720, 30, 2_500_000),
    "1080p": QualityPreset("1080p", 1920, 1080, 30, 5_000_000),
}
DEFAULT_PRESET = "720p"

# Descending bitrate steps auto-adjust walks down
BITRATE_LADDER = sorted({p.bitrate_bps for p in PRESETS.values()}, reverse=True)


def get_preset(name: str | None = None) -> QualityPreset:
    key = name or DEFAULT_PRESET
    if key not in PRESETS:
        raise ValueError(f"Unknown quality preset '{key}'. Expected one of: {', '.join(PRESETS)}")
    return PRESETS[key]


class BitrateController:
    """Tracks frame outcomes over a sliding window and steps the bitrate down.

    One step per breach; the window is cleared after each step so the new
    bitrate gets a full window before it is judged.
    """

    def __init__(self, preset: QualityPreset, auto_adjust: bool = True):
        self.preset = preset
        self.auto_adjust = auto_adjust
        self.target_bitrate_bps = preset.bitrate_bps
        self._window: deque[tuple[float, bool]] = deque()

    def record_frame(self, now: float, dropped: bool) -> None:
        self._window.append((now, dropped))
        while self._window and self._window[0][0] < now - DROP_WINDOW_S:
            self._window.popleft()

    def drop_rate(self) -> float:
        if not self._window:
            return 0.0
        return sum(1 for _, dropped in self._window if dropped) / len(self._window)

    def _window_span(self) -> float:
        if len(self._window) < 2:
            return 0.0
        return self._window[-1][0] - self._window[0][0]

    def maybe_adjust(self) -> int | None:
        """Return the new target bitrate when a step down happened."""
        if not self.auto_adjust or self._window_span() < DROP_WINDOW_S * 0.9:
            return None
        if self.drop_rate() <= DROP_THRESHOLD:
            return None
        lower = [b for b in BITRATE_LADDER if b < self.target_bitrate_bps]
        if not lower:
            return None
        previous, self.target_bitrate_bps = self.target_bitrate_bps, lower[0]
        logger.info(
            "recording_bitrate_reduced",
            from_bps=previous,
            to_bps=self.target_bitrate_bps,
            drop_rate=round(self.drop_rate(), 3),
        )
        self._window.clear()
        return self.target_bitrate_bps
