"""Compositor performance metrics sampled at 1 Hz."""

import resource
import sys
from collections.abc import Callable
from dataclasses import dataclass

SAMPLE_INTERVAL_S = 1.0


@dataclass(frozen=True)
class MetricsSample:
    fps: float
    frames_dropped: int
    average_render_time_ms: float
    memory_bytes: int


def process_memory_bytes() -> int:
    """Peak resident set size of this process."""
    peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is bytes on macOS, kilobytes elsewhere
    return peak if sys.platform == "darwin" else peak * 1024


class MetricsSampler:
    """Accumulates per-frame stats and emits one sample per interval."""

    def __init__(
        self,
        callback: Callable[[MetricsSample], None] | None = None,
        *,
        memory_probe: Callable[[], int] = process_memory_bytes,
        interval_s: float = SAMPLE_INTERVAL_S,
    ):
        self.callback = callback
        self.memory_probe = memory_probe
        self.interval_s = interval_s
        self.frames_dropped = 0
        self._frames = 0
        self._render_ms_total = 0.0
        self._window_started: float | None = None
        self.last_sample: MetricsSample | None = None

    def record_frame(self, now: float, render_ms: float, dropped: bool = False) -> None:
        if self._window_started is None:
            self._window_started = now
        if dropped:
            self.frames_dropped += 1
        else:
            self._frames += 1
            self._render_ms_total += render_ms
        self.tick(now)

    def tick(self, now: float) -> MetricsSample | None:
        """Emit a sample if a full interval has elapsed since the last one."""
        if self._window_started is None or now - self._window_started < self.interval_s:
            return None
        elapsed = now - self._window_started
        sample = MetricsSample(
            fps=round(self._frames / elapsed, 2),
            frames_dropped=self.frames_dropped,
            average_render_time_ms=(
                round(self._render_ms_total / self._frames, 3) if self._frames else 0.0
            ),
            memory_bytes=self.memory_probe(),
        )
        self._frames = 0
        self._render_ms_total = 0.0
        self._window_started = now
        self.last_sample = sample
        if self.callback:
            self.callback(sample)
        return sample
