"""Animated transitions between layouts.

A layout change starts a LayoutTransition; the render loop asks it for the
interpolated layout each frame. Sources present in both layouts glide
between rects, new sources appear at their target rect and removed sources
disappear immediately.
"""

from collections.abc import Callable
from dataclasses import dataclass

from coursecast.client.compositor.layouts import Layout, Rect

DEFAULT_TRANSITION_MS = 300
MAX_TRANSITION_MS = 500


def linear(t: float) -> float:
    return t


def ease_in_out_quad(t: float) -> float:
    return 2 * t * t if t < 0.5 else 1 - (-2 * t + 2) ** 2 / 2


def ease_in_out_cubic(t: float) -> float:
    return 4 * t * t * t if t < 0.5 else 1 - (-2 * t + 2) ** 3 / 2


def ease_in_out_expo(t: float) -> float:
    if t <= 0:
        return 0.0
    if t >= 1:
        return 1.0
    if t < 0.5:
        return 2 ** (20 * t - 10) / 2
    return (2 - 2 ** (-20 * t + 10)) / 2


EASINGS: dict[str, Callable[[float], float]] = {
    "linear": linear,
    "ease-in-out-quad": ease_in_out_quad,
    "ease-in-out-cubic": ease_in_out_cubic,
    "ease-in-out-expo": ease_in_out_expo,
}


def interpolate_rect(start: Rect, end: Rect, progress: float) -> Rect:
    def mix(a: float, b: float) -> float:
        return a + (b - a) * progress

    return Rect(
        x=mix(start.x, end.x),
        y=mix(start.y, end.y),
        width=mix(start.width, end.width),
        height=mix(start.height, end.height),
        z_index=end.z_index,
    )


@dataclass
class LayoutTransition:
    """Interpolates from one layout to another over duration_ms (clock in seconds)."""

    start: Layout
    end: Layout
    started_at: float
    duration_ms: int = DEFAULT_TRANSITION_MS
    easing: str = "ease-in-out-cubic"

    def __post_init__(self):
        if not 0 <= self.duration_ms <= MAX_TRANSITION_MS:
            raise ValueError(f"Transition duration must be 0-{MAX_TRANSITION_MS} ms")
        if self.easing not in EASINGS:
            raise ValueError(f"Unknown easing '{self.easing}'")

    def progress(self, now: float) -> float:
        if self.duration_ms == 0:
            return 1.0
        elapsed_ms = (now - self.started_at) * 1000
        return max(0.0, min(1.0, elapsed_ms / self.duration_ms))

    def is_done(self, now: float) -> bool:
        return self.progress(now) >= 1.0

    def frame(self, now: float) -> Layout:
        t = self.progress(now)
        if t >= 1.0:
            return self.end
        eased = EASINGS[self.easing](t)
        sources = {
            source: (
                interpolate_rect(self.start.sources[source], rect, eased)
                if source in self.start.sources
                else rect
            )
            for source, rect in self.end.sources.items()
        }
        return Layout(self.end.type, self.end.canvas_width, self.end.canvas_height, sources)
