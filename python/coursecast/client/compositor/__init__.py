"""Client-side capture compositor.

Layout geometry, transitions, audio mixing, quality control and metrics
for the recording session. Raw frames never leave the client; the server
only sees the finished upload.
"""

from coursecast.client.compositor.audio import AudioMixer
from coursecast.client.compositor.layouts import (
    Layout,
    LayoutType,
    PipPosition,
    Rect,
    VideoSource,
    build_layout,
    validate_layout,
)
from coursecast.client.compositor.metrics import MetricsSample, MetricsSampler
from coursecast.client.compositor.quality import PRESETS, BitrateController, get_preset
from coursecast.client.compositor.recorder import Encoder, Recorder, RecorderState, Recording
from coursecast.client.compositor.transitions import LayoutTransition

__all__ = [
    "AudioMixer",
    "BitrateController",
    "Encoder",
    "Layout",
    "LayoutTransition",
    "LayoutType",
    "MetricsSample",
    "MetricsSampler",
    "PRESETS",
    "PipPosition",
    "Recorder",
    "RecorderState",
    "Recording",
    "Rect",
    "VideoSource",
    "build_layout",
    "get_preset",
    "validate_layout",
]
