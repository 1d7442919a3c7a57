"""Compositor layouts: where each source is drawn on the output canvas.

Geometry is computed for the actual canvas size and the sources that are
live right now; a layout whose sources are missing degrades to what is
available (picture-in-picture with no camera draws the screen only).
"""

from dataclasses import dataclass, field
from enum import Enum

from coursecast.client.errors import InvalidLayout

PIP_INSET_RATIO = 0.28
PRESENTATION_INSET_RATIO = 0.18
INSET_PADDING = 20
SOURCE_ASPECT = 16 / 9


class LayoutType(str, Enum):
    PICTURE_IN_PICTURE = "picture-in-picture"
    SIDE_BY_SIDE = "side-by-side"
    PRESENTATION = "presentation"
    SCREEN_ONLY = "screen-only"
    CAMERA_ONLY = "camera-only"


class PipPosition(str, Enum):
    BOTTOM_RIGHT = "bottom-right"
    BOTTOM_LEFT = "bottom-left"
    TOP_RIGHT = "top-right"
    TOP_LEFT = "top-left"


class VideoSource(str, Enum):
    CAMERA = "camera"
    SCREEN = "screen"


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float
    z_index: int = 0


@dataclass(frozen=True)
class Layout:
    type: LayoutType
    canvas_width: int
    canvas_height: int
    sources: dict[VideoSource, Rect] = field(default_factory=dict)


def _contain(box: Rect, aspect: float = SOURCE_ASPECT) -> Rect:
    """Largest rect of the given aspect centered inside box (letter-boxed)."""
    width = box.width
    height = width / aspect
    if height > box.height:
        height = box.height
        width = height * aspect
    return Rect(
        x=box.x + (box.width - width) / 2,
        y=box.y + (box.height - height) / 2,
        width=width,
        height=height,
        z_index=box.z_index,
    )


def _inset(width: int, height: int, ratio: float) -> tuple[float, float]:
    inset_h = round(min(width, height) * ratio)
    return round(inset_h * SOURCE_ASPECT), inset_h


def _pip_rect(width: int, height: int, position: PipPosition) -> Rect:
    inset_w, inset_h = _inset(width, height, PIP_INSET_RATIO)
    left = position in (PipPosition.BOTTOM_LEFT, PipPosition.TOP_LEFT)
    top = position in (PipPosition.TOP_LEFT, PipPosition.TOP_RIGHT)
    return Rect(
        x=INSET_PADDING if left else width - inset_w - INSET_PADDING,
        y=INSET_PADDING if top else height - inset_h - INSET_PADDING,
        width=inset_w,
        height=inset_h,
        z_index=1,
    )


def build_layout(
    layout_type: LayoutType | str,
    canvas_width: int = 1280,
    canvas_height: int = 720,
    *,
    available: frozenset[VideoSource] | set[VideoSource] = frozenset(VideoSource),
    pip_position: PipPosition | str = PipPosition.BOTTOM_RIGHT,
) -> Layout:
    """Compute source rects for a layout on a canvas."""
    layout_type = LayoutType(layout_type)
    pip_position = PipPosition(pip_position)
    full = Rect(0, 0, canvas_width, canvas_height)
    has_screen = VideoSource.SCREEN in available
    has_camera = VideoSource.CAMERA in available
    sources: dict[VideoSource, Rect] = {}

    if layout_type == LayoutType.SCREEN_ONLY:
        if has_screen:
            sources[VideoSource.SCREEN] = full
    elif layout_type == LayoutType.CAMERA_ONLY:
        if has_camera:
            sources[VideoSource.CAMERA] = full
    elif layout_type == LayoutType.SIDE_BY_SIDE:
        half = canvas_width / 2
        if has_screen and has_camera:
            sources[VideoSource.SCREEN] = _contain(Rect(0, 0, half, canvas_height))
            sources[VideoSource.CAMERA] = _contain(Rect(half, 0, half, canvas_height))
        elif has_screen:
            sources[VideoSource.SCREEN] = full
        elif has_camera:
            sources[VideoSource.CAMERA] = full
    elif layout_type == LayoutType.PRESENTATION:
        if has_screen:
            sources[VideoSource.SCREEN] = full
        if has_camera:
            inset_w, inset_h = _inset(canvas_width, canvas_height, PRESENTATION_INSET_RATIO)
            sources[VideoSource.CAMERA] = (
                Rect((canvas_width - inset_w) / 2, INSET_PADDING, inset_w, inset_h, z_index=1)
                if has_screen
                else full
            )
    else:
        if has_screen:
            sources[VideoSource.SCREEN] = full
        if has_camera:
            sources[VideoSource.CAMERA] = (
                _pip_rect(canvas_width, canvas_height, pip_position) if has_screen else full
            )

    layout = Layout(layout_type, canvas_width, canvas_height, sources)
    validate_layout(layout)
    return layout


def validate_layout(layout: Layout) -> None:
    """Raise InvalidLayout unless every rect is positive-sized and inside the canvas."""
    if layout.canvas_width <= 0 or layout.canvas_height <= 0:
        raise InvalidLayout("Canvas dimensions must be positive")
    for source, rect in layout.sources.items():
        if rect.width <= 0 or rect.height <= 0:
            raise InvalidLayout(f"{source.value} has a non-positive size")
        if rect.x < 0 or rect.y < 0:
            raise InvalidLayout(f"{source.value} starts outside the canvas")
        if rect.x + rect.width > layout.canvas_width or rect.y + rect.height > layout.canvas_height:
            raise InvalidLayout(f"{source.value} extends past the canvas")
        if rect.z_index < 0:
            raise InvalidLayout(f"{source.value} has a negative z-index")
