import math

from .config import CanvasConfig, LayoutConfig
from .types import Geometry, Rect


PULSE_AMPLITUDE = 0.02
PULSE_RATE = 2.0  # rad/s


def pulse_scale(elapsed_s: float) -> float:
    return 1.0 + math.sin(elapsed_s * PULSE_RATE) * PULSE_AMPLITUDE


def base_frame_rect(layout: LayoutConfig, canvas: CanvasConfig) -> Rect:
    return Rect(
        (canvas.w - layout.frame_w) / 2,
        (canvas.h - layout.frame_h) / 2,
        layout.frame_w,
        layout.frame_h,
    )


def compute_geometry(elapsed_s: float, layout: LayoutConfig, canvas: CanvasConfig) -> Geometry:
    """Frame and screen rectangles for ``elapsed_s`` seconds into a recording.

    The frame is scaled about its own centre so it breathes in place; strokes
    and radii follow the same scale.
    """
    p = pulse_scale(elapsed_s)
    base = base_frame_rect(layout, canvas)

    w = base.w * p
    h = base.h * p
    frame = Rect(base.x - (w - base.w) / 2, base.y - (h - base.h) / 2, w, h)
    screen = frame.inset(layout.screen_inset * p)

    return Geometry(
        pulse_scale=p,
        frame_rect=frame,
        screen_rect=screen,
        corner_radius=layout.corner_radius * p,
        inner_radius=layout.inner_radius * p,
        border_width=layout.border_width * p,
        border_inset=layout.border_inset * p,
    )


def home_indicator_rect(geo: Geometry, layout: LayoutConfig) -> Rect:
    p = geo.pulse_scale
    frame = geo.frame_rect
    w = layout.indicator_w * p
    return Rect(
        frame.cx - w / 2,
        frame.bottom - layout.indicator_bottom * p,
        w,
        layout.indicator_h * p,
    )


def max_frame_rect(layout: LayoutConfig, canvas: CanvasConfig) -> Rect:
    """Frame rectangle at the peak of the pulse."""

    base = base_frame_rect(layout, canvas)
    p = 1.0 + PULSE_AMPLITUDE
    w, h = base.w * p, base.h * p
    return Rect(base.x - (w - base.w) / 2, base.y - (h - base.h) / 2, w, h)
