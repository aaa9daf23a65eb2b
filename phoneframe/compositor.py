import logging
from functools import lru_cache
from typing import Optional

import cv2
import numpy as np

from .config import AppConfig, CanvasConfig, LayoutConfig
from .raster import ChromeRasterizer
from .types import Geometry, Rect, SourceFrameProvider


logger = logging.getLogger(__name__)

WATERMARK_FONT = cv2.FONT_HERSHEY_SIMPLEX
WATERMARK_THICKNESS = 4
# cap height of a css px font size
CAP_HEIGHT_RATIO = 0.72


@lru_cache(maxsize=4)
def _rasterizer(layout: LayoutConfig, canvas_w: int, canvas_h: int) -> ChromeRasterizer:
    return ChromeRasterizer(layout, CanvasConfig(w=canvas_w, h=canvas_h))


@lru_cache(maxsize=8)
def _watermark(text: str, layout: LayoutConfig, canvas_w: int, canvas_h: int):
    """Return (x0, y0, alpha) for the watermark; alpha already carries opacity."""
    scale = cv2.getFontScaleFromHeight(
        WATERMARK_FONT, int(round(layout.watermark_px * CAP_HEIGHT_RATIO)), WATERMARK_THICKNESS
    )
    (tw, th), baseline = cv2.getTextSize(text, WATERMARK_FONT, scale, WATERMARK_THICKNESS)

    pad = WATERMARK_THICKNESS
    right = canvas_w - layout.watermark_margin
    base_y = canvas_h - layout.watermark_margin
    x0 = max(right - tw - pad, 0)
    y0 = max(base_y - th - pad, 0)
    x1 = min(right + pad, canvas_w)
    y1 = min(base_y + baseline + pad, canvas_h)

    mask = np.zeros((y1 - y0, x1 - x0), dtype=np.uint8)
    cv2.putText(
        mask, text, (right - tw - x0, base_y - y0),
        WATERMARK_FONT, scale, 255, thickness=WATERMARK_THICKNESS, lineType=cv2.LINE_AA,
    )
    alpha = mask.astype(np.float32) * (layout.watermark_opacity / 255.0)
    return x0, y0, alpha


def _blend(dst: np.ndarray, color, alpha: np.ndarray) -> None:
    a = alpha[..., None]
    dst *= 1.0 - a
    dst += a * np.asarray(color, dtype=np.float32)


def _as_bgr(frame: np.ndarray) -> np.ndarray:
    frame = np.asarray(frame)
    if frame.ndim == 2:
        return cv2.cvtColor(frame, cv2.COLOR_GRAY2BGR)
    if frame.ndim == 3 and frame.shape[2] == 4:
        return cv2.cvtColor(frame, cv2.COLOR_BGRA2BGR)
    if frame.dtype != np.uint8:
        frame = np.clip(frame, 0, 255).astype(np.uint8)
    return frame


def fit_video_rect(src_w: int, src_h: int, screen: Rect, policy: str = "width") -> Rect:
    """Where the source frame lands relative to the screen.

    ``width``: fill the screen width, centre vertically (letterbox or crop).
    ``contain``: fit the tighter dimension, letterbox/pillarbox the other.
    """
    aspect = src_w / src_h
    if policy == "width":
        w = screen.w
        h = screen.w / aspect
    elif policy == "contain":
        if aspect >= screen.w / screen.h:
            w, h = screen.w, screen.w / aspect
        else:
            w, h = screen.h * aspect, screen.h
    else:
        raise ValueError(f"unknown fit policy: {policy}")
    return Rect(screen.x + (screen.w - w) / 2, screen.y + (screen.h - h) / 2, w, h)


def fill_background(target: np.ndarray, layout: LayoutConfig) -> None:
    target[:] = layout.background_color

    keep = 1.0 - layout.grid_opacity
    s = layout.grid_spacing
    for lines in (target[:, ::s], target[::s, :]):
        lines[:] = (lines * keep + 0.5).astype(np.uint8)


def _draw_video(roi: np.ndarray, roi_x0: int, roi_y0: int, frame: np.ndarray,
                draw: Rect, screen: Rect, clip: np.ndarray) -> None:
    dw = max(int(round(draw.w)), 1)
    dh = max(int(round(draw.h)), 1)
    dx = int(round(draw.x))
    dy = int(round(draw.y))

    # visible part = draw rect ∩ screen bbox ∩ roi
    h, w = roi.shape[:2]
    vx0 = max(dx, int(np.floor(screen.x)), roi_x0)
    vy0 = max(dy, int(np.floor(screen.y)), roi_y0)
    vx1 = min(dx + dw, int(np.ceil(screen.right)), roi_x0 + w)
    vy1 = min(dy + dh, int(np.ceil(screen.bottom)), roi_y0 + h)
    if vx1 <= vx0 or vy1 <= vy0:
        return

    interp = cv2.INTER_AREA if dw < frame.shape[1] else cv2.INTER_LINEAR
    scaled = cv2.resize(_as_bgr(frame), (dw, dh), interpolation=interp)
    patch = scaled[vy0 - dy:vy1 - dy, vx0 - dx:vx1 - dx].astype(np.float32)

    ry = slice(vy0 - roi_y0, vy1 - roi_y0)
    rx = slice(vx0 - roi_x0, vx1 - roi_x0)
    a = clip[ry, rx][..., None]
    region = roi[ry, rx]
    region *= 1.0 - a
    region += a * patch


def render_frame(
    target: np.ndarray,
    geo: Geometry,
    source: Optional[SourceFrameProvider],
    brand_text: str,
    cfg: Optional[AppConfig] = None,
) -> None:
    """Draw one complete output frame into ``target`` (H, W, 3) uint8 BGR."""
    cfg = cfg or AppConfig.default()
    layout = cfg.layout
    canvas_h, canvas_w = target.shape[:2]

    fill_background(target, layout)

    rast = _rasterizer(layout, canvas_w, canvas_h)
    masks = rast.layers(geo)
    ys, xs = rast.slices
    roi = target[ys, xs].astype(np.float32)

    _blend(roi, (0, 0, 0), masks["shadow"] * layout.shadow_opacity)
    _blend(roi, layout.body_color, masks["body"])
    _blend(roi, layout.bezel_color, masks["bezel"])
    _blend(roi, layout.screen_color, masks["screen"])

    if source is not None and source.has_frame():
        try:
            frame = source.read_frame()
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping video layer for this frame: %s", exc)
        else:
            draw = fit_video_rect(source.width, source.height, geo.screen_rect, cfg.render.fit_policy)
            _draw_video(roi, rast.x0, rast.y0, frame, draw, geo.screen_rect, masks["screen"])

    _blend(roi, layout.indicator_color, masks["indicator"])
    target[ys, xs] = np.clip(roi + 0.5, 0, 255).astype(np.uint8)

    if brand_text:
        x0, y0, alpha = _watermark(brand_text, layout, canvas_w, canvas_h)
        h, w = alpha.shape
        region = target[y0:y0 + h, x0:x0 + w].astype(np.float32)
        _blend(region, (0, 0, 0), alpha)
        target[y0:y0 + h, x0:x0 + w] = np.clip(region + 0.5, 0, 255).astype(np.uint8)
