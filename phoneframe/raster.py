"""Anti-aliased rounded shapes from signed distance fields.

Every mask is evaluated over a fixed pixel grid (the chrome region of
interest), so ``chrome_layers`` compiles once and takes the animated geometry
as traced scalars.
"""
import math

import numpy as np
import jax
import jax.numpy as jnp
from jax.scipy.special import erfc

from .config import CanvasConfig, LayoutConfig
from .geometry import home_indicator_rect, max_frame_rect
from .types import Geometry


SQRT2 = math.sqrt(2.0)


def rounded_rect_sdf(px, py, rect, radius):
    """Signed distance to a rounded rectangle, negative inside."""
    x, y, w, h = rect[0], rect[1], rect[2], rect[3]
    hw = w * 0.5
    hh = h * 0.5
    r = jnp.clip(radius, 0.0, jnp.minimum(hw, hh))
    qx = jnp.abs(px - (x + hw)) - (hw - r)
    qy = jnp.abs(py - (y + hh)) - (hh - r)
    outside = jnp.sqrt(jnp.square(jnp.maximum(qx, 0.0)) + jnp.square(jnp.maximum(qy, 0.0)))
    inside = jnp.minimum(jnp.maximum(qx, qy), 0.0)
    return outside + inside - r


def fill_coverage(sdf):
    return jnp.clip(0.5 - sdf, 0.0, 1.0)


def stroke_coverage(sdf, width):
    return jnp.clip(width * 0.5 + 0.5 - jnp.abs(sdf), 0.0, 1.0)


def shadow_coverage(sdf, sigma):
    # gaussian-blurred edge of a filled shape
    return 0.5 * erfc(sdf / (sigma * SQRT2))


@jax.jit
def chrome_layers(px, py, frame, bezel, screen, indicator, radii, stroke_w, shadow):
    """Coverage masks for shadow, body, bezel, screen and home indicator.

    ``radii`` is (corner, inner, indicator); ``shadow`` is (offset_y, sigma).
    """
    shadow_rect = frame.at[1].add(shadow[0])
    shadow_mask = shadow_coverage(rounded_rect_sdf(px, py, shadow_rect, radii[0]), shadow[1])
    body = fill_coverage(rounded_rect_sdf(px, py, frame, radii[0]))
    bezel_line = stroke_coverage(rounded_rect_sdf(px, py, bezel, radii[1]), stroke_w)
    screen_mask = fill_coverage(rounded_rect_sdf(px, py, screen, radii[1]))
    indicator_mask = fill_coverage(rounded_rect_sdf(px, py, indicator, radii[2]))
    return shadow_mask, body, bezel_line, screen_mask, indicator_mask


class ChromeRasterizer:
    """Region of interest plus pixel-centre grids for one canvas/layout."""

    def __init__(self, layout: LayoutConfig, canvas: CanvasConfig):
        self.layout = layout
        peak = max_frame_rect(layout, canvas)
        sigma = layout.shadow_blur / 2
        pad = layout.shadow_offset_y + 3 * sigma + 2

        self.x0 = max(int(math.floor(peak.x - pad)), 0)
        self.y0 = max(int(math.floor(peak.y - pad)), 0)
        self.x1 = min(int(math.ceil(peak.right + pad)), canvas.w)
        self.y1 = min(int(math.ceil(peak.bottom + pad)), canvas.h)

        xs = np.arange(self.x0, self.x1, dtype=np.float32) + 0.5
        ys = np.arange(self.y0, self.y1, dtype=np.float32) + 0.5
        gx, gy = np.meshgrid(xs, ys)
        self.px = jnp.asarray(gx)
        self.py = jnp.asarray(gy)

    @property
    def slices(self):
        return slice(self.y0, self.y1), slice(self.x0, self.x1)

    def layers(self, geo: Geometry):
        layout = self.layout
        frame = geo.frame_rect
        bezel = frame.inset(geo.border_inset)
        screen = geo.screen_rect
        ind = home_indicator_rect(geo, layout)

        def arr(*values):
            return jnp.asarray(values, dtype=jnp.float32)

        masks = chrome_layers(
            self.px,
            self.py,
            arr(frame.x, frame.y, frame.w, frame.h),
            arr(bezel.x, bezel.y, bezel.w, bezel.h),
            arr(screen.x, screen.y, screen.w, screen.h),
            arr(ind.x, ind.y, ind.w, ind.h),
            arr(geo.corner_radius, geo.inner_radius, layout.indicator_radius * geo.pulse_scale),
            jnp.float32(geo.border_width),
            arr(layout.shadow_offset_y, layout.shadow_blur / 2),
        )
        shadow, body, bezel_line, screen_mask, indicator = (np.asarray(m) for m in jax.device_get(masks))
        return {
            "shadow": shadow,
            "body": body,
            "bezel": bezel_line,
            "screen": screen_mask,
            "indicator": indicator,
        }
