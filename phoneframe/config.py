from dataclasses import dataclass, field
import os


@dataclass
class PathConfig:
    video_path: str = "input.mp4"
    out_dir: str = "exports"
    filename_base: str = "phone-frame-4x3"


@dataclass
class CanvasConfig:
    # render target, 4:3
    w: int = 2400
    h: int = 1800
    fps: int = 30


@dataclass(frozen=True)
class LayoutConfig:
    frame_w: float = 700.0
    frame_h: float = 1400.0
    corner_radius: float = 70.0

    # bezel stroke: path inset by half its width
    border_inset: float = 6.0
    inner_radius: float = 64.0

    screen_inset: float = 30.0

    indicator_w: float = 120.0
    indicator_h: float = 12.0
    indicator_radius: float = 6.0
    indicator_bottom: float = 30.0

    grid_spacing: int = 60
    grid_opacity: float = 0.08

    shadow_blur: float = 40.0
    shadow_offset_y: float = 20.0
    shadow_opacity: float = 0.2

    # BGR
    background_color: tuple = (255, 255, 255)
    body_color: tuple = (26, 26, 26)
    bezel_color: tuple = (0, 0, 0)
    screen_color: tuple = (0, 0, 0)
    indicator_color: tuple = (51, 51, 51)

    watermark_px: int = 72
    watermark_margin: int = 50
    watermark_opacity: float = 0.4

    @property
    def border_width(self) -> float:
        return self.border_inset * 2


@dataclass
class RenderConfig:
    brand_text: str = "Built on Vibe Code"
    # "width" (fill screen width, crop/letterbox vertically) or "contain"
    fit_policy: str = "width"
    realtime: bool = False


@dataclass
class EncodeConfig:
    ffmpeg_bin: str = "ffmpeg"
    preferences: tuple = ("video/mp4", "video/webm;codecs=vp9", "video/webm")
    bitrates: dict = field(default_factory=lambda: {"standard": 15_000_000, "constrained": 8_000_000})
    platform_class: str = "standard"

    max_duration_ms: float = 60_000.0
    default_duration_ms: float = 30_000.0

    chunk_size: int = 64 * 1024
    finalize_timeout_s: float = 30.0


@dataclass
class AppConfig:
    verbose: bool = True  # controls application logs
    verbose_lib: bool = False  # controls noisy third-party tools (ffmpeg, etc.)

    paths: PathConfig = field(default_factory=PathConfig)
    canvas: CanvasConfig = field(default_factory=CanvasConfig)
    layout: LayoutConfig = field(default_factory=LayoutConfig)
    render: RenderConfig = field(default_factory=RenderConfig)
    encode: EncodeConfig = field(default_factory=EncodeConfig)

    @staticmethod
    def default() -> "AppConfig":
        return AppConfig()

    def apply_env(self):
        os.environ.setdefault("ENABLE_PJRT_COMPATIBILITY", "1")
        os.environ["JAX_TRACEBACK_FILTERING"] = "off" if self.verbose else "on"

        ffmpeg_bin = os.environ.get("PHONEFRAME_FFMPEG")
        if ffmpeg_bin:
            self.encode.ffmpeg_bin = ffmpeg_bin
        platform_class = os.environ.get("PHONEFRAME_PLATFORM_CLASS")
        if platform_class:
            self.encode.platform_class = platform_class
        out_dir = os.environ.get("PHONEFRAME_OUT_DIR")
        if out_dir:
            self.paths.out_dir = out_dir

    def validate(self):
        assert self.canvas.w > 0 and self.canvas.h > 0
        assert self.canvas.w * 3 == self.canvas.h * 4, "canvas must be 4:3"
        assert self.canvas.fps > 0
        assert self.layout.frame_w < self.canvas.w and self.layout.frame_h < self.canvas.h
        assert self.layout.screen_inset * 2 < self.layout.frame_w
        assert self.layout.grid_spacing >= 1
        assert 0.0 <= self.layout.grid_opacity <= 1.0
        assert 0.0 <= self.layout.watermark_opacity <= 1.0
        assert self.render.fit_policy in ("width", "contain"), f"unknown fit policy: {self.render.fit_policy}"
        assert len(self.encode.preferences) >= 1
        assert self.encode.platform_class in self.encode.bitrates, (
            f"no bit-rate for platform class {self.encode.platform_class!r}"
        )
        assert all(rate > 0 for rate in self.encode.bitrates.values())
        assert 0 < self.encode.default_duration_ms <= self.encode.max_duration_ms
        assert self.encode.chunk_size > 0
        assert self.encode.finalize_timeout_s > 0
