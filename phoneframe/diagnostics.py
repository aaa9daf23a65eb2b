import shutil

import jax

from .codecs import FFmpegCapabilityProbe
from .config import AppConfig


def print_env_diagnostics(cfg: AppConfig, probe: FFmpegCapabilityProbe):
    print("backend:", jax.default_backend())
    print("devices:", jax.devices())
    print("ffmpeg :", shutil.which(cfg.encode.ffmpeg_bin) or f"{cfg.encode.ffmpeg_bin} (not found)")
    if cfg.verbose:
        supported = [mime for mime in cfg.encode.preferences if probe(mime)]
        print("🧩 Config summary")
        print(f"  OUT  : {cfg.canvas.w}x{cfg.canvas.h} @ {cfg.canvas.fps} fps")
        print(f"  FRAME: {cfg.layout.frame_w:.0f}x{cfg.layout.frame_h:.0f} | fit={cfg.render.fit_policy}")
        print(
            f"  ENC  : class={cfg.encode.platform_class} "
            f"bitrate={cfg.encode.bitrates[cfg.encode.platform_class]} "
            f"| supported={supported or 'none'}"
        )
        print(f"  CLOCK: {'realtime' if cfg.render.realtime else 'offline'}")
