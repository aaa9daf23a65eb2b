import logging
import os
import time
from typing import List

from .stats import bytes_mb, ram_mb
from .types import OutputArtifact


logger = logging.getLogger(__name__)


class FileDownloadSink:
    """Delivers an artifact by writing it into ``out_dir``."""

    def __init__(self, out_dir: str):
        self.out_dir = out_dir
        self.paths: List[str] = []

    def __call__(self, artifact: OutputArtifact, filename: str) -> None:
        os.makedirs(self.out_dir, exist_ok=True)
        path = os.path.abspath(os.path.join(self.out_dir, filename))
        with open(path, "wb") as f:
            f.write(artifact.data)
        self.paths.append(path)
        logger.info("Wrote %s (%.2f MB)", path, bytes_mb(len(artifact)))


class ConsoleProgress:
    """In-place progress bar on stdout, throttled to a few updates per second."""

    def __init__(self, width: int = 28, interval: float = 0.25, label: str = "🚀 Exporting"):
        self.width = width
        self.interval = interval
        self.label = label
        self._last = None
        self._done = False

    def __call__(self, fraction: float) -> None:
        now = time.perf_counter()
        throttled = self._last is not None and now - self._last < self.interval
        if self._done or (throttled and fraction < 1.0):
            return
        self._last = now
        pct = min(max(fraction, 0.0), 1.0)
        filled = int(self.width * pct)
        bar = "#" * filled + "-" * (self.width - filled)
        end = "\n" if pct >= 1.0 else ""
        print(f"\r{self.label} |{bar}| {pct*100:5.1f}% | RAM ≈ {ram_mb():.0f} MB", end=end, flush=True)
        if pct >= 1.0:
            self._done = True
