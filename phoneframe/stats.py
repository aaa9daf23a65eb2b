import time
from typing import Optional

import psutil


MB = 1024 ** 2

_process = psutil.Process()


def ram_mb() -> float:
    """Resident set size of this process."""
    return _process.memory_info().rss / MB


def bytes_mb(num_bytes: int) -> float:
    return num_bytes / MB


class Timer:
    """Wall-clock timing for one pipeline step, printed on exit."""

    def __init__(self, name: str, verbose: bool = True):
        self.name = name
        self.verbose = verbose
        self.elapsed = 0.0
        self._t0: Optional[float] = None

    def __enter__(self):
        self._t0 = time.perf_counter()
        return self

    def __exit__(self, *_):
        self.elapsed = time.perf_counter() - self._t0
        if self.verbose:
            print(f"⏱️ {self.name}: {self.elapsed:.3f}s")


class PerfCounter:
    """Rendered-frame counter; the rate is measured between start() and stop()."""

    def __init__(self):
        self.frames = 0
        self.started: Optional[float] = None
        self.stopped: Optional[float] = None

    def start(self) -> None:
        self.frames = 0
        self.started = time.perf_counter()
        self.stopped = None

    def tick(self, n: int = 1) -> None:
        self.frames += n

    def stop(self) -> None:
        if self.started is not None and self.stopped is None:
            self.stopped = time.perf_counter()

    @property
    def running(self) -> bool:
        return self.started is not None and self.stopped is None

    def seconds(self) -> float:
        if self.started is None:
            return 0.0
        end = self.stopped if self.stopped is not None else time.perf_counter()
        return end - self.started

    def avg_fps(self) -> float:
        if self.started is None:
            return 0.0
        return self.frames / max(self.seconds(), 1e-6)
