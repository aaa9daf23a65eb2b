"""Shared fixtures and in-process fakes for the export pipeline."""

import numpy as np
import pytest

from phoneframe.config import AppConfig
from phoneframe.errors import TransientFrameReadError
from phoneframe.scheduler import FrameScheduler, VirtualClock


class FakeSource:
    """Solid-colour source that plays against whatever clock it is given."""

    def __init__(self, width=1920, height=1080, duration_ms=10_000.0, color=(0, 0, 255), fail_reads=()):
        self.width = width
        self.height = height
        self._duration_ms = duration_ms
        self.frame = np.empty((height, width, 3), dtype=np.uint8)
        self.frame[:] = color
        self.fail_reads = set(fail_reads)
        self.clock = None
        self.t0 = 0.0
        self.restarts = 0
        self.reads = 0

    @property
    def duration_ms(self):
        return self._duration_ms

    @property
    def position_ms(self):
        if self.clock is None:
            return 0.0
        return (self.clock() - self.t0) * 1000.0

    def has_frame(self):
        return self.clock is not None

    def read_frame(self):
        self.reads += 1
        if self.reads in self.fail_reads:
            raise TransientFrameReadError(f"glitch on read {self.reads}")
        return self.frame

    def restart(self):
        self.restarts += 1
        if self.clock is not None:
            self.t0 = self.clock()

    def play(self, clock):
        self.clock = clock
        self.t0 = clock()


class FakeCapture:
    """Emits a header on open, one chunk per frame, and a trailer on flush."""

    def __init__(self, request, on_chunk, on_flushed, on_error, flush_on_stop=True):
        self.request = request
        self.on_chunk = on_chunk
        self.on_flushed = on_flushed
        self.on_error = on_error
        self.flush_on_stop = flush_on_stop
        self.frames = 0
        self.stop_calls = 0
        self.closed = False
        self.on_chunk(b"HEAD")

    def push_frame(self, frame):
        assert frame.shape == (self.request.height, self.request.width, 3)
        self.frames += 1
        self.on_chunk(self.frames.to_bytes(4, "big"))

    def stop(self):
        self.stop_calls += 1
        if self.flush_on_stop:
            self.flush()

    def flush(self):
        self.on_chunk(b"TAIL")
        self.on_flushed()

    def close(self):
        self.closed = True


class FakeCaptureFactory:
    def __init__(self, capture_cls=FakeCapture, **kwargs):
        self.capture_cls = capture_cls
        self.kwargs = kwargs
        self.created = []

    def __call__(self, request, on_chunk, on_flushed, on_error):
        capture = self.capture_cls(request, on_chunk, on_flushed, on_error, **self.kwargs)
        self.created.append(capture)
        return capture


class RecordingSink:
    def __init__(self):
        self.calls = []

    def __call__(self, artifact, filename):
        self.calls.append((artifact, filename))


class StubCompositor:
    """Touches the source like the real compositor but draws nothing."""

    def __init__(self):
        self.geometries = []

    def __call__(self, target, geo, source, brand_text, cfg):
        self.geometries.append(geo)
        if source is not None and source.has_frame():
            try:
                source.read_frame()
            except TransientFrameReadError:
                pass


def probe_for(*supported):
    calls = []

    def probe(mime):
        calls.append(mime)
        return mime in supported

    probe.calls = calls
    return probe


@pytest.fixture
def cfg():
    c = AppConfig.default()
    c.verbose = False
    return c


@pytest.fixture
def scheduler(cfg):
    return FrameScheduler(cfg.canvas.fps, VirtualClock())


@pytest.fixture
def source():
    return FakeSource()


@pytest.fixture
def capture_factory():
    return FakeCaptureFactory()


@pytest.fixture
def sink():
    return RecordingSink()
