import logging
from typing import Callable, Optional

import numpy as np

from .compositor import render_frame
from .config import AppConfig
from .geometry import compute_geometry
from .scheduler import FrameScheduler, Handle
from .session import EncoderSession
from .stats import PerfCounter, ram_mb
from .types import Geometry, ProgressObserver, SessionState, SourceFrameProvider


logger = logging.getLogger(__name__)

CompositorFn = Callable[[np.ndarray, Geometry, Optional[SourceFrameProvider], str, AppConfig], None]


class RenderLoop:
    """Composites one frame per refresh while the session is recording.

    The duration timer is scheduled independently; whichever of timer,
    cancellation or encoder fault comes first ends the loop.
    """

    def __init__(
        self,
        session: EncoderSession,
        scheduler: FrameScheduler,
        compositor: CompositorFn = render_frame,
        progress: Optional[ProgressObserver] = None,
    ):
        self.session = session
        self.scheduler = scheduler
        self.compositor = compositor
        self.progress = progress
        self.cfg = session.cfg
        self.perf = PerfCounter()
        self._last_progress = 0.0
        self._frame_handle: Optional[Handle] = None
        self._timer: Optional[Handle] = None

    def start(self) -> None:
        if self.session.state is not SessionState.RECORDING:
            return
        self.session.on_release(self.stop)
        self._timer = self.scheduler.call_later(
            self.session.target_duration_ms / 1000.0, self.session.request_stop, "duration"
        )
        self.perf.start()
        self._tick()

    def stop(self) -> None:
        for handle in (self._frame_handle, self._timer):
            if handle is not None:
                handle.cancel()
        self._frame_handle = None
        self._timer = None
        if not self.perf.running:
            return
        self.perf.stop()

        completed = self.session.state is SessionState.COMPLETED
        # ticks report progress before their frame; 1.0 only arrives here
        if completed and self.progress is not None and self._last_progress < 1.0:
            self._last_progress = 1.0
            self.progress(1.0)
        logger.info(
            "Rendered %d frames in %.2fs (avg %.1f fps)",
            self.perf.frames, self.perf.seconds(), self.perf.avg_fps(),
        )
        if completed and self.cfg.verbose:
            print(f"📼 {self.perf.frames} frames | avg FPS ≈ {self.perf.avg_fps():.1f} | RAM ≈ {ram_mb():.0f} MB")

    def _tick(self) -> None:
        self._frame_handle = None
        session = self.session
        if session.state is not SessionState.RECORDING:
            return

        elapsed = session.elapsed_s()
        geo = compute_geometry(elapsed, self.cfg.layout, self.cfg.canvas)
        self.compositor(session.target, geo, session.source, self.cfg.render.brand_text, self.cfg)
        session.push_frame()
        self.perf.tick(1)

        if self.progress is not None:
            fraction = min(elapsed * 1000.0 / session.target_duration_ms, 1.0)
            self._last_progress = max(self._last_progress, fraction)
            self.progress(self._last_progress)

        if session.state is SessionState.RECORDING:
            self._frame_handle = self.scheduler.request_frame(self._tick)
