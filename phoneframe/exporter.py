import logging
from typing import Optional

from .codecs import FFmpegCapabilityProbe
from .compositor import render_frame
from .config import AppConfig
from .encode import ffmpeg_capture_factory
from .errors import EncoderFault, NoSourceLoaded, SessionBusy
from .render_loop import CompositorFn, RenderLoop
from .scheduler import FrameScheduler, RealtimeClock, VirtualClock
from .session import CaptureFactory, EncoderSession, FailureFn
from .sinks import FileDownloadSink
from .types import CapabilityProbe, DownloadSink, ProgressObserver, SourceFrameProvider


logger = logging.getLogger(__name__)


class Exporter:
    """Owns at most one live EncoderSession and the scheduler that drives it."""

    def __init__(
        self,
        cfg: Optional[AppConfig] = None,
        probe: Optional[CapabilityProbe] = None,
        capture_factory: Optional[CaptureFactory] = None,
        sink: Optional[DownloadSink] = None,
        scheduler: Optional[FrameScheduler] = None,
        compositor: CompositorFn = render_frame,
        progress: Optional[ProgressObserver] = None,
        on_failure: Optional[FailureFn] = None,
    ):
        self.cfg = cfg or AppConfig.default()
        self.probe = probe or FFmpegCapabilityProbe(self.cfg.encode.ffmpeg_bin)
        self.capture_factory = capture_factory or ffmpeg_capture_factory(self.cfg)
        self.sink = sink or FileDownloadSink(self.cfg.paths.out_dir)
        if scheduler is None:
            clock = RealtimeClock() if self.cfg.render.realtime else VirtualClock()
            scheduler = FrameScheduler(self.cfg.canvas.fps, clock)
        self.scheduler = scheduler
        self.compositor = compositor
        self.progress = progress
        self.on_failure = on_failure
        self._session: Optional[EncoderSession] = None
        self.render_loop: Optional[RenderLoop] = None

    @property
    def session(self) -> Optional[EncoderSession]:
        """Most recent session, terminal or not."""
        return self._session

    @property
    def active(self) -> Optional[EncoderSession]:
        if self._session is not None and not self._session.terminal:
            return self._session
        return None

    def export(self, source: Optional[SourceFrameProvider]) -> EncoderSession:
        """Start a session for ``source``; it runs as the scheduler runs."""
        if source is None:
            raise NoSourceLoaded("Load a video before exporting")
        if self.active is not None:
            raise SessionBusy(f"An export is already {self.active.state.value}")

        session = EncoderSession(
            source,
            self.scheduler,
            self.probe,
            self.capture_factory,
            self.sink,
            cfg=self.cfg,
            on_failure=self.on_failure,
        )
        self._session = session
        if session.start():
            self.render_loop = RenderLoop(session, self.scheduler, self.compositor, self.progress)
            self.render_loop.start()
        return session

    def wait(self, session: EncoderSession) -> EncoderSession:
        try:
            finished = self.scheduler.run(
                until=lambda: session.terminal,
                idle_timeout=self.cfg.encode.finalize_timeout_s,
            )
        except Exception as exc:
            session.abort(EncoderFault(f"render loop crashed: {exc}"))
            raise
        if not finished:
            session.abort(
                EncoderFault(f"encoder did not finish within {self.cfg.encode.finalize_timeout_s:.0f}s")
            )
        return session

    def run(self, source: Optional[SourceFrameProvider]) -> EncoderSession:
        return self.wait(self.export(source))

    def cancel(self) -> None:
        if self._session is not None:
            self._session.cancel()
