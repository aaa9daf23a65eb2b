"""Encoder session lifecycle.

IDLE -> NEGOTIATING -> RECORDING -> FINALIZING -> COMPLETED
   any non-terminal state -> FAILED

Encoder callbacks arrive on worker threads and are re-posted onto the
scheduler; every state change is a compare-and-set under one lock so a late
chunk can never land after finalisation has taken the buffer.
"""
import logging
import math
import threading
from typing import Callable, List, Optional

import numpy as np

from .codecs import negotiate, select_bitrate
from .config import AppConfig, EncodeConfig
from .errors import CaptureUnavailable, EncoderFault, ExportError
from .scheduler import FrameScheduler
from .types import (
    CapabilityProbe,
    CaptureRequest,
    CaptureSurface,
    CodecCandidate,
    DownloadSink,
    OutputArtifact,
    SessionState,
    SourceFrameProvider,
)


logger = logging.getLogger(__name__)

CaptureFactory = Callable[..., CaptureSurface]
FailureFn = Callable[[ExportError], None]

_ALLOWED = {
    SessionState.IDLE: {SessionState.NEGOTIATING, SessionState.FAILED},
    SessionState.NEGOTIATING: {SessionState.RECORDING, SessionState.FAILED},
    SessionState.RECORDING: {SessionState.FINALIZING, SessionState.FAILED},
    SessionState.FINALIZING: {SessionState.COMPLETED, SessionState.FAILED},
    SessionState.COMPLETED: set(),
    SessionState.FAILED: set(),
}


def effective_duration_ms(source_duration_ms: Optional[float], enc: EncodeConfig) -> float:
    duration = source_duration_ms
    if duration is None or not math.isfinite(duration) or duration <= 0:
        duration = enc.default_duration_ms
    return min(duration, enc.max_duration_ms)


class EncoderSession:
    def __init__(
        self,
        source: SourceFrameProvider,
        scheduler: FrameScheduler,
        probe: CapabilityProbe,
        capture_factory: CaptureFactory,
        sink: DownloadSink,
        cfg: Optional[AppConfig] = None,
        on_failure: Optional[FailureFn] = None,
    ):
        self.cfg = cfg or AppConfig.default()
        self.source = source
        self.scheduler = scheduler
        self.probe = probe
        self.capture_factory = capture_factory
        self.sink = sink
        self.on_failure = on_failure

        self.state = SessionState.IDLE
        self.codec: Optional[CodecCandidate] = None
        self.bitrate: Optional[int] = None
        self.chunks: List[bytes] = []
        self.target: Optional[np.ndarray] = None
        self.capture: Optional[CaptureSurface] = None
        self.target_duration_ms = effective_duration_ms(source.duration_ms, self.cfg.encode)
        self.started_at: Optional[float] = None
        self.frames = 0
        self.error: Optional[ExportError] = None
        self.artifact: Optional[OutputArtifact] = None
        self.filename: Optional[str] = None

        self._lock = threading.RLock()
        self._flushed = False
        self._stop_pending = False
        self._released = False
        self._release_hooks: List[Callable[[], None]] = []

    # ------------------------------ State ------------------------------ #
    def _transition(self, expected: SessionState, new: SessionState) -> bool:
        with self._lock:
            if self.state is not expected:
                return False
            assert new in _ALLOWED[expected], f"{expected} -> {new}"
            self.state = new
        logger.info("Session %s -> %s", expected.value, new.value)
        return True

    @property
    def terminal(self) -> bool:
        return self.state.terminal

    def elapsed_s(self) -> float:
        if self.started_at is None:
            return 0.0
        return self.scheduler.now() - self.started_at

    def on_release(self, hook: Callable[[], None]) -> None:
        self._release_hooks.append(hook)

    # ------------------------------ Control ----------------------------- #
    def start(self) -> bool:
        """Negotiate, open the capture surface and begin recording.

        Returns True once RECORDING; on failure the session is FAILED.
        """
        if not self._transition(SessionState.IDLE, SessionState.NEGOTIATING):
            raise RuntimeError(f"session cannot start from {self.state.value}")

        enc = self.cfg.encode
        canvas = self.cfg.canvas
        try:
            self.codec = negotiate(enc.preferences, self.probe)
            self.bitrate = select_bitrate(enc.platform_class, enc.bitrates)
            self.target = np.zeros((canvas.h, canvas.w, 3), dtype=np.uint8)
            request = CaptureRequest(canvas.w, canvas.h, canvas.fps, self.codec, self.bitrate)
            self.capture = self.capture_factory(
                request,
                self._post_chunk,
                self._post_flushed,
                self._post_error,
            )
        except ExportError as exc:
            self.fail(exc)
            return False
        except OSError as exc:
            self.fail(CaptureUnavailable(str(exc)))
            return False
        except Exception as exc:
            self.fail(EncoderFault(f"could not start capture: {type(exc).__name__}: {exc}"))
            return False

        # encoder first, then playback from zero, then the animation clock
        self.source.restart()
        self.source.play(self.scheduler.now)
        self.started_at = self.scheduler.now()
        self.filename = f"{self.cfg.paths.filename_base}.{self.codec.extension}"

        if not self._transition(SessionState.NEGOTIATING, SessionState.RECORDING):
            return False
        logger.info(
            "Recording %s @ %d bps for %.0f ms",
            self.codec.mime_type, self.bitrate, self.target_duration_ms,
        )
        if self._stop_pending:
            self.request_stop("cancelled")
        return self.state is SessionState.RECORDING

    def push_frame(self) -> None:
        """Hand the current render target to the capture surface."""
        if self.state is not SessionState.RECORDING:
            return
        try:
            self.capture.push_frame(self.target)
        except ExportError as exc:
            self.fail(exc)
            return
        self.frames += 1

    def request_stop(self, reason: str = "duration") -> None:
        """Begin finalisation; a no-op unless RECORDING."""
        with self._lock:
            if self.state is SessionState.NEGOTIATING:
                self._stop_pending = True
                return
            if not self._transition(SessionState.RECORDING, SessionState.FINALIZING):
                return
        logger.info("Stopping (%s) after %d frames", reason, self.frames)
        try:
            self.capture.stop()
        except ExportError as exc:
            self.fail(exc)

    def cancel(self) -> None:
        self.request_stop("cancelled")

    def abort(self, error: ExportError) -> None:
        self.fail(error)

    def result(self) -> OutputArtifact:
        if self.state is SessionState.COMPLETED:
            return self.artifact
        if self.state is SessionState.FAILED:
            raise self.error
        raise RuntimeError(f"session still {self.state.value}")

    # ------------------------- Encoder callbacks ------------------------ #
    def _post_chunk(self, data: bytes) -> None:
        self.scheduler.call_soon_threadsafe(self._accept_chunk, data)

    def _post_flushed(self) -> None:
        self.scheduler.call_soon_threadsafe(self._handle_flushed)

    def _post_error(self, error: Exception) -> None:
        self.scheduler.call_soon_threadsafe(self._handle_error, error)

    def _accept_chunk(self, data: bytes) -> None:
        with self._lock:
            if self._flushed or self.state not in (SessionState.RECORDING, SessionState.FINALIZING):
                logger.debug("Dropping %d late bytes in state %s", len(data), self.state.value)
                return
            if data:
                self.chunks.append(data)

    def _handle_flushed(self) -> None:
        with self._lock:
            if self._flushed:
                return
            self._flushed = True
            state = self.state
        if state is SessionState.FINALIZING:
            self._finalize()
        elif state is SessionState.RECORDING:
            self.fail(EncoderFault("encoder ended the stream before stop was requested"))

    def _handle_error(self, error: Exception) -> None:
        if not isinstance(error, ExportError):
            error = EncoderFault(str(error))
        self.fail(error)

    # ---------------------------- Finalising ---------------------------- #
    def _finalize(self) -> None:
        with self._lock:
            if self.state is not SessionState.FINALIZING:
                return
            data = b"".join(self.chunks)
            if not data:
                empty = True
            else:
                empty = False
                self.artifact = OutputArtifact(
                    data=data,
                    mime_type=self.codec.mime_type,
                    extension=self.codec.extension,
                    frame_count=self.frames,
                    fps=self.cfg.canvas.fps,
                )
                self._transition(SessionState.FINALIZING, SessionState.COMPLETED)
        if empty:
            self.fail(EncoderFault("encoder produced no output"))
            return

        self.release()
        logger.info(
            "Export complete: %s, %d bytes, %.0f ms",
            self.filename, len(self.artifact), self.artifact.duration_ms,
        )
        self.sink(self.artifact, self.filename)

    def fail(self, error: ExportError) -> None:
        with self._lock:
            if self.state.terminal:
                return
            previous = self.state
            self.state = SessionState.FAILED
            self.error = error
        logger.error("Session %s -> failed: %s: %s", previous.value, error.kind, error)
        self.release()
        if self.on_failure is not None:
            self.on_failure(error)

    def release(self) -> None:
        """Release capture and scheduled work; runs on every terminal path."""
        with self._lock:
            if self._released:
                return
            self._released = True
            hooks, self._release_hooks = self._release_hooks, []
            capture, self.capture = self.capture, None

        for hook in hooks:
            hook()
        if capture is not None:
            try:
                capture.close()
            except Exception as exc:  # noqa: BLE001 - release keeps going
                logger.warning("Capture close failed: %s", exc)
        self.target = None
