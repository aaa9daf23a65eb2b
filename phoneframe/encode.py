import logging
import subprocess
import threading
from collections import deque
from typing import Callable, List

import numpy as np

from .config import AppConfig
from .errors import CaptureUnavailable, EncoderFault
from .types import CaptureRequest


logger = logging.getLogger(__name__)

ChunkFn = Callable[[bytes], None]
FlushedFn = Callable[[], None]
ErrorFn = Callable[[Exception], None]


def build_ffmpeg_cmd(request: CaptureRequest, ffmpeg_bin: str = "ffmpeg", verbose_lib: bool = False) -> List[str]:
    loglevel = "info" if verbose_lib else "error"
    codec = request.codec
    return [
        ffmpeg_bin,
        "-hide_banner",
        "-loglevel",
        loglevel,
        "-f",
        "rawvideo",
        "-pix_fmt",
        "bgr24",
        "-s",
        f"{request.width}x{request.height}",
        "-r",
        str(request.fps),
        "-i",
        "-",
        "-an",
        "-c:v",
        codec.encoder,
        "-b:v",
        str(request.bitrate),
        *codec.output_args,
        "-f",
        codec.container,
        "pipe:1",
    ]


class FFmpegCapture:
    """Live capture surface: raw BGR frames in, encoded container chunks out.

    Chunks are read from ffmpeg's stdout on a reader thread and handed to
    ``on_chunk`` in order; end of stream is reported once through either
    ``on_flushed`` (exit code 0) or ``on_error``.
    """

    def __init__(
        self,
        request: CaptureRequest,
        on_chunk: ChunkFn,
        on_flushed: FlushedFn,
        on_error: ErrorFn,
        ffmpeg_bin: str = "ffmpeg",
        chunk_size: int = 64 * 1024,
        verbose_lib: bool = False,
    ):
        self.request = request
        self.frame_shape = (request.height, request.width, 3)
        self.chunk_size = chunk_size
        self._on_chunk = on_chunk
        self._on_flushed = on_flushed
        self._on_error = on_error
        self._stderr_tail: deque = deque(maxlen=20)
        self._closing = False
        self._stdin_closed = False
        self.frames_written = 0

        cmd = build_ffmpeg_cmd(request, ffmpeg_bin, verbose_lib)
        logger.info("Launching ffmpeg: %s", " ".join(cmd))
        try:
            self.proc = subprocess.Popen(
                cmd, stdin=subprocess.PIPE, stdout=subprocess.PIPE, stderr=subprocess.PIPE
            )
        except (FileNotFoundError, PermissionError) as exc:
            raise CaptureUnavailable(f"ffmpeg not available: {ffmpeg_bin}") from exc
        if self.proc.stdin is None or self.proc.stdout is None:
            self.proc.kill()
            raise CaptureUnavailable("ffmpeg stdin/stdout not available")

        self._stderr_thread = threading.Thread(target=self._drain_stderr, name="ffmpeg_stderr", daemon=True)
        self._reader = threading.Thread(target=self._read_stdout, name="ffmpeg_reader", daemon=True)
        self._stderr_thread.start()
        self._reader.start()

    def _drain_stderr(self):
        for raw in iter(self.proc.stderr.readline, b""):
            line = raw.decode("utf-8", errors="replace").rstrip()
            if line:
                self._stderr_tail.append(line)
                logger.debug("ffmpeg: %s", line)

    def _read_stdout(self):
        out = self.proc.stdout
        while True:
            data = out.read1(self.chunk_size) if hasattr(out, "read1") else out.read(self.chunk_size)
            if not data:
                break
            self._on_chunk(bytes(data))

        return_code = self.proc.wait()
        self._stderr_thread.join(timeout=1.0)
        if self._closing:
            return
        if return_code == 0:
            self._on_flushed()
        else:
            self._on_error(EncoderFault(f"ffmpeg exited with code {return_code}: {self.stderr_tail()}"))

    def stderr_tail(self) -> str:
        return " | ".join(self._stderr_tail) or "no output"

    def push_frame(self, frame: np.ndarray) -> None:
        if frame.shape != self.frame_shape or frame.dtype != np.uint8:
            raise EncoderFault(f"frame {frame.shape}/{frame.dtype} does not match capture {self.frame_shape}/uint8")
        if self._stdin_closed:
            raise EncoderFault("capture already stopped")
        try:
            self.proc.stdin.write(np.ascontiguousarray(frame).data)
        except (BrokenPipeError, ValueError, OSError) as exc:
            raise EncoderFault(f"ffmpeg stopped accepting frames: {self.stderr_tail()}") from exc
        self.frames_written += 1

    def stop(self) -> None:
        """Close stdin so ffmpeg flushes; completion arrives via the callbacks."""
        if self._stdin_closed:
            return
        self._stdin_closed = True
        try:
            self.proc.stdin.close()
        except (BrokenPipeError, OSError) as exc:
            raise EncoderFault(f"ffmpeg failed while flushing: {self.stderr_tail()}") from exc

    def close(self, timeout: float = 5.0) -> None:
        """Release the process and threads; safe to call more than once."""
        if self.proc.poll() is None:
            self._closing = True
            try:
                if not self._stdin_closed:
                    self._stdin_closed = True
                    self.proc.stdin.close()
            except OSError:
                pass
            self.proc.terminate()
            try:
                self.proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                self.proc.kill()
                self.proc.wait()
        if threading.current_thread() is not self._reader:
            self._reader.join(timeout=timeout)
        self._stdin_closed = True
        for stream in (self.proc.stdin, self.proc.stdout, self.proc.stderr):
            if stream is None:
                continue
            try:
                stream.close()
            except OSError as exc:
                # buffered frame bytes cannot reach a dead process
                logger.debug("Closing ffmpeg pipe: %s", exc)


def ffmpeg_capture_factory(cfg: AppConfig):
    """Capture factory bound to the encode settings of ``cfg``."""

    def _open(request: CaptureRequest, on_chunk: ChunkFn, on_flushed: FlushedFn, on_error: ErrorFn) -> FFmpegCapture:
        return FFmpegCapture(
            request,
            on_chunk,
            on_flushed,
            on_error,
            ffmpeg_bin=cfg.encode.ffmpeg_bin,
            chunk_size=cfg.encode.chunk_size,
            verbose_lib=cfg.verbose_lib,
        )

    return _open
