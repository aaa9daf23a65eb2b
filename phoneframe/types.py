from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Protocol

import numpy as np


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    w: float
    h: float

    @property
    def right(self) -> float:
        return self.x + self.w

    @property
    def bottom(self) -> float:
        return self.y + self.h

    @property
    def cx(self) -> float:
        return self.x + self.w * 0.5

    @property
    def cy(self) -> float:
        return self.y + self.h * 0.5

    def inset(self, d: float) -> "Rect":
        return Rect(self.x + d, self.y + d, self.w - 2 * d, self.h - 2 * d)

    def contains(self, other: "Rect") -> bool:
        """Strict containment: every edge of ``other`` lies inside this rect."""

        return (
            other.x > self.x
            and other.y > self.y
            and other.right < self.right
            and other.bottom < self.bottom
        )


@dataclass(frozen=True)
class Geometry:
    """Phone-frame layout for one rendered frame."""

    pulse_scale: float
    frame_rect: Rect
    screen_rect: Rect
    corner_radius: float
    inner_radius: float
    border_width: float
    border_inset: float


class SessionState(str, Enum):
    IDLE = "idle"
    NEGOTIATING = "negotiating"
    RECORDING = "recording"
    FINALIZING = "finalizing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (SessionState.COMPLETED, SessionState.FAILED)


@dataclass(frozen=True)
class CodecCandidate:
    """A mime candidate and the ffmpeg settings that produce it."""

    mime_type: str
    encoder: str
    container: str
    extension: str
    output_args: tuple = ()


@dataclass(frozen=True)
class CaptureRequest:
    """What the session asks of a capture surface once a codec is chosen."""

    width: int
    height: int
    fps: int
    codec: CodecCandidate
    bitrate: int


@dataclass(frozen=True)
class OutputArtifact:
    data: bytes
    mime_type: str
    extension: str
    frame_count: int
    fps: int

    @property
    def duration_ms(self) -> float:
        return self.frame_count * 1000.0 / self.fps

    def __len__(self) -> int:
        return len(self.data)


class SourceFrameProvider(Protocol):
    width: int
    height: int

    @property
    def duration_ms(self) -> Optional[float]: ...

    @property
    def position_ms(self) -> float: ...

    def has_frame(self) -> bool: ...

    def read_frame(self) -> np.ndarray: ...

    def restart(self) -> None: ...

    def play(self, clock: Callable[[], float]) -> None: ...


class CaptureSurface(Protocol):
    def push_frame(self, frame: np.ndarray) -> None: ...

    def stop(self) -> None: ...

    def close(self) -> None: ...


CapabilityProbe = Callable[[str], bool]
DownloadSink = Callable[[OutputArtifact, str], None]
ProgressObserver = Callable[[float], None]
