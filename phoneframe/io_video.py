import math
from typing import Callable, Optional

import cv2
import numpy as np

from .errors import NoSourceLoaded, TransientFrameReadError


class VideoFileSource:
    """Looping playback of a video file, positioned by an external clock.

    Frames are decoded lazily: ``read_frame`` advances the capture to the
    frame matching the current playback position and re-uses the last decoded
    frame while the position stays within it.
    """

    def __init__(self, path: str, loop: bool = True):
        self.path = path
        self.loop = loop
        self.cap = cv2.VideoCapture(path)
        if not self.cap.isOpened():
            raise NoSourceLoaded(f"Cannot open video: {path}")

        self.width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        if self.width <= 0 or self.height <= 0:
            self.cap.release()
            raise NoSourceLoaded(f"Video has no visual track: {path}")

        fps = float(self.cap.get(cv2.CAP_PROP_FPS) or 0.0)
        self.fps = fps if math.isfinite(fps) and fps > 0 else 30.0
        count = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        self.frame_count = count if count > 0 else None

        self._clock: Optional[Callable[[], float]] = None
        self._t0 = 0.0
        self._next_idx = 0  # index of the frame the next grab() decodes
        self._frame: Optional[np.ndarray] = None
        self._frame_idx = -1

    @property
    def duration_ms(self) -> Optional[float]:
        if self.frame_count is None:
            return None
        return self.frame_count * 1000.0 / self.fps

    @property
    def playing(self) -> bool:
        return self._clock is not None

    @property
    def position_ms(self) -> float:
        if self._clock is None:
            return 0.0
        pos = (self._clock() - self._t0) * 1000.0
        duration = self.duration_ms
        if self.loop and duration:
            pos = pos % duration
        elif duration:
            pos = min(pos, duration)
        return pos

    def restart(self) -> None:
        self.cap.set(cv2.CAP_PROP_POS_FRAMES, 0)
        self._next_idx = 0
        self._frame = None
        self._frame_idx = -1
        if self._clock is not None:
            self._t0 = self._clock()

    def play(self, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._t0 = clock()

    def pause(self) -> None:
        self._clock = None

    def has_frame(self) -> bool:
        return self.playing and self.cap.isOpened()

    def _target_index(self) -> int:
        idx = int(self.position_ms * self.fps / 1000.0)
        if self.frame_count is not None:
            idx = min(idx, self.frame_count - 1)
        return idx

    def read_frame(self) -> np.ndarray:
        target = self._target_index()
        if target == self._frame_idx and self._frame is not None:
            return self._frame

        if target < self._next_idx:
            self.cap.set(cv2.CAP_PROP_POS_FRAMES, target)
            self._next_idx = target

        while self._next_idx < target:
            if not self.cap.grab():
                raise TransientFrameReadError(f"grab failed at frame {self._next_idx}")
            self._next_idx += 1

        ok, frame = self.cap.read()
        if not ok or frame is None:
            raise TransientFrameReadError(f"decode failed at frame {target}")
        self._next_idx = target + 1
        self._frame = frame
        self._frame_idx = target
        return frame

    def close(self) -> None:
        self._clock = None
        self.cap.release()

    def __enter__(self):
        return self

    def __exit__(self, *_):
        self.close()
