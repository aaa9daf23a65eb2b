"""Single-threaded cooperative scheduler keyed to a frame clock.

Timed callbacks (``call_later``, ``request_frame``) run from a heap on the
thread that calls ``run``. Worker threads never touch shared state directly;
they post through ``call_soon_threadsafe`` and the callbacks run on the
scheduler thread in the order they were posted.
"""
import heapq
import itertools
import math
import queue
import time
from typing import Callable, Optional


class VirtualClock:
    """Offline time: jumps straight to the next deadline."""

    realtime = False

    def __init__(self, start: float = 0.0):
        self.t = start

    def now(self) -> float:
        return self.t

    def advance_to(self, t: float) -> None:
        if t > self.t:
            self.t = t


class RealtimeClock:
    realtime = True

    def __init__(self):
        self._t0 = time.perf_counter()

    def now(self) -> float:
        return time.perf_counter() - self._t0

    def advance_to(self, t: float) -> None:
        pass


class Handle:
    __slots__ = ("when", "seq", "callback", "args", "cancelled")

    def __init__(self, when: float, seq: int, callback: Callable, args: tuple):
        self.when = when
        self.seq = seq
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "Handle") -> bool:
        return (self.when, self.seq) < (other.when, other.seq)


class FrameScheduler:
    def __init__(self, fps: int, clock=None):
        self.fps = fps
        self.clock = clock if clock is not None else VirtualClock()
        self.epoch = self.clock.now()
        self._timers: list = []
        self._seq = itertools.count()
        self._inbox: "queue.Queue" = queue.Queue()

    def now(self) -> float:
        return self.clock.now()

    @property
    def frame_interval(self) -> float:
        return 1.0 / self.fps

    def call_at(self, when: float, callback: Callable, *args) -> Handle:
        handle = Handle(when, next(self._seq), callback, args)
        heapq.heappush(self._timers, handle)
        return handle

    def call_later(self, delay: float, callback: Callable, *args) -> Handle:
        return self.call_at(self.now() + max(delay, 0.0), callback, *args)

    def call_soon(self, callback: Callable, *args) -> Handle:
        return self.call_at(self.now(), callback, *args)

    def next_frame_time(self) -> float:
        """First frame boundary strictly after now."""
        k = math.floor((self.now() - self.epoch) * self.fps + 1e-9) + 1
        return self.epoch + k / self.fps

    def request_frame(self, callback: Callable, *args) -> Handle:
        return self.call_at(self.next_frame_time(), callback, *args)

    def call_soon_threadsafe(self, callback: Callable, *args) -> None:
        self._inbox.put((callback, args))

    def _drain_inbox(self, block: bool, timeout: Optional[float]) -> bool:
        try:
            item = self._inbox.get(block=block, timeout=timeout)
        except queue.Empty:
            return False
        while True:
            callback, args = item
            callback(*args)
            try:
                item = self._inbox.get_nowait()
            except queue.Empty:
                return True

    def _pop_live(self) -> Optional[Handle]:
        while self._timers and self._timers[0].cancelled:
            heapq.heappop(self._timers)
        return self._timers[0] if self._timers else None

    def run(self, until: Callable[[], bool], idle_timeout: Optional[float] = None) -> bool:
        """Run callbacks until ``until()`` is true.

        Returns False if nothing was scheduled and no worker event arrived
        within ``idle_timeout`` seconds of wall time.
        """
        while not until():
            self._drain_inbox(block=False, timeout=None)
            if until():
                break

            head = self._pop_live()
            if head is None:
                if not self._drain_inbox(block=True, timeout=idle_timeout):
                    return False
                continue

            if self.clock.realtime:
                wait = head.when - self.now()
                if wait > 0:
                    # wake early for worker events
                    self._drain_inbox(block=True, timeout=wait)
                    continue
            else:
                self.clock.advance_to(head.when)

            heapq.heappop(self._timers)
            head.callback(*head.args)
        return True
