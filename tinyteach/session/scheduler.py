"""
FrameScheduler - Session Module
One logical tick per captured frame, in the manner of requestAnimationFrame.

Loops call request_frame(callback) to run once on the next tick and
re-request from inside the callback to keep going. The application drives
tick() from its capture loop; tests drive it directly, one frame at a time.
"""

import itertools
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

FrameCallback = Callable[[float], None]


class FrameScheduler:

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        self._ids = itertools.count(1)
        self._frame_callbacks: Dict[int, FrameCallback] = {}
        self._soon: List[Tuple[Callable, tuple]] = []
        self._lock = threading.Lock()
        self.frame_count = 0

    def request_frame(self, callback: FrameCallback) -> int:
        """Run callback(timestamp) on the next tick. Returns a handle for cancel()."""
        with self._lock:
            handle = next(self._ids)
            self._frame_callbacks[handle] = callback
        return handle

    def cancel(self, handle: Optional[int]):
        if handle is None:
            return
        with self._lock:
            self._frame_callbacks.pop(handle, None)

    def call_soon(self, fn: Callable, *args):
        """Marshal a call from another thread onto the tick thread."""
        with self._lock:
            self._soon.append((fn, args))

    @property
    def pending(self) -> int:
        with self._lock:
            return len(self._frame_callbacks) + len(self._soon)

    def tick(self, timestamp: Optional[float] = None) -> float:
        """
        Run queued calls, then every frame callback requested before this tick.
        Callbacks requested during the tick run on the next one.
        """
        if timestamp is None:
            timestamp = self.clock()
        self.frame_count += 1

        with self._lock:
            soon, self._soon = self._soon, []
        for fn, args in soon:
            try:
                fn(*args)
            except Exception as e:
                logger.exception(f"Deferred call {getattr(fn, '__name__', fn)} failed: {e}")

        with self._lock:
            callbacks, self._frame_callbacks = self._frame_callbacks, {}
        for callback in callbacks.values():
            try:
                callback(timestamp)
            except Exception as e:
                logger.exception(f"Frame callback failed: {e}")
        return timestamp

    def clear(self):
        with self._lock:
            self._frame_callbacks.clear()
