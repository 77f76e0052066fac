"""
SampleCollector - Session Module
Frame-synchronous acquisition of labelled samples while a class is held.
"""

from typing import Callable, List, Optional

import numpy as np

from tinyteach.errors import UnknownClassError
from tinyteach.session.dataset import Dataset
from tinyteach.session.modes import Mode
from tinyteach.session.scheduler import FrameScheduler
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

SampleListener = Callable[[int, int], None]   # (label_id, new example_count)


class SampleCollector:
    """
    Capture loop:

        start_collecting(id)  → gather_target = id, loop scheduled
        each frame            → target NONE / no frame / stale generation: stop
                                else capture → append sample, count += 1
                                → request next frame
        stop_collecting()     → gather_target = NONE (loop ends next frame)

    A mode's sample_interval_ms drops samples that arrive too soon after the
    previous accepted one; dropped samples are neither stored nor counted.
    """

    def __init__(self, session: SessionState, dataset: Dataset, scheduler: FrameScheduler):
        self.session = session
        self.dataset = dataset
        self.scheduler = scheduler
        self.mode: Optional[Mode] = None
        self.frame_provider = None
        self.listeners: List[SampleListener] = []

        self._handle: Optional[int] = None
        self._generation: Optional[int] = None
        self._last_sample_at: Optional[float] = None
        self.dropped = 0

    def bind(self, mode: Optional[Mode], frame_provider):
        """Attach the active mode and its frame provider (called on mode switch)."""
        self.cancel()
        self.mode = mode
        self.frame_provider = frame_provider

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start_collecting(self, label_id: int) -> bool:
        if self.session.training_in_progress or self.session.training_completed:
            logger.info("Collection locked: training in progress or already completed. Reset first.")
            return False
        if not self.session.has_class(label_id):
            raise UnknownClassError(label_id)
        if self.mode is None or not self.mode.requires_training:
            logger.info("Active mode does not collect samples.")
            return False

        self.session.gather_target = label_id
        if not self.running or self._generation != self.session.generation:
            self._schedule()
        logger.debug(f"Collecting for class {label_id}")
        return True

    def stop_collecting(self):
        self.session.gather_target = None

    def cancel(self):
        self.scheduler.cancel(self._handle)
        self._handle = None
        self._last_sample_at = None

    def _schedule(self):
        self._generation = self.session.generation
        self._handle = self.scheduler.request_frame(self._on_frame)

    def _on_frame(self, timestamp: float):
        self._handle = None
        if self._generation != self.session.generation:
            return
        label_id = self.session.gather_target
        if label_id is None:
            return
        frame = self.frame_provider.current_frame() if self.frame_provider is not None else None
        if frame is None:
            return

        vector = self.mode.capture(frame, timestamp)
        if vector is not None:
            self._accept(vector, label_id, timestamp)

        self._schedule()

    def _accept(self, vector: np.ndarray, label_id: int, timestamp: float) -> bool:
        # stop_collecting() or a switch may have landed while capture ran
        if self.session.gather_target != label_id or self._generation != self.session.generation:
            return False

        interval = self.mode.sample_interval_ms
        if interval and self._last_sample_at is not None:
            if (timestamp - self._last_sample_at) * 1000.0 < interval:
                self.dropped += 1
                return False

        self.dataset.add(vector, label_id)
        label = self.session.get_class(label_id)
        label.example_count += 1
        self._last_sample_at = timestamp

        for listener in list(self.listeners):
            listener(label_id, label.example_count)
        return True
