"""
PredictionLoop - AI Module
Continuous per-frame inference once prediction is enabled.
"""

from typing import Callable, List, Optional

import numpy as np

from tinyteach.ai.training_coordinator import TrainingCoordinator
from tinyteach.features.feature_source import Detection
from tinyteach.session.modes import Mode
from tinyteach.session.scheduler import FrameScheduler
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

PredictionListener = Callable[[np.ndarray, int, List[str]], None]   # (distribution, best_index, names)
LandmarkListener = Callable[[Optional[np.ndarray]], None]


def best_index(distribution) -> int:
    """Arg-max with first-index tie-break; -1 for an empty distribution."""
    if distribution is None or len(distribution) == 0:
        return -1
    return int(np.argmax(distribution))


class PredictionLoop:

    def __init__(self, session: SessionState, scheduler: FrameScheduler,
                 coordinator: TrainingCoordinator, output_gate=None):
        self.session = session
        self.scheduler = scheduler
        self.coordinator = coordinator
        self.output_gate = output_gate
        self.mode: Optional[Mode] = None
        self.frame_provider = None

        self.prediction_listeners: List[PredictionListener] = []
        self.landmark_listeners: List[LandmarkListener] = []
        self.last_distribution = np.empty(0, dtype=np.float32)
        self.last_best_index = -1
        self.last_names: List[str] = []
        self.frame_errors = 0

        self._handle: Optional[int] = None
        self._generation: Optional[int] = None

    def bind(self, mode: Optional[Mode], frame_provider):
        self.cancel()
        self.mode = mode
        self.frame_provider = frame_provider

    @property
    def running(self) -> bool:
        return self._handle is not None

    def start(self) -> bool:
        if not self.session.predict_enabled or self.mode is None:
            return False
        if not self.running or self._generation != self.session.generation:
            self._schedule()
        return True

    def cancel(self):
        self.scheduler.cancel(self._handle)
        self._handle = None
        self.last_distribution = np.empty(0, dtype=np.float32)
        self.last_best_index = -1

    def _schedule(self):
        self._generation = self.session.generation
        self._handle = self.scheduler.request_frame(self._on_frame)

    def _alive(self) -> bool:
        return self.session.predict_enabled and self._generation == self.session.generation

    def _on_frame(self, timestamp: float):
        self._handle = None
        if not self._alive():
            return
        try:
            self.step(timestamp)
        except Exception as e:
            self.frame_errors += 1
            logger.error(f"Prediction failed, skipping frame: {e}")
        if self._alive():
            self._schedule()

    def step(self, timestamp: float):
        """One prediction iteration over the current preview frame."""
        frame = self.frame_provider.current_frame() if self.frame_provider is not None else None
        if frame is None:
            return
        self.session.preview_ready = True

        mode = self.mode
        detection = mode.observe(frame, timestamp)
        self._publish_landmarks(detection)

        if mode.requires_training and not self.session.training_completed:
            return

        model = None if mode.inference_only else self.coordinator.model
        names = mode.labels if mode.labels is not None else self.session.class_names
        distribution = mode.predict(detection, model)
        if distribution is None:
            self.publish(np.empty(0, dtype=np.float32), -1, names)
            return
        self.publish(distribution, best_index(distribution), names)

    def _publish_landmarks(self, detection: Optional[Detection]):
        landmarks = detection.landmarks if detection is not None else None
        for listener in list(self.landmark_listeners):
            listener(landmarks)

    def publish(self, distribution: np.ndarray, best: int, names: List[str]):
        self.last_distribution = distribution
        self.last_best_index = best
        self.last_names = list(names)
        self.session.set_last_prediction(distribution, names)

        if self.output_gate is not None and best >= 0:
            self.output_gate.consider(distribution, best, names)

        for listener in list(self.prediction_listeners):
            listener(distribution, best, names)

    def describe(self) -> Optional[str]:
        """``"<label> NN%"`` for the last publication; None when it carried no prediction."""
        best = self.last_best_index
        if best < 0 or best >= len(self.last_distribution):
            return None
        label = self.last_names[best] if best < len(self.last_names) else f"Class {best + 1}"
        return f"{label} {float(self.last_distribution[best]) * 100:.0f}%"
