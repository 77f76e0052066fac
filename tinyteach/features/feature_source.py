"""
FeatureSource - Feature Engineering Module
Common contract for everything that turns a sensor frame into features.

    init()                  -> ready, or raises ModelLoadFailure
    detect(frame, t)        -> Detection or None (nothing detected / busy)
    extract(frame, t)       -> feature vector or None
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
from tinyteach.errors import DetectionMiss, ModelLoadFailure
from tinyteach.features.feature_extractor import LandmarkFeatureExtractor
from tinyteach.features.signal_smoother import LandmarkSmoother
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


@dataclass
class Detection:
    """Result of one successful detection."""
    vector: Optional[np.ndarray] = None
    landmarks: Optional[np.ndarray] = None   # (N, D), for overlays
    scores: Optional[np.ndarray] = None      # pretrained recognizers only


class FeatureSource(ABC):
    """
    Base class for feature sources.

    A non-blocking busy lock guards detection: if a detection call is still
    in flight (e.g. the capture and prediction loops share one detector),
    the newer call is skipped rather than queued. Detector errors are logged
    and treated as a miss for that frame.
    """

    name = "source"
    feature_size: Optional[int] = None

    def __init__(self, config: Optional[dict] = None):
        self.config = config or {}
        self.ready = False
        self.last_error: Optional[str] = None
        self._busy = threading.Lock()

    def init(self) -> bool:
        """Load models/assets. Raises ModelLoadFailure; safe to call again to retry."""
        if self.ready:
            return True
        try:
            self._load()
        except ModelLoadFailure as e:
            self.last_error = str(e)
            raise
        except Exception as e:
            self.last_error = str(e)
            raise ModelLoadFailure(f"{self.name}: {e}") from e

        self.ready = True
        self.last_error = None
        logger.info(f"✅ {self.name} ready.")
        return True

    @property
    def busy(self) -> bool:
        return self._busy.locked()

    def detect(self, frame: Any, timestamp: float) -> Optional[Detection]:
        if not self.ready or frame is None:
            return None
        if not self._busy.acquire(blocking=False):
            logger.debug(f"{self.name} busy, skipping frame")
            return None
        try:
            return self._detect(frame, timestamp)
        except DetectionMiss:
            return None
        except Exception as e:
            logger.error(f"{self.name} detection failed: {e}")
            return None
        finally:
            self._busy.release()

    def extract(self, frame: Any, timestamp: float) -> Optional[np.ndarray]:
        detection = self.detect(frame, timestamp)
        if detection is None:
            return None
        return detection.vector

    def reset(self):
        """Drop per-stream state (smoothers, timestamps)."""

    def close(self):
        self.ready = False

    @abstractmethod
    def _load(self):
        ...

    @abstractmethod
    def _detect(self, frame: Any, timestamp: float) -> Detection:
        """Return a Detection or raise DetectionMiss."""


class LandmarkSource(FeatureSource):
    """
    Landmark-stream source: raw landmarks → One-Euro smoothing → flat vector.

    Subclasses only implement _detect_landmarks().
    """

    name = "landmarks"

    def __init__(self, config: Optional[dict] = None, smoothing_config: Optional[dict] = None):
        super().__init__(config)
        self.extractor = LandmarkFeatureExtractor(self.config)
        self.smoother = LandmarkSmoother(smoothing_config)
        self.feature_size = self.extractor.get_feature_dim()

    def _detect(self, frame: Any, timestamp: float) -> Detection:
        raw = self._detect_landmarks(frame, timestamp)
        if raw is None or len(raw) == 0:
            raise DetectionMiss()

        smoothed = self.smoother.smooth(np.asarray(raw, dtype=np.float32), timestamp)
        vector = self.extractor.extract(smoothed)
        if vector is None:
            raise DetectionMiss()
        return Detection(vector=vector, landmarks=smoothed)

    def reset(self):
        self.smoother.reset()

    @abstractmethod
    def _detect_landmarks(self, frame: Any, timestamp: float) -> Optional[np.ndarray]:
        """Return an (N, D) array for the first detected subject, or None."""
