"""
SignalSmoother - Feature Engineering Module
One-Euro filtering of noisy per-frame landmark coordinates.
"""

import math
from typing import Dict, Optional, Tuple

import numpy as np
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

EPSILON = 1e-6  # seconds; guards dt against duplicate timestamps


def _alpha(cutoff: float, dt: float) -> float:
    tau = 1.0 / (2.0 * math.pi * cutoff)
    return 1.0 / (1.0 + tau / dt)


class OneEuroFilter:
    """
    Adaptive low-pass filter for a single scalar stream.

    The cutoff frequency rises with the (smoothed) speed of the signal:
    slow movements get heavy smoothing, fast movements get little lag.

        cutoff = min_cutoff + beta * |dx_smoothed|

    Timestamps are in seconds. When no timestamp is given the stream is
    assumed to be sampled at ``freq`` Hz.
    """

    def __init__(self, freq: float = 30.0, min_cutoff: float = 1.0,
                 beta: float = 0.007, d_cutoff: float = 1.0):
        if freq <= 0 or min_cutoff <= 0 or d_cutoff <= 0:
            raise ValueError("freq, min_cutoff and d_cutoff must be positive")
        self.freq = freq
        self.min_cutoff = min_cutoff
        self.beta = beta
        self.d_cutoff = d_cutoff

        self.last_timestamp: Optional[float] = None
        self.last_value: Optional[float] = None
        self.last_derivative: float = 0.0

    def __call__(self, x: float, timestamp: Optional[float] = None) -> float:
        return self.filter(x, timestamp)

    def filter(self, x: float, timestamp: Optional[float] = None) -> float:
        if self.last_value is None:
            self.last_value = x
            self.last_timestamp = timestamp if timestamp is not None else 0.0
            return x

        if timestamp is None:
            dt = 1.0 / self.freq
            timestamp = self.last_timestamp + dt
        else:
            dt = max(EPSILON, timestamp - self.last_timestamp)

        dx = (x - self.last_value) / dt
        a_d = _alpha(self.d_cutoff, dt)
        dx_hat = self.last_derivative + a_d * (dx - self.last_derivative)

        cutoff = self.min_cutoff + self.beta * abs(dx_hat)
        a = _alpha(cutoff, dt)
        x_hat = self.last_value + a * (x - self.last_value)

        self.last_timestamp = timestamp
        self.last_value = x_hat
        self.last_derivative = dx_hat
        return x_hat

    def reset(self):
        self.last_timestamp = None
        self.last_value = None
        self.last_derivative = 0.0


class LandmarkSmoother:
    """
    Smooths an (N, D) landmark array frame by frame.

    One OneEuroFilter per (point, axis), created lazily the first time that
    point is seen and kept until reset() (called on mode switch).
    """

    def __init__(self, config: Optional[dict] = None):
        config = config or {}
        self.enabled = config.get("enabled", True)
        self.freq = config.get("freq", 30.0)
        self.min_cutoff = config.get("min_cutoff", 1.0)
        self.beta = config.get("beta", 0.007)
        self.d_cutoff = config.get("d_cutoff", 1.0)
        self._filters: Dict[Tuple[int, int], OneEuroFilter] = {}

        logger.info(
            f"✅ LandmarkSmoother: min_cutoff={self.min_cutoff} beta={self.beta} "
            f"d_cutoff={self.d_cutoff} enabled={self.enabled}"
        )

    def smooth(self, landmarks: np.ndarray, timestamp: Optional[float] = None) -> np.ndarray:
        """
        Args:
            landmarks: array of shape (num_points, dims)
            timestamp: frame time in seconds

        Returns:
            smoothed array of the same shape (float32)
        """
        if not self.enabled:
            return landmarks.astype(np.float32)

        smoothed = np.empty(landmarks.shape, dtype=np.float32)
        for point in range(landmarks.shape[0]):
            for axis in range(landmarks.shape[1]):
                f = self._filters.get((point, axis))
                if f is None:
                    f = OneEuroFilter(self.freq, self.min_cutoff, self.beta, self.d_cutoff)
                    self._filters[(point, axis)] = f
                smoothed[point, axis] = f.filter(float(landmarks[point, axis]), timestamp)
        return smoothed

    def reset(self):
        self._filters.clear()

    @property
    def stream_count(self) -> int:
        return len(self._filters)
