"""
LandmarkFeatureExtractor - Feature Engineering Module
Converts a landmark set (hand: 21 points, pose: 33 points) into a flat
feature vector.
"""

from typing import Optional

import numpy as np
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


class LandmarkFeatureExtractor:
    """
    Transforms (smoothed) landmarks into ML-ready feature vectors.

    Process:
    1. Optionally normalise relative to the anchor landmark (index 0)
       and scale by the largest absolute coordinate
    2. Flatten (N, D) → N*D vector

    Normalisation makes the vector translation- and scale-invariant; it is
    on for hands and off for full-body pose where position carries meaning.
    """

    def __init__(self, config: dict):
        self.config = config
        self.num_landmarks = config.get("num_landmarks", 21)
        self.dimensions = config.get("dimensions", 3)
        self.normalize = config.get("normalize", False)
        self.feature_dim = self.num_landmarks * self.dimensions

        logger.info(f"✅ LandmarkFeatureExtractor: {self.feature_dim}-dim vectors, normalize={self.normalize}")

    def extract(self, landmarks: Optional[np.ndarray]) -> Optional[np.ndarray]:
        """
        Args:
            landmarks: numpy array of shape (num_landmarks, dimensions)

        Returns:
            feature_vector of shape (feature_dim,), or None when the
            landmark set is missing or has the wrong shape
        """
        if landmarks is None or landmarks.shape != (self.num_landmarks, self.dimensions):
            return None

        features = landmarks.astype(np.float32).copy()

        if self.normalize:
            anchor = features[0].copy()
            features -= anchor

            max_val = np.max(np.abs(features))
            if max_val > 1e-6:
                features /= max_val

        return features.flatten()

    def get_feature_dim(self) -> int:
        return self.feature_dim
