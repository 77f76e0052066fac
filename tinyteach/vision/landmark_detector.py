"""
Landmark detectors - Vision Module
Hand / pose landmarks and the pretrained gesture recognizer, all via the
MediaPipe Tasks API (free, on-device).
"""

import os
from typing import Any, List, Optional

import numpy as np
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from tinyteach.errors import DetectionMiss, ModelLoadFailure
from tinyteach.features.feature_source import Detection, FeatureSource, LandmarkSource
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

# Labels of the canned MediaPipe gesture recognizer model, in model order.
GESTURE_LABELS = [
    "None",
    "Closed_Fist",
    "Open_Palm",
    "Pointing_Up",
    "Thumb_Down",
    "Thumb_Up",
    "Victory",
    "ILoveYou",
]


class VideoClock:
    """MediaPipe VIDEO mode needs strictly increasing millisecond timestamps."""

    def __init__(self):
        self.last_ms = -1

    def to_ms(self, timestamp: float) -> int:
        ms = max(self.last_ms + 1, int(timestamp * 1000))
        self.last_ms = ms
        return ms


def require_model_asset(path: str) -> str:
    if not path or not os.path.exists(path):
        raise ModelLoadFailure(f"Missing model file: {path}")
    return path


def _to_mp_image(rgb_frame: np.ndarray) -> mp.Image:
    return mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(rgb_frame))


def _landmark_array(points) -> np.ndarray:
    return np.array([[p.x, p.y, p.z] for p in points], dtype=np.float32)


class HandLandmarkSource(LandmarkSource):
    """
    21 hand landmarks (x, y, z) of the first detected hand = 63-dim vector.
    """

    name = "hand_landmarker"

    def __init__(self, config: dict, smoothing_config: Optional[dict] = None):
        config = dict(config)
        config.setdefault("num_landmarks", 21)
        config.setdefault("normalize", True)
        super().__init__(config, smoothing_config)
        self.model_path = config.get("model_path", "models/hand_landmarker.task")
        self.landmarker = None
        self._clock = VideoClock()

    def _load(self):
        options = vision.HandLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=require_model_asset(self.model_path)),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=1,
            min_hand_detection_confidence=self.config.get("min_detection_confidence", 0.5),
            min_tracking_confidence=self.config.get("min_tracking_confidence", 0.5),
        )
        self.landmarker = vision.HandLandmarker.create_from_options(options)

    def _detect_landmarks(self, frame: np.ndarray, timestamp: float) -> Optional[np.ndarray]:
        result = self.landmarker.detect_for_video(_to_mp_image(frame), self._clock.to_ms(timestamp))
        if not result.hand_landmarks:
            return None
        return _landmark_array(result.hand_landmarks[0])

    def close(self):
        super().close()
        if self.landmarker is not None:
            self.landmarker.close()
            self.landmarker = None


class PoseLandmarkSource(LandmarkSource):
    """
    33 body landmarks (x, y, z) of the first detected person = 99-dim vector.
    """

    name = "pose_landmarker"

    def __init__(self, config: dict, smoothing_config: Optional[dict] = None):
        config = dict(config)
        config.setdefault("num_landmarks", 33)
        config.setdefault("normalize", False)
        super().__init__(config, smoothing_config)
        self.model_path = config.get("model_path", "models/pose_landmarker_full.task")
        self.landmarker = None
        self._clock = VideoClock()

    def _load(self):
        options = vision.PoseLandmarkerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=require_model_asset(self.model_path)),
            running_mode=vision.RunningMode.VIDEO,
            num_poses=1,
        )
        self.landmarker = vision.PoseLandmarker.create_from_options(options)

    def _detect_landmarks(self, frame: np.ndarray, timestamp: float) -> Optional[np.ndarray]:
        result = self.landmarker.detect_for_video(_to_mp_image(frame), self._clock.to_ms(timestamp))
        if not result.pose_landmarks:
            return None
        return _landmark_array(result.pose_landmarks[0])

    def close(self):
        super().close()
        if self.landmarker is not None:
            self.landmarker.close()
            self.landmarker = None


class GestureRecognitionSource(FeatureSource):
    """
    Pretrained MediaPipe gesture recognizer (inference-only mode).

    detect() returns the score distribution over GESTURE_LABELS plus the hand
    landmarks for the overlay; there is no trainable feature vector.
    """

    name = "gesture_recognizer"

    def __init__(self, config: dict):
        super().__init__(config)
        self.model_path = config.get("model_path", "models/gesture_recognizer.task")
        self.labels: List[str] = list(config.get("labels", GESTURE_LABELS))
        self.recognizer = None
        self._clock = VideoClock()

    def _load(self):
        options = vision.GestureRecognizerOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=require_model_asset(self.model_path)),
            running_mode=vision.RunningMode.VIDEO,
            num_hands=1,
        )
        self.recognizer = vision.GestureRecognizer.create_from_options(options)

    def _detect(self, frame: Any, timestamp: float) -> Detection:
        result = self.recognizer.recognize_for_video(_to_mp_image(frame), self._clock.to_ms(timestamp))
        if not result.gestures:
            raise DetectionMiss()

        scores = np.zeros(len(self.labels), dtype=np.float32)
        for category in result.gestures[0]:
            if category.category_name in self.labels:
                scores[self.labels.index(category.category_name)] = category.score

        landmarks = _landmark_array(result.hand_landmarks[0]) if result.hand_landmarks else None
        return Detection(landmarks=landmarks, scores=scores)

    def close(self):
        super().close()
        if self.recognizer is not None:
            self.recognizer.close()
            self.recognizer = None
