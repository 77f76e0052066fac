"""
Modes - Session Module
The closed set of input modalities. Each variant wraps its FeatureSource and
answers the same three questions for the loops:

    capture(frame, t)          feature vector for a training sample, or None
    observe(frame, t)          Detection for overlay/prediction, or None
    predict(detection, model)  probability distribution, or None

ModeController picks a variant once per switch; nothing downstream branches
on the mode name.
"""

from typing import Any, Callable, Dict, List, Optional

import numpy as np

from tinyteach.errors import UnknownModeError
from tinyteach.features.feature_source import Detection, FeatureSource


class Mode:
    name = "mode"
    title = "Mode"
    input_kind = "camera"          # which frame provider feeds this mode
    requires_training = True
    default_sample_interval_ms = 0
    default_drives_output = False
    default_hidden_units = 128

    def __init__(self, source: FeatureSource, config: Optional[dict] = None):
        config = config or {}
        self.config = config
        self.source = source
        self.sample_interval_ms = config.get("sample_interval_ms", self.default_sample_interval_ms)
        self.drives_output = config.get("drives_output", self.default_drives_output)
        self.hidden_units = config.get("hidden_units", self.default_hidden_units)

    @property
    def inference_only(self) -> bool:
        return not self.requires_training

    @property
    def labels(self) -> Optional[List[str]]:
        """Fixed output labels of a pretrained mode; None when the user's classes apply."""
        return None

    def capture(self, frame: Any, timestamp: float) -> Optional[np.ndarray]:
        return self.source.extract(frame, timestamp)

    def observe(self, frame: Any, timestamp: float) -> Optional[Detection]:
        return self.source.detect(frame, timestamp)

    def predict(self, detection: Optional[Detection], model) -> Optional[np.ndarray]:
        if detection is None or detection.vector is None or model is None:
            return None
        return np.asarray(model.predict(detection.vector), dtype=np.float32)

    def model_options(self) -> Dict:
        return {"hidden_units": self.hidden_units}

    def __repr__(self):
        return f"<{self.__class__.__name__} {self.name}>"


class ImageMode(Mode):
    name = "image"
    title = "Image Classification"
    default_drives_output = True


class HandMode(Mode):
    name = "hand"
    title = "Hand Landmarks"
    default_sample_interval_ms = 100
    default_hidden_units = 64


class PoseMode(Mode):
    name = "pose"
    title = "Body Pose"
    default_sample_interval_ms = 150


class AudioMode(Mode):
    name = "audio"
    title = "Audio Commands"
    input_kind = "microphone"
    default_sample_interval_ms = 1000


class GestureMode(Mode):
    """Inference-only: pretrained gesture recognizer, never holds a trainable model."""

    name = "gesture"
    title = "Gesture Recognition"
    requires_training = False

    @property
    def labels(self) -> Optional[List[str]]:
        return list(getattr(self.source, "labels", []))

    def capture(self, frame: Any, timestamp: float) -> Optional[np.ndarray]:
        return None

    def predict(self, detection: Optional[Detection], model) -> Optional[np.ndarray]:
        if detection is None or detection.scores is None:
            return None
        return np.asarray(detection.scores, dtype=np.float32)


# Builders import their detector lazily so that selecting one mode never
# loads the others' native dependencies.

def _build_image(mode_config: dict, config: dict) -> Mode:
    from tinyteach.vision.image_embedder import ImageEmbeddingSource
    return ImageMode(ImageEmbeddingSource(mode_config), mode_config)


def _build_hand(mode_config: dict, config: dict) -> Mode:
    from tinyteach.vision.landmark_detector import HandLandmarkSource
    return HandMode(HandLandmarkSource(mode_config, config.get("smoothing")), mode_config)


def _build_pose(mode_config: dict, config: dict) -> Mode:
    from tinyteach.vision.landmark_detector import PoseLandmarkSource
    return PoseMode(PoseLandmarkSource(mode_config, config.get("smoothing")), mode_config)


def _build_audio(mode_config: dict, config: dict) -> Mode:
    from tinyteach.audio.microphone import AudioFeatureSource
    audio_config = dict(config.get("microphone", {}))
    audio_config.update(mode_config)
    return AudioMode(AudioFeatureSource(audio_config), mode_config)


def _build_gesture(mode_config: dict, config: dict) -> Mode:
    from tinyteach.vision.landmark_detector import GestureRecognitionSource
    return GestureMode(GestureRecognitionSource(mode_config), mode_config)


MODE_BUILDERS: Dict[str, Callable[[dict, dict], Mode]] = {
    "image": _build_image,
    "hand": _build_hand,
    "pose": _build_pose,
    "audio": _build_audio,
    "gesture": _build_gesture,
}

MODE_NAMES = list(MODE_BUILDERS)


def build_mode(name: str, config: Optional[dict] = None) -> Mode:
    """Instantiate the variant for ``name`` from the full system config."""
    if name not in MODE_BUILDERS:
        raise UnknownModeError(f"Unknown mode '{name}'. Choose from: {', '.join(MODE_NAMES)}")
    config = config or {}
    mode_config = dict(config.get("modes", {}).get(name, {}) or {})
    return MODE_BUILDERS[name](mode_config, config)
