"""
ImageEmbeddingSource - Vision Module
Whole-frame feature vectors from a MobileNet-v3 image embedder (MediaPipe
Tasks). This is the fixed pre-trained extractor the classifier head is
trained on top of.
"""

import cv2
import numpy as np
import mediapipe as mp
from mediapipe.tasks import python as mp_tasks
from mediapipe.tasks.python import vision

from tinyteach.errors import DetectionMiss
from tinyteach.features.feature_source import Detection, FeatureSource
from tinyteach.vision.landmark_detector import require_model_asset
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

MOBILE_NET_INPUT_WIDTH = 224
MOBILE_NET_INPUT_HEIGHT = 224


class ImageEmbeddingSource(FeatureSource):
    """
    RGB frame → 224x224 → embedder → L2-normalised float vector.

    The embedder sees every frame, so a "detection" only misses when the
    model returns no embedding.
    """

    name = "image_embedder"

    def __init__(self, config: dict):
        super().__init__(config)
        self.model_path = config.get("model_path", "models/mobilenet_v3_small.tflite")
        self.embedder = None

    def _load(self):
        options = vision.ImageEmbedderOptions(
            base_options=mp_tasks.BaseOptions(model_asset_path=require_model_asset(self.model_path)),
            running_mode=vision.RunningMode.IMAGE,
            l2_normalize=True,
            quantize=False,
        )
        self.embedder = vision.ImageEmbedder.create_from_options(options)

        # Warm-up pass so the first real frame is not slow; also fixes feature_size.
        blank = np.zeros((MOBILE_NET_INPUT_HEIGHT, MOBILE_NET_INPUT_WIDTH, 3), dtype=np.uint8)
        vector = self._embed(blank)
        self.feature_size = int(vector.shape[0])
        logger.info(f"Image embedder output: {self.feature_size}-dim")

    def _embed(self, rgb_frame: np.ndarray) -> np.ndarray:
        resized = cv2.resize(rgb_frame, (MOBILE_NET_INPUT_WIDTH, MOBILE_NET_INPUT_HEIGHT),
                             interpolation=cv2.INTER_LINEAR)
        image = mp.Image(image_format=mp.ImageFormat.SRGB, data=np.ascontiguousarray(resized))
        result = self.embedder.embed(image)
        if not result.embeddings:
            raise DetectionMiss()
        return np.asarray(result.embeddings[0].embedding, dtype=np.float32)

    def _detect(self, frame: np.ndarray, timestamp: float) -> Detection:
        return Detection(vector=self._embed(frame))

    def close(self):
        super().close()
        if self.embedder is not None:
            self.embedder.close()
            self.embedder = None
