"""
CameraCapture - Vision Module
Frame provider for camera modes: keeps the latest decoded RGB frame.
"""

import cv2
import numpy as np
from typing import Optional
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


class CameraCapture:
    """
    Real-time frame capture (USB webcam, or a GStreamer pipeline string).

    poll() grabs one frame per main-loop iteration; current_frame() hands the
    latest one to the capture and prediction loops. Device lifecycle stays
    here, outside the core.
    """

    def __init__(self, config: dict):
        self.config = config
        self.cap = None
        self.width = config.get("width", 640)
        self.height = config.get("height", 480)
        self.fps = config.get("fps", 30)
        self.device_id = config.get("device_id", 0)
        self.mirror = config.get("mirror", True)
        self._frame: Optional[np.ndarray] = None

    def open(self):
        gst_pipeline = self.config.get("pipeline")
        if gst_pipeline:
            logger.info("Attempting camera via GStreamer pipeline...")
            self.cap = cv2.VideoCapture(gst_pipeline, cv2.CAP_GSTREAMER)
            if self.cap.isOpened():
                logger.info("✅ Camera opened via GStreamer.")
                return

        logger.info(f"Opening USB camera (device {self.device_id})...")
        self.cap = cv2.VideoCapture(self.device_id)
        if not self.cap.isOpened():
            raise RuntimeError(f"Cannot open camera device {self.device_id}")

        self.cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.width)
        self.cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.height)
        self.cap.set(cv2.CAP_PROP_FPS, self.fps)
        # Minimize buffer for real-time performance
        self.cap.set(cv2.CAP_PROP_BUFFERSIZE, 1)

        actual_w = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        actual_fps = self.cap.get(cv2.CAP_PROP_FPS)
        logger.info(f"✅ Camera opened: {actual_w}x{actual_h} @ {actual_fps:.1f} FPS")

    def poll(self) -> Optional[np.ndarray]:
        """Read a single frame and keep it as the current one."""
        if self.cap is None or not self.cap.isOpened():
            self._frame = None
            return None

        ret, frame = self.cap.read()
        if not ret or frame is None:
            logger.warning("Failed to read frame from camera.")
            self._frame = None
            return None

        if self.mirror:
            frame = cv2.flip(frame, 1)
        # BGR → RGB for MediaPipe
        self._frame = cv2.cvtColor(frame, cv2.COLOR_BGR2RGB)
        return self._frame

    @property
    def ready(self) -> bool:
        return self._frame is not None and self._frame.shape[0] > 0 and self._frame.shape[1] > 0

    def current_frame(self) -> Optional[np.ndarray]:
        return self._frame if self.ready else None

    def release(self):
        self._frame = None
        if self.cap:
            self.cap.release()
            self.cap = None
            logger.info("Camera released.")
