"""
Microphone - Audio Module
Frame provider for the audio mode (rolling window of mono samples) and the
MFCC feature source trained on top of it.
"""

import threading
from collections import deque
from typing import Deque, Optional

import numpy as np
import librosa

from tinyteach.errors import DetectionMiss
from tinyteach.features.feature_source import Detection, FeatureSource
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)


class MicrophoneCapture:
    """
    Captures mono audio in a background PortAudio callback and exposes the
    most recent ``window_seconds`` as one "frame".

    current_frame() is None until a full window has been recorded.
    """

    def __init__(self, config: dict):
        self.config = config
        self.sample_rate = config.get("sample_rate", 16000)
        self.window_seconds = config.get("window_seconds", 1.0)
        self.block_seconds = config.get("block_seconds", 0.1)
        self.device = config.get("device")

        self._window = int(self.sample_rate * self.window_seconds)
        self._ring: Deque[np.ndarray] = deque()
        self._ring_len = 0
        self._lock = threading.Lock()
        self._stream = None

    def open(self):
        # Lazy import: PortAudio is only needed when the audio mode is used.
        import sounddevice as sd

        def callback(indata, frames, time_info, status):
            if status:
                logger.debug(f"Audio input status: {status}")
            self._push(indata.copy().astype(np.float32).reshape(-1))

        self._stream = sd.InputStream(
            callback=callback,
            channels=1,
            samplerate=self.sample_rate,
            blocksize=int(self.sample_rate * self.block_seconds),
            device=self.device,
        )
        self._stream.start()
        logger.info(f"✅ Microphone opened: {self.sample_rate} Hz, window={self.window_seconds}s")

    def _push(self, block: np.ndarray):
        with self._lock:
            self._ring.append(block)
            self._ring_len += len(block)
            while self._ring and self._ring_len - len(self._ring[0]) >= self._window:
                self._ring_len -= len(self._ring.popleft())

    def poll(self) -> Optional[np.ndarray]:
        return self.current_frame()

    @property
    def ready(self) -> bool:
        return self._ring_len >= self._window

    def current_frame(self) -> Optional[np.ndarray]:
        with self._lock:
            if self._ring_len < self._window:
                return None
            audio = np.concatenate(list(self._ring))
        return audio[-self._window:]

    def release(self):
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            logger.info("Microphone released.")
        with self._lock:
            self._ring.clear()
            self._ring_len = 0


class AudioFeatureSource(FeatureSource):
    """
    One second of audio → MFCC matrix → per-coefficient mean and std.

    Output size is 2 * n_mfcc (26 by default). Windows quieter than
    ``min_rms`` count as a miss so silence is not mistaken for a sample,
    unless ``min_rms`` is 0 (background-noise classes).
    """

    name = "audio_mfcc"

    def __init__(self, config: dict):
        super().__init__(config)
        self.sample_rate = config.get("sample_rate", 16000)
        self.n_mfcc = config.get("n_mfcc", 13)
        self.min_rms = config.get("min_rms", 0.0)
        self.feature_size = 2 * self.n_mfcc

    def _load(self):
        # librosa needs no model asset; a dry run catches a broken install early.
        self._features(np.zeros(self.sample_rate // 4, dtype=np.float32))

    def _features(self, audio: np.ndarray) -> np.ndarray:
        mfcc = librosa.feature.mfcc(y=audio, sr=self.sample_rate, n_mfcc=self.n_mfcc)
        return np.concatenate([mfcc.mean(axis=1), mfcc.std(axis=1)]).astype(np.float32)

    def _detect(self, frame: np.ndarray, timestamp: float) -> Detection:
        audio = np.asarray(frame, dtype=np.float32)
        if audio.size == 0:
            raise DetectionMiss()
        if self.min_rms > 0:
            rms = float(np.sqrt(np.mean(audio ** 2)))
            if rms < self.min_rms:
                raise DetectionMiss()
        return Detection(vector=self._features(audio))
