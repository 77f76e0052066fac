"""
TrainableModel - AI Module
The small classifier head trained on top of the fixed feature extractor.
Trained with scikit-learn, one partial_fit pass per epoch so progress can be
reported epoch by epoch.
"""

import pickle
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np
from sklearn.neural_network import MLPClassifier

from tinyteach.errors import ModelNotReadyError
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

DEFAULT_TRAINING_EPOCHS = 20
DEFAULT_TRAINING_BATCH_SIZE = 16
DEFAULT_LEARNING_RATE = 0.001

EpochCallback = Callable[[int, Dict[str, float]], None]


def _positive_int(value, fallback: int) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if parsed > 0 else fallback


def _positive_float(value, fallback: float) -> float:
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return fallback
    return parsed if np.isfinite(parsed) and parsed > 0 else fallback


@dataclass(frozen=True)
class Hyperparameters:
    epochs: int = DEFAULT_TRAINING_EPOCHS
    batch_size: int = DEFAULT_TRAINING_BATCH_SIZE
    learning_rate: float = DEFAULT_LEARNING_RATE

    @classmethod
    def sanitize(cls, values=None, defaults: Optional["Hyperparameters"] = None) -> "Hyperparameters":
        """
        Build from a Hyperparameters, a dict or None. Missing, unparsable or
        non-positive values fall back to ``defaults``.
        """
        defaults = defaults or cls()
        if values is None:
            return defaults
        if isinstance(values, Hyperparameters):
            values = {"epochs": values.epochs, "batch_size": values.batch_size,
                      "learning_rate": values.learning_rate}
        return cls(
            epochs=_positive_int(values.get("epochs"), defaults.epochs),
            batch_size=_positive_int(values.get("batch_size"), defaults.batch_size),
            learning_rate=_positive_float(values.get("learning_rate"), defaults.learning_rate),
        )


class TrainableModel(ABC):
    """
    fit(features, one_hot, hyperparameters, on_epoch_end)
    predict(vector) -> probability distribution over classes
    dispose()       -> releases internal resources; the model is unusable after
    """

    input_size: int
    num_classes: int

    @abstractmethod
    def fit(self, features: np.ndarray, one_hot: np.ndarray,
            hyperparameters: Hyperparameters, on_epoch_end: Optional[EpochCallback] = None):
        ...

    @abstractmethod
    def predict(self, vector: np.ndarray) -> np.ndarray:
        ...

    @abstractmethod
    def dispose(self):
        ...

    @property
    @abstractmethod
    def disposed(self) -> bool:
        ...


class MLPClassifierModel(TrainableModel):
    """
    Lightweight MLP: input → hidden (ReLU) → softmax over the user's classes.

    scikit-learn needs at least two output units, so a single-class session
    trains a two-unit head and reports certainty for its only class.
    """

    def __init__(self, input_size: int, num_classes: int, hidden_units: int = 128,
                 learning_rate: float = DEFAULT_LEARNING_RATE, alpha: float = 1e-4,
                 random_state: Optional[int] = None):
        self.input_size = input_size
        self.num_classes = max(num_classes, 1)
        self.hidden_units = hidden_units
        self.fitted = False
        self._disposed = False
        self.history: List[Dict[str, float]] = []

        self.classifier: Optional[MLPClassifier] = MLPClassifier(
            hidden_layer_sizes=(hidden_units,),
            activation="relu",
            solver="adam",
            alpha=alpha,                  # L2 regularisation
            learning_rate_init=learning_rate,
            shuffle=True,
            random_state=random_state,
        )
        logger.debug(f"MLP head: {input_size} → {hidden_units} → {self.num_classes}")

    @property
    def disposed(self) -> bool:
        return self._disposed

    def _check_usable(self):
        if self._disposed or self.classifier is None:
            raise ModelNotReadyError("Model has been disposed")

    def fit(self, features: np.ndarray, one_hot: np.ndarray,
            hyperparameters: Hyperparameters, on_epoch_end: Optional[EpochCallback] = None):
        self._check_usable()
        if features.ndim != 2 or features.shape[1] != self.input_size:
            raise ValueError(f"Expected features of shape (N, {self.input_size}), got {features.shape}")
        if one_hot.shape != (features.shape[0], self.num_classes):
            raise ValueError(
                f"Expected labels of shape ({features.shape[0]}, {self.num_classes}), got {one_hot.shape}"
            )

        labels = one_hot.argmax(axis=1)
        classes = np.arange(max(self.num_classes, 2))
        self.classifier.set_params(
            batch_size=min(hyperparameters.batch_size, features.shape[0]),
            learning_rate_init=hyperparameters.learning_rate,
        )

        for epoch in range(hyperparameters.epochs):
            self.classifier.partial_fit(features, labels, classes=classes)
            metrics = {
                "loss": float(self.classifier.loss_),
                "accuracy": float(self.classifier.score(features, labels)),
            }
            self.history.append(metrics)
            self.fitted = True
            if on_epoch_end is not None:
                on_epoch_end(epoch, metrics)

    def predict(self, vector: np.ndarray) -> np.ndarray:
        self._check_usable()
        if not self.fitted:
            raise ModelNotReadyError("Model has not been trained")
        x = np.asarray(vector, dtype=np.float32).reshape(1, -1)
        probs = self.classifier.predict_proba(x)[0]
        if self.num_classes == 1:
            return np.ones(1, dtype=np.float32)
        return probs[: self.num_classes].astype(np.float32)

    def dispose(self):
        self.classifier = None
        self.history = []
        self._disposed = True

    # ── persistence ──────────────────────────────────────────────────────

    def save(self, path: str, class_names: List[str]):
        self._check_usable()
        with open(path, "wb") as f:
            pickle.dump({"model": self, "classes": list(class_names)}, f)
        logger.info(f"✅ Model saved: {path}")

    @staticmethod
    def load(path: str) -> Tuple["MLPClassifierModel", List[str]]:
        with open(path, "rb") as f:
            data = pickle.load(f)
        logger.info(f"✅ Model loaded: {path}")
        return data["model"], data["classes"]
