"""
TrainingCoordinator - AI Module
Owns the training-run lifecycle: single-flight admission, dataset snapshot,
pair-preserving shuffle, model rebuild, scoped encoding buffers and the
per-epoch progress relay.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

import numpy as np

from tinyteach.ai.buffers import BufferPool
from tinyteach.ai.trainable_model import Hyperparameters, MLPClassifierModel, TrainableModel
from tinyteach.errors import (AlreadyTrainingError, InsufficientDataError,
                              TrainingFailure, TrainingNotSupportedError)
from tinyteach.session.dataset import Dataset, shuffle_pairs
from tinyteach.session.modes import Mode
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger
from tinyteach.utils.status import StatusChannel

logger = setup_logger(__name__)

ProgressListener = Callable[[int, int, Dict[str, float]], None]   # (epoch, total_epochs, metrics)
ModelFactory = Callable[..., TrainableModel]


class RunStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TrainingRun:
    epochs: int
    batch_size: int
    learning_rate: float
    current_epoch: int = 0
    status: RunStatus = RunStatus.PENDING
    metrics: Dict[str, float] = field(default_factory=dict)
    error: Optional[str] = None
    started_at: float = 0.0
    finished_at: float = 0.0

    @property
    def progress_percent(self) -> int:
        return min(100, round(self.current_epoch / self.epochs * 100))

    def describe(self) -> str:
        """Human-readable progress line, e.g. ``Training... 45% (loss 0.4120, acc 87.5%)``."""
        text = f"Training... {self.progress_percent}%"
        if "accuracy" in self.metrics:
            text += f" (loss {self.metrics.get('loss', 0.0):.4f}, acc {self.metrics['accuracy'] * 100:.1f}%)"
        return text


class TrainingCoordinator:
    """
    train(hyperparameters) → TrainingRun

    Raises AlreadyTrainingError while a run is RUNNING, InsufficientDataError
    on an empty dataset (no run is created), TrainingNotSupportedError for
    inference-only modes and TrainingFailure when fit raises.

    train() blocks until the fit finishes; the application calls it from a
    worker thread. Frames captured after the call do not reach the run.
    """

    def __init__(self, session: SessionState, dataset: Dataset, config: Optional[dict] = None,
                 model_factory: Optional[ModelFactory] = None,
                 status: Optional[StatusChannel] = None):
        config = config or {}
        self.session = session
        self.dataset = dataset
        self.config = config
        self.model_factory: ModelFactory = model_factory or MLPClassifierModel
        self.status = status or StatusChannel()
        self.defaults = Hyperparameters.sanitize(config)
        self.shuffle_seed = config.get("shuffle_seed")

        self.mode: Optional[Mode] = None
        self.model: Optional[TrainableModel] = None
        self.current_run: Optional[TrainingRun] = None
        self.buffers = BufferPool()
        self.progress_listeners: List[ProgressListener] = []
        self._lock = threading.Lock()

    def bind(self, mode: Optional[Mode]):
        self.mode = mode

    @property
    def is_training(self) -> bool:
        return self.current_run is not None and self.current_run.status is RunStatus.RUNNING

    # ── training ─────────────────────────────────────────────────────────

    def train(self, hyperparameters=None) -> TrainingRun:
        with self._lock:
            if self.is_training:
                raise AlreadyTrainingError("A training run is already in progress")
            if self.mode is not None and self.mode.inference_only:
                raise TrainingNotSupportedError(f"Mode '{self.mode.name}' uses a pretrained model")
            if len(self.dataset) == 0:
                raise InsufficientDataError("Collect some samples before training")

            hp = Hyperparameters.sanitize(hyperparameters, self.defaults)
            features, label_ids = self.dataset.snapshot()
            run = TrainingRun(epochs=hp.epochs, batch_size=hp.batch_size,
                              learning_rate=hp.learning_rate,
                              status=RunStatus.RUNNING, started_at=time.time())
            self.current_run = run
            generation = self.session.generation
            self.session.gather_target = None
            self.session.predict_enabled = False
            self.session.training_completed = False
            self.session.training_in_progress = True

        self.status.emit(
            "training_started",
            f"{len(features)} samples, {hp.epochs} epochs, batch {hp.batch_size}, lr {hp.learning_rate}",
        )

        try:
            self._fit(run, hp, features, label_ids)
        except Exception as e:
            with self._lock:
                run.status = RunStatus.FAILED
                run.error = str(e)
                run.finished_at = time.time()
                self.session.training_in_progress = False
            self.status.emit("training_failed", str(e), logging.ERROR)
            raise TrainingFailure(str(e)) from e

        if not self._commit(run, generation):
            self.status.emit("training_discarded", "Session changed during training", logging.WARNING)
            return run
        self.status.emit("training_completed", run.describe())
        return run

    def _commit(self, run: TrainingRun, generation: int) -> bool:
        """
        Finish a fitted run atomically with respect to advance_generation().
        Returns False when the session moved on and the model was discarded.
        """
        with self._lock:
            run.status = RunStatus.COMPLETED
            run.finished_at = time.time()
            if self.session.generation != generation:
                self._drop_model()
                self.session.training_in_progress = False
                return False
            # completed is visible before in_progress clears, so collection stays locked
            self.session.training_completed = True
            self.session.predict_enabled = True
            self.session.training_in_progress = False
            return True

    def _fit(self, run: TrainingRun, hp: Hyperparameters,
             features: np.ndarray, label_ids: np.ndarray):
        indices = np.array([self.session.class_index(int(i)) for i in label_ids], dtype=np.int64)
        features, indices = shuffle_pairs(features, indices, random_state=self.shuffle_seed)
        num_classes = max(len(self.session.classes), 1)

        self._drop_model()
        options = self.mode.model_options() if self.mode is not None else {}
        model = self.model_factory(features.shape[1], num_classes,
                                   learning_rate=hp.learning_rate, **options)
        self.model = model

        try:
            with self.buffers.scope() as scope:
                xs = scope.stack(features)
                ys = scope.one_hot(indices, num_classes)
                model.fit(xs.array, ys.array, hp,
                          on_epoch_end=lambda epoch, metrics: self._on_epoch_end(run, epoch, metrics))
        except Exception:
            self._drop_model()
            raise

    def _on_epoch_end(self, run: TrainingRun, epoch: int, metrics: Dict[str, float]):
        run.current_epoch = epoch + 1
        run.metrics = dict(metrics)
        logger.debug(f"Epoch {run.current_epoch}/{run.epochs}: {metrics}")
        for listener in list(self.progress_listeners):
            try:
                listener(run.current_epoch, run.epochs, run.metrics)
            except Exception as e:
                logger.error(f"Progress listener failed: {e}")

    # ── model ownership ──────────────────────────────────────────────────

    def _drop_model(self):
        model, self.model = self.model, None
        if model is not None:
            model.dispose()

    def dispose_model(self) -> bool:
        """
        Dispose the current model (idempotent). While a run is fitting the
        model belongs to that run; it is discarded when the run finishes.
        """
        with self._lock:
            if self.is_training:
                logger.debug("Model in use by the running fit, disposal deferred")
                return False
            self._drop_model()
        return True

    def install_model(self, model: TrainableModel):
        """Adopt a model trained elsewhere (e.g. loaded from disk) as the current one."""
        with self._lock:
            if self.is_training:
                raise AlreadyTrainingError("A training run is already in progress")
            if self.mode is not None and self.mode.inference_only:
                raise TrainingNotSupportedError(f"Mode '{self.mode.name}' uses a pretrained model")
            if model.num_classes != len(self.session.classes):
                raise ValueError(
                    f"Model has {model.num_classes} outputs, session has {len(self.session.classes)} classes"
                )
            self._drop_model()
            self.model = model
            self.session.training_completed = True
            self.session.predict_enabled = True
        self.status.emit("model_installed", f"{model.num_classes} classes")

    # ── session generation ───────────────────────────────────────────────

    def advance_generation(self) -> int:
        """Bump the session generation; a fit finishing concurrently sees it or commits first."""
        with self._lock:
            return self.session.next_generation()

    def invalidate_run(self) -> bool:
        """Bump the generation only if a fit is running, so its result is discarded."""
        with self._lock:
            if not self.is_training:
                return False
            self.session.next_generation()
            return True

    def predict(self, vector: np.ndarray) -> Optional[np.ndarray]:
        if self.model is None or not self.session.training_completed:
            return None
        return self.model.predict(vector)
