"""
ModeController - Session Module
Mode selection and the session lifecycle around it.

Switching modes, strictly in order:
    1. stop loops        generation bump, cancel frame callbacks, clear target
    2. dispose model     exactly once
    3. clear dataset     and every class count
    4. reset flags       predict / training / preview, last prediction and send
    5. init new source   close the previous one; a load failure degrades
    6. start             inference-only modes predict immediately
"""

import logging
from typing import Callable, Dict, List, Optional

from tinyteach.ai.prediction_loop import PredictionLoop
from tinyteach.ai.trainable_model import TrainableModel
from tinyteach.ai.training_coordinator import TrainingCoordinator
from tinyteach.errors import AlreadyTrainingError, ModelLoadFailure, TrainingNotSupportedError
from tinyteach.session.dataset import Dataset
from tinyteach.session.modes import MODE_NAMES, Mode, build_mode
from tinyteach.session.sample_collector import SampleCollector
from tinyteach.session.state import ClassLabel, SessionState
from tinyteach.utils.logger import setup_logger
from tinyteach.utils.status import StatusChannel

logger = setup_logger(__name__)

ModeFactory = Callable[[str, dict], Mode]


class ModeController:

    def __init__(self, session: SessionState, dataset: Dataset,
                 collector: SampleCollector, coordinator: TrainingCoordinator,
                 prediction_loop: PredictionLoop, config: Optional[dict] = None,
                 frame_providers: Optional[Dict[str, object]] = None,
                 mode_factory: ModeFactory = build_mode,
                 status: Optional[StatusChannel] = None, output_gate=None):
        self.session = session
        self.dataset = dataset
        self.collector = collector
        self.coordinator = coordinator
        self.prediction_loop = prediction_loop
        self.config = config or {}
        self.frame_providers = frame_providers or {}
        self.mode_factory = mode_factory
        self.status = status or StatusChannel()
        self.output_gate = output_gate
        self.mode: Optional[Mode] = None

    @property
    def degraded(self) -> bool:
        """True while the active mode's feature source failed to load."""
        return self.mode is not None and not self.mode.source.ready

    # ── mode switching ───────────────────────────────────────────────────

    def switch_mode(self, name: str) -> Mode:
        if self.mode is not None and name == self.session.mode:
            self.status.emit("mode_selected", name)
            return self.mode

        # Unknown names raise here, before the session is touched.
        mode = self.mode_factory(name, self.config)
        logger.info(f"Switching mode: {self.session.mode} → {name}")

        self._stop_loops()
        self.coordinator.dispose_model()
        self._clear_data()
        self.session.reset_flags()

        previous, self.mode = self.mode, mode
        if previous is not None:
            previous.source.close()
        self.session.mode = name
        self._bind(mode)
        self._initialize_source()

        self._start()
        self.status.emit("mode_selected", name)
        return mode

    def next_mode_name(self) -> str:
        if self.session.mode not in MODE_NAMES:
            return MODE_NAMES[0]
        return MODE_NAMES[(MODE_NAMES.index(self.session.mode) + 1) % len(MODE_NAMES)]

    def retry_initialization(self) -> bool:
        if self.mode is None:
            return False
        ok = self._initialize_source()
        if ok:
            self._start()
        return ok

    def _bind(self, mode: Mode):
        provider = self.frame_providers.get(mode.input_kind)
        self.collector.bind(mode, provider)
        self.prediction_loop.bind(mode, provider)
        self.coordinator.bind(mode)
        if self.output_gate is not None:
            self.output_gate.bind(mode)

    def _initialize_source(self) -> bool:
        try:
            self.mode.source.init()
        except ModelLoadFailure as e:
            self.status.emit("model_load_failure", str(e), logging.WARNING)
            return False
        return True

    def _start(self):
        if self.mode.inference_only and self.mode.source.ready:
            self.session.predict_enabled = True
            self.prediction_loop.start()

    def _stop_loops(self):
        self.coordinator.advance_generation()
        self.collector.cancel()
        self.prediction_loop.cancel()
        self.session.gather_target = None

    def _clear_data(self):
        self.dataset.clear()
        self.session.reset_counts()

    # ── session lifecycle ────────────────────────────────────────────────

    def reset(self):
        """Back to an empty, untrained session in the current mode."""
        self._stop_loops()
        self.coordinator.dispose_model()
        self._clear_data()
        self.session.reset_flags()
        if self.mode is not None:
            self.mode.source.reset()
            self._start()
        self.status.emit("session_reset")

    def add_class(self, name: Optional[str] = None) -> ClassLabel:
        """
        Add a class. Collected samples are kept, but any trained model no
        longer matches the class list, so it is dropped and prediction stops.
        """
        label = self.session.add_class(name)
        if self.mode is not None and self.mode.requires_training:
            # a running fit was sized for the old class list
            self.coordinator.invalidate_run()
            self.prediction_loop.cancel()
            self.coordinator.dispose_model()
            self.session.predict_enabled = False
            self.session.training_completed = False
            self.session.preview_ready = False
            self.session.last_prediction = []
        self.status.emit("class_added", label.name)
        return label

    def install_model(self, model: TrainableModel, class_names: List[str]):
        """
        Predict with a head trained offline (scripts/train_model.py). The
        session's classes become ``class_names``; collected samples are dropped.
        """
        if self.mode is None or not self.mode.requires_training:
            raise TrainingNotSupportedError(f"Mode '{self.session.mode}' does not use a trained head")
        if self.coordinator.is_training:
            raise AlreadyTrainingError("A training run is already in progress")
        if model.num_classes != len(class_names):
            raise ValueError(f"Model has {model.num_classes} outputs for {len(class_names)} class names")

        self._stop_loops()
        self._clear_data()
        self.session.reset_flags()
        self.session.classes.clear()
        for name in class_names:
            self.session.add_class(name)

        self.coordinator.install_model(model)
        self.prediction_loop.start()

    def rename_class(self, class_id: int, name: str) -> ClassLabel:
        label = self.session.rename_class(class_id, name)
        self.status.emit("class_renamed", f"{class_id}: {label.name}")
        return label

    def close(self):
        self._stop_loops()
        self.coordinator.dispose_model()
        if self.mode is not None:
            self.mode.source.close()
