"""
Tests - Mode Controller
Mode switching order, model ownership, reset and class management.
"""

import pytest

from fakes import FakeModeFactory, FakeModel, FakeModelFactory, Harness
from tinyteach.errors import TrainingNotSupportedError, UnknownModeError


def _collect_and_train(harness, frames=3):
    harness.collector.start_collecting(0)
    harness.tick(frames)
    harness.collector.start_collecting(1)
    harness.tick(frames)
    harness.collector.stop_collecting()
    harness.coordinator.train()


class TestModeSwitch:

    def setup_method(self):
        self.harness = Harness()
        self.controller = self.harness.controller
        self.session = self.harness.session

    def test_initial_switch(self):
        mode = self.controller.switch_mode("hand")
        assert mode.name == "hand"
        assert self.session.mode == "hand"
        assert mode.source.ready
        assert "mode_selected" in self.harness.event_types()

    def test_same_mode_only_reemits(self):
        self.controller.switch_mode("hand")
        self.harness.collector.start_collecting(0)
        self.harness.tick(2)
        events_before = len(self.harness.events)

        mode = self.controller.switch_mode("hand")

        assert mode is self.controller.mode
        assert len(self.harness.mode_factory.sources) == 1
        assert self.session.get_class(0).example_count == 2
        assert self.harness.collector.running
        assert self.harness.events[events_before:] == [("mode_selected", "hand")]

    def test_switch_disposes_model_once_and_resets_counts(self):
        self.controller.switch_mode("hand")
        _collect_and_train(self.harness)
        model = self.harness.coordinator.model
        assert [c.example_count for c in self.session.classes] == [3, 3]

        self.controller.switch_mode("pose")

        assert model.dispose_count == 1
        assert self.harness.coordinator.model is None
        assert [c.example_count for c in self.session.classes] == [0, 0]
        assert len(self.harness.dataset) == 0

        self.controller.switch_mode("hand")
        assert model.dispose_count == 1

    def test_switch_resets_flags(self):
        self.harness = Harness(model_factory=FakeModelFactory(output=[0.9, 0.1]))
        self.session = self.harness.session
        self.harness.controller.switch_mode("image")
        _collect_and_train(self.harness)
        self.harness.loop.start()
        self.harness.tick()
        assert self.session.predict_enabled
        assert self.session.last_sent_label == "Class 1"

        self.harness.controller.switch_mode("hand")

        assert not self.session.predict_enabled
        assert not self.session.training_completed
        assert not self.session.preview_ready
        assert self.session.gather_target is None
        assert self.session.last_prediction == []
        assert self.session.last_sent_label is None

    def test_switch_stops_loops(self):
        self.controller.switch_mode("hand")
        self.harness.collector.start_collecting(0)
        self.harness.tick()
        self.controller.switch_mode("pose")
        self.harness.tick(3)
        assert not self.harness.collector.running
        assert self.harness.scheduler.pending == 0
        assert self.session.get_class(0).example_count == 0

    def test_previous_source_closed(self):
        self.controller.switch_mode("hand")
        self.controller.switch_mode("pose")
        first, second = self.harness.mode_factory.sources
        assert first.close_calls == 1
        assert second.close_calls == 0

    def test_inference_only_starts_predicting(self):
        self.controller.switch_mode("gesture")
        assert self.session.predict_enabled
        assert self.harness.loop.running

    def test_leaving_inference_only_mode(self):
        self.controller.switch_mode("gesture")
        self.controller.switch_mode("hand")
        assert not self.session.predict_enabled
        assert not self.harness.loop.running

    def test_unknown_mode_leaves_session_untouched(self):
        self.controller.switch_mode("hand")
        self.harness.collector.start_collecting(0)
        self.harness.tick(2)
        with pytest.raises(UnknownModeError):
            self.controller.switch_mode("smell")
        assert self.session.mode == "hand"
        assert self.session.get_class(0).example_count == 2

    def test_next_mode_name_cycles(self):
        from tinyteach.session.modes import MODE_NAMES
        assert self.controller.next_mode_name() == MODE_NAMES[0]
        self.session.mode = MODE_NAMES[-1]
        assert self.controller.next_mode_name() == MODE_NAMES[0]
        self.session.mode = MODE_NAMES[0]
        assert self.controller.next_mode_name() == MODE_NAMES[1]


class TestDegradedMode:

    def setup_method(self):
        self.harness = Harness(mode_factory=FakeModeFactory(fail_load={"hand", "gesture"}))
        self.controller = self.harness.controller

    def test_load_failure_is_non_fatal(self):
        mode = self.controller.switch_mode("hand")
        assert self.harness.session.mode == "hand"
        assert self.controller.degraded
        assert "model_load_failure" in self.harness.event_types()

        self.controller.collector.start_collecting(0)
        self.harness.tick(3)
        assert self.harness.session.get_class(0).example_count == 0
        assert mode.source.load_calls == 1

    def test_retry_initialization(self):
        mode = self.controller.switch_mode("gesture")
        assert not self.harness.session.predict_enabled

        mode.source.fail_load = False
        assert self.controller.retry_initialization()
        assert not self.controller.degraded
        assert self.harness.session.predict_enabled
        assert self.harness.loop.running


class TestSessionLifecycle:

    def setup_method(self):
        self.harness = Harness()
        self.controller = self.harness.controller
        self.session = self.harness.session
        self.controller.switch_mode("hand")

    def test_reset(self):
        _collect_and_train(self.harness)
        model = self.harness.coordinator.model
        self.harness.loop.start()
        self.harness.tick()

        self.controller.reset()

        assert model.dispose_count == 1
        assert len(self.harness.dataset) == 0
        assert [c.example_count for c in self.session.classes] == [0, 0]
        assert not self.session.training_completed
        assert not self.session.predict_enabled
        assert self.session.last_prediction == []
        assert self.controller.mode.source.reset_calls == 1
        assert self.session.mode == "hand"
        assert self.harness.collector.start_collecting(0)

    def test_add_class_drops_trained_state(self):
        _collect_and_train(self.harness)
        model = self.harness.coordinator.model

        label = self.controller.add_class("Wave")

        assert label.name == "Wave"
        assert self.session.class_names == ["Class 1", "Class 2", "Wave"]
        assert model.dispose_count == 1
        assert not self.session.training_completed
        assert not self.session.predict_enabled
        assert len(self.harness.dataset) == 6
        assert self.harness.collector.start_collecting(label.id)

    def test_retrain_after_add_class(self):
        _collect_and_train(self.harness)
        label = self.controller.add_class()
        self.harness.collector.start_collecting(label.id)
        self.harness.tick(2)
        self.harness.collector.stop_collecting()
        self.harness.coordinator.train()
        newest = self.harness.model_factory.models[-1]
        assert newest.num_classes == 3
        assert newest.fit_labels.shape == (8, 3)

    def test_rename_class(self):
        self.controller.rename_class(0, "Fist")
        assert self.session.class_names[0] == "Fist"
        assert ("class_renamed", "0: Fist") in self.harness.events

    def test_training_events(self):
        _collect_and_train(self.harness)
        types = self.harness.event_types()
        assert types.index("training_started") < types.index("training_completed")

    def test_close(self):
        self.controller.close()
        assert self.controller.mode.source.close_calls == 1
        assert self.harness.scheduler.pending == 0


class TestTrainingCompletion:
    """Mode switches and resets racing the end of a training run."""

    def setup_method(self):
        self.harness = Harness()
        self.controller = self.harness.controller
        self.session = self.harness.session
        self.controller.switch_mode("hand")
        self.harness.collector.start_collecting(0)
        self.harness.tick(3)
        self.harness.collector.stop_collecting()

    def test_generation_advances_under_training_lock(self):
        coordinator = self.harness.coordinator
        held = []
        bump = self.session.next_generation

        def checked_bump():
            held.append(coordinator._lock.locked())
            return bump()
        self.session.next_generation = checked_bump

        self.controller.switch_mode("pose")
        self.controller.reset()
        assert held == [True, True]

    def test_switch_at_end_of_fit_discards_result(self):
        self.harness.model_factory.model_kwargs["during_epoch"] = (
            lambda epoch: self.controller.switch_mode("pose") if epoch == 2 else None
        )
        self.harness.coordinator.train()

        model = self.harness.model_factory.models[0]
        assert self.session.mode == "pose"
        assert model.dispose_count == 1
        assert self.harness.coordinator.model is None
        assert not self.session.training_completed
        assert not self.session.predict_enabled
        assert not self.session.training_in_progress
        assert "training_discarded" in self.harness.event_types()
        assert self.harness.collector.start_collecting(0)

    def test_switch_right_after_completion(self):
        def on_status(event, detail):
            if event == "training_completed":
                self.controller.switch_mode("pose")
        self.harness.status.subscribe(on_status)

        self.harness.coordinator.train()
        self.harness.loop.start()

        model = self.harness.model_factory.models[0]
        assert self.session.mode == "pose"
        assert model.dispose_count == 1
        assert not self.session.training_completed
        assert not self.session.predict_enabled
        assert not self.harness.loop.running
        assert self.harness.collector.start_collecting(0)

    def test_add_class_during_fit_discards_result(self):
        self.harness.model_factory.model_kwargs["during_epoch"] = (
            lambda epoch: self.controller.add_class("Wave") if epoch == 0 else None
        )
        self.harness.coordinator.train()

        assert self.harness.coordinator.model is None
        assert self.harness.model_factory.models[0].dispose_count == 1
        assert not self.session.training_completed
        assert self.session.class_names == ["Class 1", "Class 2", "Wave"]
        assert len(self.harness.dataset) == 3


class TestInstallModel:

    def setup_method(self):
        self.harness = Harness()
        self.controller = self.harness.controller
        self.session = self.harness.session

    def test_install_replaces_classes_and_predicts(self):
        self.controller.switch_mode("hand")
        self.harness.collector.start_collecting(0)
        self.harness.tick(2)
        model = FakeModel(4, 3, output=[0.1, 0.7, 0.2])

        self.controller.install_model(model, ["Rock", "Paper", "Scissors"])
        self.harness.tick()

        assert self.session.class_names == ["Rock", "Paper", "Scissors"]
        assert len(self.harness.dataset) == 0
        assert self.session.training_completed
        assert self.harness.loop.running
        assert self.harness.loop.describe() == "Paper 70%"
        assert not self.harness.collector.start_collecting(0)
        assert "model_installed" in self.harness.event_types()

    def test_mismatched_class_names(self):
        self.controller.switch_mode("hand")
        with pytest.raises(ValueError):
            self.controller.install_model(FakeModel(4, 3), ["Rock", "Paper"])
        assert self.session.class_names == ["Class 1", "Class 2"]
        assert not self.session.training_completed

    def test_inference_only_mode_rejects(self):
        self.controller.switch_mode("gesture")
        with pytest.raises(TrainingNotSupportedError):
            self.controller.install_model(FakeModel(4, 2), ["Rock", "Paper"])

    def test_offline_head_round_trip(self, tmp_path):
        import numpy as np
        from tinyteach.ai.trainable_model import Hyperparameters, MLPClassifierModel

        head = MLPClassifierModel(4, 2, random_state=0)
        x = np.vstack([np.full((5, 4), -3.0), np.full((5, 4), 3.0)]).astype(np.float32)
        head.fit(x, np.eye(2)[[0] * 5 + [1] * 5], Hyperparameters(epochs=2, batch_size=5))
        path = str(tmp_path / "hand.pkl")
        head.save(path, ["Fist", "Palm"])

        self.controller.switch_mode("hand")
        loaded, classes = MLPClassifierModel.load(path)
        self.controller.install_model(loaded, classes)
        self.harness.tick()

        assert self.session.class_names == ["Fist", "Palm"]
        assert self.harness.loop.last_best_index in (0, 1)
        assert sum(self.session.last_prediction) == pytest.approx(1.0, abs=1e-5)
