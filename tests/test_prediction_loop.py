"""
Tests - Prediction Loop
"""

import pytest
import numpy as np

from fakes import FakeModelFactory, Harness


def _trained_harness(output=(0.2, 0.8), mode="hand"):
    harness = Harness(model_factory=FakeModelFactory(output=list(output)))
    harness.controller.switch_mode(mode)
    harness.collector.start_collecting(0)
    harness.tick(3)
    harness.collector.stop_collecting()
    harness.coordinator.train()
    harness.loop.start()
    return harness


class TestBestIndex:

    def test_first_index_wins_ties(self):
        from tinyteach.ai.prediction_loop import best_index
        assert best_index(np.array([0.4, 0.4, 0.2])) == 0
        assert best_index(np.array([0.1, 0.45, 0.45])) == 1

    def test_empty(self):
        from tinyteach.ai.prediction_loop import best_index
        assert best_index(np.array([])) == -1
        assert best_index(None) == -1


class TestPredictionLoop:

    def test_not_started_before_training(self):
        harness = Harness()
        harness.controller.switch_mode("hand")
        assert not harness.loop.start()
        harness.tick(2)
        assert harness.session.last_prediction == []

    def test_publishes_distribution(self):
        harness = _trained_harness()
        published = []
        harness.loop.prediction_listeners.append(
            lambda d, best, names: published.append(([float(x) for x in d], best, names))
        )
        harness.tick()
        assert len(published) == 1
        distribution, best, names = published[0]
        assert distribution == pytest.approx([0.2, 0.8])
        assert best == 1
        assert names == ["Class 1", "Class 2"]
        assert harness.session.last_prediction == pytest.approx([0.2, 0.8])
        assert harness.session.preview_ready

    def test_keeps_running_each_frame(self):
        harness = _trained_harness()
        published = []
        harness.loop.prediction_listeners.append(lambda d, best, names: published.append(best))
        harness.tick(4)
        assert published == [1, 1, 1, 1]
        assert harness.loop.running

    def test_no_frame_skips_without_preview(self):
        harness = _trained_harness()
        harness.provider.frame = None
        harness.session.preview_ready = False
        harness.tick(2)
        assert not harness.session.preview_ready
        assert harness.loop.running

    def test_detection_miss_publishes_empty(self):
        harness = _trained_harness()
        harness.controller.mode.source.miss = True
        published = []
        harness.loop.prediction_listeners.append(lambda d, best, names: published.append((len(d), best)))
        harness.tick()
        assert published == [(0, -1)]
        assert harness.session.last_prediction == [0.0, 0.0]

    def test_prediction_error_skips_frame(self):
        harness = _trained_harness()

        def broken(vector):
            raise ValueError("shape mismatch")
        harness.coordinator.model.predict = broken
        harness.tick(3)
        assert harness.loop.frame_errors == 3
        assert harness.loop.running

    def test_stops_when_prediction_disabled(self):
        harness = _trained_harness()
        harness.tick()
        harness.session.predict_enabled = False
        harness.tick()
        assert not harness.loop.running

    def test_stops_on_mode_switch(self):
        harness = _trained_harness()
        harness.tick()
        harness.controller.switch_mode("pose")
        harness.tick(2)
        assert not harness.loop.running
        assert harness.session.last_prediction == []

    def test_landmarks_published_for_overlay(self):
        harness = _trained_harness()
        seen = []
        harness.loop.landmark_listeners.append(seen.append)
        harness.tick()
        assert seen[0].shape == (21, 3)

    def test_inference_only_uses_recognizer_scores(self):
        harness = Harness()
        harness.controller.switch_mode("gesture")
        published = []
        harness.loop.prediction_listeners.append(lambda d, best, names: published.append((best, names)))
        harness.tick()
        assert harness.session.predict_enabled
        assert published == [(1, ["None", "Open_Palm", "Victory"])]
        assert harness.model_factory.models == []
        assert harness.session.last_prediction == pytest.approx([0.1, 0.7, 0.2])

    def test_prediction_feeds_output_gate(self):
        harness = _trained_harness(output=(0.1, 0.9), mode="image")
        harness.tick()
        assert harness.channel.messages == ["Class 2:90"]

    def test_last_prediction_padded_after_add_class(self):
        harness = _trained_harness()
        harness.tick()
        harness.session.add_class()
        harness.tick()
        assert harness.session.last_prediction == pytest.approx([0.2, 0.8, 0.0])

    def test_describe_last_prediction(self):
        harness = _trained_harness()
        assert harness.loop.describe() is None
        harness.tick()
        assert harness.loop.describe() == "Class 2 80%"

    def test_describe_after_detection_miss(self):
        harness = _trained_harness()
        harness.tick()
        harness.controller.mode.source.miss = True
        harness.tick()
        assert harness.loop.last_best_index == -1
        assert harness.loop.describe() is None

    def test_mode_switch_clears_last_publication(self):
        harness = _trained_harness()
        harness.tick()
        harness.controller.switch_mode("pose")
        assert harness.loop.last_best_index == -1
        assert harness.loop.describe() is None

    def test_gesture_labels_in_description(self):
        harness = Harness()
        harness.controller.switch_mode("gesture")
        harness.tick()
        assert harness.loop.describe() == "Open_Palm 70%"
