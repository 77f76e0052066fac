"""
Tests - Modes, Feature Sources & Status
"""

import logging

import pytest
import numpy as np

from fakes import FakeModel, FakeSource
from tinyteach.errors import ModelLoadFailure, UnknownModeError


class TestFeatureSource:

    def setup_method(self):
        self.source = FakeSource(dim=4)
        self.frame = np.zeros((8, 8, 3), dtype=np.uint8)

    def test_not_ready_before_init(self):
        assert self.source.detect(self.frame, 0.0) is None
        assert self.source.detect_calls == 0

    def test_extract_after_init(self):
        self.source.init()
        vector = self.source.extract(self.frame, 0.0)
        assert vector.shape == (4,)

    def test_miss_and_errors_become_none(self):
        self.source.init()
        self.source.miss = True
        assert self.source.extract(self.frame, 0.0) is None
        self.source.miss = False
        self.source.raise_error = True
        assert self.source.detect(self.frame, 0.1) is None
        assert not self.source.busy

    def test_busy_source_skips_frame(self):
        self.source.init()
        self.source._busy.acquire()
        try:
            assert self.source.busy
            assert self.source.detect(self.frame, 0.0) is None
            assert self.source.detect_calls == 0
        finally:
            self.source._busy.release()
        assert self.source.detect(self.frame, 0.1) is not None

    def test_init_failure_and_retry(self):
        self.source.fail_load = True
        with pytest.raises(ModelLoadFailure):
            self.source.init()
        assert not self.source.ready
        assert "model asset missing" in self.source.last_error

        self.source.fail_load = False
        assert self.source.init()
        assert self.source.ready
        assert self.source.last_error is None

    def test_no_frame(self):
        self.source.init()
        assert self.source.detect(None, 0.0) is None


class TestModes:

    def test_unknown_mode(self):
        from tinyteach.session.modes import build_mode
        with pytest.raises(UnknownModeError):
            build_mode("smell", {})
        with pytest.raises(ValueError):
            build_mode("", {})

    def test_mode_order(self):
        from tinyteach.session.modes import MODE_NAMES
        assert MODE_NAMES == ["image", "hand", "pose", "audio", "gesture"]

    def test_defaults(self):
        from tinyteach.session.modes import AudioMode, HandMode, ImageMode, PoseMode
        assert ImageMode(FakeSource()).drives_output
        assert not HandMode(FakeSource()).drives_output
        assert HandMode(FakeSource()).sample_interval_ms == 100
        assert PoseMode(FakeSource()).sample_interval_ms == 150
        assert AudioMode(FakeSource()).input_kind == "microphone"
        assert AudioMode(FakeSource()).sample_interval_ms > 0
        assert HandMode(FakeSource()).model_options() == {"hidden_units": 64}

    def test_config_overrides(self):
        from tinyteach.session.modes import HandMode
        mode = HandMode(FakeSource(), {"sample_interval_ms": 0, "hidden_units": 32, "drives_output": True})
        assert mode.sample_interval_ms == 0
        assert mode.drives_output
        assert mode.model_options() == {"hidden_units": 32}

    def test_trainable_predict(self):
        from tinyteach.session.modes import HandMode
        source = FakeSource()
        source.init()
        mode = HandMode(source)
        detection = mode.observe(np.zeros((2, 2)), 0.0)
        model = FakeModel(4, 2, output=[0.3, 0.7])
        np.testing.assert_allclose(mode.predict(detection, model), [0.3, 0.7])
        assert mode.predict(detection, None) is None
        assert mode.predict(None, model) is None
        assert mode.labels is None

    def test_gesture_mode(self):
        from tinyteach.session.modes import GestureMode
        source = FakeSource(scores=[0.2, 0.8], labels=["None", "Victory"])
        source.init()
        mode = GestureMode(source)
        assert mode.inference_only
        assert mode.labels == ["None", "Victory"]
        assert mode.capture(np.zeros((2, 2)), 0.0) is None
        detection = mode.observe(np.zeros((2, 2)), 0.0)
        np.testing.assert_allclose(mode.predict(detection, None), [0.2, 0.8])


class TestStatusChannel:

    def test_emit_reaches_listeners_and_store(self, tmp_path):
        from tinyteach.utils.logger import SessionEventLogger
        from tinyteach.utils.status import StatusChannel

        store = SessionEventLogger(str(tmp_path / "events.db"))
        channel = StatusChannel(store)
        seen = []
        channel.subscribe(lambda event, detail: seen.append((event, detail)))

        channel.emit("model_load_failure", "hand_landmarker missing", logging.WARNING)

        assert seen == [("model_load_failure", "hand_landmarker missing")]
        assert channel.last_event == "model_load_failure"
        assert store.get_recent(1)[0]["detail"] == "hand_landmarker missing"

    def test_failing_listener_is_isolated(self):
        from tinyteach.utils.status import StatusChannel
        channel = StatusChannel()
        seen = []

        def broken(event, detail):
            raise RuntimeError("ui gone")
        channel.subscribe(broken)
        channel.subscribe(lambda event, detail: seen.append(event))
        channel.emit("session_reset")
        assert seen == ["session_reset"]
