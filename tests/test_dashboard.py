"""
Tests - Dashboard
Event routes and queued session controls via the Flask test client.
"""

import pytest

from fakes import Harness


class DashboardSystem:
    """The parts of TinyTeachSystem the dashboard talks to, on fakes."""

    def __init__(self, harness: Harness, event_logger):
        self.harness = harness
        self.session = harness.session
        self.scheduler = harness.scheduler
        self.controller = harness.controller
        self.collector = harness.collector
        self.coordinator = harness.coordinator
        self.event_logger = event_logger
        self.training_requests = []

    def switch_mode(self, name):
        return self.controller.switch_mode(name)

    def start_training(self, hyperparameters=None):
        self.training_requests.append(hyperparameters)
        self.coordinator.train(hyperparameters)
        return True


@pytest.fixture
def config(tmp_path):
    return {
        "system": {"version": "1.0.0"},
        "dashboard": {"log_db_path": str(tmp_path / "events.db")},
    }


class TestEventRoutes:

    def test_health(self, config):
        from tinyteach.dashboard.app import create_app
        client = create_app(config).test_client()
        data = client.get("/api/health").get_json()
        assert data["status"] == "running"
        assert data["version"] == "1.0.0"

    def test_events_stats_and_clear(self, config):
        from tinyteach.dashboard.app import create_app
        from tinyteach.utils.logger import SessionEventLogger

        SessionEventLogger(config["dashboard"]["log_db_path"]).log("mode_selected", "hand")
        client = create_app(config).test_client()

        events = client.get("/api/events?limit=10").get_json()
        assert events["count"] == 1
        assert events["events"][0]["event_type"] == "mode_selected"
        assert client.get("/api/stats").get_json() == {"mode_selected": 1, "total": 1, "warnings": 0}

        assert client.post("/api/clear").get_json() == {"status": "cleared"}
        assert client.get("/api/events").get_json()["count"] == 0

    def test_event_filters_and_warning_count(self, config):
        import logging
        from tinyteach.dashboard.app import create_app
        from tinyteach.utils.logger import SessionEventLogger

        store = SessionEventLogger(config["dashboard"]["log_db_path"])
        store.log("mode_selected", "hand")
        store.log("model_load_failure", "hand_landmarker missing", logging.WARNING)
        store.log("mode_selected", "pose")
        client = create_app(config).test_client()

        selected = client.get("/api/events?type=mode_selected").get_json()["events"]
        assert [e["detail"] for e in selected] == ["pose", "hand"]

        first_id = selected[-1]["id"]
        newer = client.get(f"/api/events?after={first_id}").get_json()["events"]
        assert [e["event_type"] for e in newer] == ["mode_selected", "model_load_failure"]
        assert newer[1]["level"] == "WARNING"

        assert client.get("/api/stats").get_json()["warnings"] == 1

    def test_controls_need_a_session(self, config):
        from tinyteach.dashboard.app import create_app
        client = create_app(config).test_client()
        assert client.get("/api/status").status_code == 503
        assert client.post("/api/train").status_code == 503


class TestSessionControls:

    @pytest.fixture(autouse=True)
    def _client(self, config):
        from tinyteach.dashboard.app import create_app
        from tinyteach.utils.logger import SessionEventLogger

        self.harness = Harness()
        event_logger = SessionEventLogger(config["dashboard"]["log_db_path"])
        self.harness.status.event_logger = event_logger
        self.system = DashboardSystem(self.harness, event_logger)
        self.harness.controller.switch_mode("hand")
        self.client = create_app(config, self.system).test_client()

    def test_status(self):
        data = self.client.get("/api/status").get_json()
        assert data["mode"] == "hand"
        assert [c["name"] for c in data["classes"]] == ["Class 1", "Class 2"]
        assert data["training"] is None
        assert data["degraded"] is False
        assert "gesture" in data["modes"]

    def test_mode_switch_is_queued(self):
        response = self.client.post("/api/mode", json={"mode": "pose"})
        assert response.status_code == 202
        assert self.harness.session.mode == "hand"
        self.harness.tick()
        assert self.harness.session.mode == "pose"

    def test_unknown_mode(self):
        response = self.client.post("/api/mode", json={"mode": "smell"})
        assert response.status_code == 400
        assert self.harness.scheduler.pending == 0

    def test_collect_and_stop(self):
        assert self.client.post("/api/collect", json={"class_id": 1}).status_code == 202
        self.harness.tick(3)
        assert self.harness.session.get_class(1).example_count == 3
        self.client.post("/api/collect", json={})
        self.harness.tick(2)
        assert self.harness.session.gather_target is None
        assert self.harness.session.get_class(1).example_count == 3

    def test_collect_unknown_class(self):
        assert self.client.post("/api/collect", json={"class_id": 9}).status_code == 404

    def test_train_then_status(self):
        self.client.post("/api/collect", json={"class_id": 0})
        self.harness.tick(3)
        self.client.post("/api/collect", json={})
        self.client.post("/api/train", json={"epochs": 2})
        self.harness.tick()

        assert self.system.training_requests == [{"epochs": 2}]
        training = self.client.get("/api/status").get_json()["training"]
        assert training["status"] == "completed"
        assert training["epochs"] == 2
        assert training["progress"] == 100

        stats = self.client.get("/api/stats").get_json()
        assert stats["training_completed"] == 1

    def test_reset(self):
        self.client.post("/api/collect", json={"class_id": 0})
        self.harness.tick(3)
        self.client.post("/api/reset")
        self.harness.tick()
        assert len(self.harness.dataset) == 0

    def test_add_and_rename_class(self):
        self.client.post("/api/classes", json={"name": "Wave"})
        self.harness.tick()
        assert self.client.put("/api/classes/0", json={"name": "Fist"}).status_code == 202
        self.harness.tick()
        names = [c["name"] for c in self.client.get("/api/classes").get_json()["classes"]]
        assert names == ["Fist", "Class 2", "Wave"]

    def test_rename_unknown_class(self):
        assert self.client.put("/api/classes/9", json={"name": "x"}).status_code == 404
