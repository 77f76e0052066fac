"""
Session Dashboard - TinyTeach
Status, event history and remote controls over Flask.

Control routes never touch the session directly: commands are queued with
scheduler.call_soon() and run on the frame thread at the next tick.
"""

import os
from datetime import datetime, timezone

from flask import Flask, jsonify, request
from flask_cors import CORS

from tinyteach.session.modes import MODE_NAMES
from tinyteach.utils.logger import SessionEventLogger, setup_logger

logger = setup_logger(__name__)


def create_app(config: dict, system=None) -> Flask:
    """
    ``system`` is the running TinyTeachSystem (session, scheduler, controller,
    collector, coordinator). Without it only the event routes are served.
    """
    app = Flask(__name__)
    CORS(app)

    if system is not None and getattr(system, "event_logger", None) is not None:
        event_logger = system.event_logger
    else:
        db_path = config["dashboard"]["log_db_path"]
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        event_logger = SessionEventLogger(db_path)

    def _queue(fn, *args):
        system.scheduler.call_soon(fn, *args)
        return jsonify({"status": "queued"}), 202

    def _require_system():
        if system is None:
            return jsonify({"error": "No session attached"}), 503
        return None

    @app.route("/api/health")
    def health():
        return jsonify({
            "status": "running",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": config.get("system", {}).get("version", "unknown"),
        })

    @app.route("/api/events")
    def get_events():
        limit = request.args.get("limit", 100, type=int)
        events = event_logger.get_recent(
            limit,
            event_type=request.args.get("type"),
            after_id=request.args.get("after", 0, type=int),
        )
        return jsonify({"events": events, "count": len(events)})

    @app.route("/api/stats")
    def get_stats():
        return jsonify(event_logger.get_stats())

    @app.route("/api/clear", methods=["POST"])
    def clear_events():
        event_logger.clear()
        return jsonify({"status": "cleared"})

    # ── session ──────────────────────────────────────────────────────────

    @app.route("/api/status")
    def status():
        missing = _require_system()
        if missing:
            return missing
        snapshot = system.session.snapshot()
        run = system.coordinator.current_run
        snapshot["degraded"] = system.controller.degraded
        snapshot["modes"] = MODE_NAMES
        snapshot["training"] = None if run is None else {
            "status": run.status.value,
            "epoch": run.current_epoch,
            "epochs": run.epochs,
            "progress": run.progress_percent,
            "metrics": run.metrics,
            "error": run.error,
        }
        return jsonify(snapshot)

    @app.route("/api/mode", methods=["POST"])
    def select_mode():
        missing = _require_system()
        if missing:
            return missing
        name = (request.get_json(silent=True) or {}).get("mode")
        if name not in MODE_NAMES:
            return jsonify({"error": f"Unknown mode '{name}'", "modes": MODE_NAMES}), 400
        return _queue(system.switch_mode, name)

    @app.route("/api/collect", methods=["POST"])
    def collect():
        missing = _require_system()
        if missing:
            return missing
        body = request.get_json(silent=True) or {}
        label_id = body.get("class_id")
        if label_id is None:
            return _queue(system.collector.stop_collecting)
        if not isinstance(label_id, int) or not system.session.has_class(label_id):
            return jsonify({"error": f"Unknown class {label_id}"}), 404
        return _queue(system.collector.start_collecting, label_id)

    @app.route("/api/train", methods=["POST"])
    def train():
        missing = _require_system()
        if missing:
            return missing
        return _queue(system.start_training, request.get_json(silent=True) or {})

    @app.route("/api/reset", methods=["POST"])
    def reset():
        missing = _require_system()
        if missing:
            return missing
        return _queue(system.controller.reset)

    @app.route("/api/classes", methods=["GET", "POST"])
    def classes():
        missing = _require_system()
        if missing:
            return missing
        if request.method == "GET":
            return jsonify({"classes": system.session.snapshot()["classes"]})
        name = (request.get_json(silent=True) or {}).get("name")
        return _queue(system.controller.add_class, name)

    @app.route("/api/classes/<int:class_id>", methods=["PUT"])
    def rename_class(class_id):
        missing = _require_system()
        if missing:
            return missing
        if not system.session.has_class(class_id):
            return jsonify({"error": f"Unknown class {class_id}"}), 404
        name = (request.get_json(silent=True) or {}).get("name", "")
        return _queue(system.controller.rename_class, class_id, name)

    return app
