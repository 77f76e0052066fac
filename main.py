#!/usr/bin/env python3
"""
TinyTeach - Main Entry Point
Teach a small on-device classifier from the camera or microphone, watch it
predict live and forward confident predictions to a serial device.
"""

import argparse
import logging
import os
import pickle
import signal
import sys
import threading
import time

import cv2
import numpy as np
import yaml

from tinyteach.ai.prediction_loop import PredictionLoop
from tinyteach.ai.trainable_model import MLPClassifierModel
from tinyteach.ai.training_coordinator import TrainingCoordinator
from tinyteach.audio.microphone import MicrophoneCapture
from tinyteach.errors import (AlreadyTrainingError, InsufficientDataError, OutputChannelFailure,
                              TinyTeachError, TrainingFailure, TrainingNotSupportedError,
                              UnknownModeError)
from tinyteach.output.output_gate import OutputGate
from tinyteach.output.serial_channel import LoggingOutputChannel, SerialOutputChannel
from tinyteach.session.dataset import Dataset
from tinyteach.session.mode_controller import ModeController
from tinyteach.session.modes import MODE_NAMES
from tinyteach.session.sample_collector import SampleCollector
from tinyteach.session.scheduler import FrameScheduler
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import SessionEventLogger, set_console_level, setup_logger
from tinyteach.utils.status import StatusChannel
from tinyteach.vision.camera_capture import CameraCapture

logger = setup_logger(__name__)

WINDOW_TITLE = "TinyTeach"


def load_config(config_path: str) -> dict:
    with open(config_path, "r") as f:
        return yaml.safe_load(f)


def parse_args():
    parser = argparse.ArgumentParser(
        description="TinyTeach - teachable on-device classifier",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "keys: 1-9 collect for class (toggle), space stop, t train, m next mode,\n"
            "      a add class, r reset, s save dataset, q quit"
        ),
    )
    parser.add_argument("--config", default="config/system_config.yaml",
                        help="Path to system config YAML")
    parser.add_argument("--mode", choices=MODE_NAMES, default=None,
                        help="Start mode (default: system.start_mode)")
    parser.add_argument("--port", default=None,
                        help="Serial port of the output device")
    parser.add_argument("--model", default=None,
                        help="Pickled classifier head from scripts/train_model.py")
    parser.add_argument("--debug", action="store_true",
                        help="Enable debug logging")
    parser.add_argument("--no-dashboard", action="store_true",
                        help="Disable the session dashboard")
    return parser.parse_args()


class TinyTeachSystem:
    """
    Wires the session together and runs the frame loop.

    Per iteration: poll the active input → scheduler.tick() (capture and
    prediction loops, queued dashboard commands) → overlay + keyboard.
    """

    def __init__(self, config: dict, start_mode: str = "image", debug: bool = False,
                 model_path: str = None):
        self.config = config
        self.model_path = model_path
        self.debug = debug
        self.running = False
        self._closed = False
        self.start_mode = start_mode

        logger.info("=" * 60)
        logger.info("  TinyTeach - Initialising")
        logger.info(f"  Version : {config['system']['version']}")
        logger.info("=" * 60)

        self.event_logger = SessionEventLogger(config["dashboard"]["log_db_path"])
        self.status = StatusChannel(self.event_logger)

        class_config = config.get("classes", {})
        self.session = SessionState.with_classes(class_config.get("names"), class_config.get("count", 2))
        self.dataset = Dataset(self.session)
        self.scheduler = FrameScheduler()

        self.camera = CameraCapture(config["camera"])
        self.microphone = MicrophoneCapture(config.get("microphone", {}))
        self._open_inputs = set()

        self.channel = self._open_channel(config.get("output", {}))
        self.output_gate = OutputGate(self.session, self.channel, config.get("output"), status=self.status)

        self.collector = SampleCollector(self.session, self.dataset, self.scheduler)
        self.coordinator = TrainingCoordinator(self.session, self.dataset, config.get("training"),
                                               status=self.status)
        self.prediction_loop = PredictionLoop(self.session, self.scheduler, self.coordinator,
                                              self.output_gate)
        self.controller = ModeController(
            self.session, self.dataset, self.collector, self.coordinator, self.prediction_loop,
            config=config,
            frame_providers={"camera": self.camera, "microphone": self.microphone},
            status=self.status,
            output_gate=self.output_gate,
        )

        self.coordinator.progress_listeners.append(self._on_training_progress)
        self.prediction_loop.landmark_listeners.append(self._on_landmarks)
        self.collector.listeners.append(self._on_sample)
        self.last_landmarks = None
        self.training_thread = None

        self.frame_count = 0
        self.fps_timer = time.time()
        self.current_fps = 0.0

        logger.info("✅ TinyTeach system initialised successfully.")

    def _open_channel(self, output_config: dict):
        if output_config.get("port"):
            channel = SerialOutputChannel(output_config)
            try:
                channel.connect()
                return channel
            except OutputChannelFailure as e:
                self.status.emit("output_unavailable", str(e), logging.WARNING)
        channel = LoggingOutputChannel()
        channel.connect()
        logger.info("Output device not configured, predictions are logged only.")
        return channel

    # ── commands (frame thread) ──────────────────────────────────────────

    def switch_mode(self, name: str):
        try:
            mode = self.controller.switch_mode(name)
        except UnknownModeError as e:
            self.status.emit("unknown_mode", str(e), logging.WARNING)
            return None
        self._ensure_input(mode.input_kind)
        return mode

    def _ensure_input(self, kind: str):
        if kind in self._open_inputs:
            return
        try:
            if kind == "microphone":
                self.microphone.open()
            else:
                self.camera.open()
            self._open_inputs.add(kind)
        except Exception as e:
            self.status.emit("input_unavailable", f"{kind}: {e}", logging.ERROR)

    def toggle_collecting(self, class_index: int):
        if class_index >= len(self.session.classes):
            return
        label_id = self.session.classes[class_index].id
        if self.session.gather_target == label_id:
            self.collector.stop_collecting()
        else:
            self.collector.start_collecting(label_id)

    def start_training(self, hyperparameters=None) -> bool:
        """Run train() on a worker thread; prediction starts back on the frame thread."""
        if self.training_thread is not None and self.training_thread.is_alive():
            self.status.emit("training_rejected", "A training run is already in progress", logging.WARNING)
            return False
        self.collector.stop_collecting()
        self.training_thread = threading.Thread(
            target=self._train_worker, args=(hyperparameters,), daemon=True
        )
        self.training_thread.start()
        return True

    def _train_worker(self, hyperparameters):
        try:
            self.coordinator.train(hyperparameters)
        except (AlreadyTrainingError, InsufficientDataError, TrainingNotSupportedError) as e:
            self.status.emit("training_rejected", str(e), logging.WARNING)
            return
        except TrainingFailure as e:
            logger.error(f"Training failed: {e}")
            return
        self.scheduler.call_soon(self.prediction_loop.start)

    def load_model(self, path: str) -> bool:
        """Install a pickled head for the current mode; failures leave the session untrained."""
        try:
            model, classes = MLPClassifierModel.load(path)
            self.controller.install_model(model, classes)
        except (OSError, pickle.UnpicklingError, KeyError, ValueError, TinyTeachError) as e:
            self.status.emit("model_load_failure", f"{path}: {e}", logging.WARNING)
            return False
        logger.info(f"✅ Predicting with {path}: {', '.join(classes)}")
        return True

    def save_dataset(self):
        path = self.config.get("system", {}).get("dataset_path", "data/dataset.npz")
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        self.dataset.save(path)
        self.status.emit("dataset_saved", path)

    # ── listeners ────────────────────────────────────────────────────────

    def _on_training_progress(self, epoch: int, total: int, metrics: dict):
        run = self.coordinator.current_run
        if run is not None:
            logger.info(f"[{epoch}/{total}] {run.describe()}")

    def _on_landmarks(self, landmarks):
        self.last_landmarks = landmarks

    def _on_sample(self, label_id: int, count: int):
        if self.debug:
            logger.debug(f"Sample for class {label_id}: {count}")

    # ── frame loop ───────────────────────────────────────────────────────

    def run(self):
        self.running = True
        logger.info("🚀 Starting frame loop...")
        self.switch_mode(self.start_mode)
        if self.model_path:
            self.load_model(self.model_path)

        try:
            while self.running:
                mode = self.controller.mode
                if mode is not None and mode.input_kind == "microphone":
                    self.microphone.poll()
                frame = self.camera.poll()

                self.scheduler.tick()
                self.frame_count += 1
                self._update_fps()
                self._show_frame(frame)
                if frame is None and "camera" not in self._open_inputs:
                    time.sleep(0.03)
        except KeyboardInterrupt:
            logger.info("👋 Shutdown requested by user.")
        finally:
            self.shutdown()

    def _update_fps(self):
        elapsed = time.time() - self.fps_timer
        if elapsed >= 1.0:
            self.current_fps = self.frame_count / elapsed
            self.frame_count = 0
            self.fps_timer = time.time()

    def _status_line(self) -> str:
        s = self.session
        if s.training_in_progress and self.coordinator.current_run is not None:
            return self.coordinator.current_run.describe()
        if s.gather_target is not None:
            return f"Collecting: {s.get_class(s.gather_target).name}"
        if s.predict_enabled:
            return self.prediction_loop.describe() or "No detection"
        if self.controller.degraded:
            return "Model unavailable"
        return f"Mode: {s.mode}"

    def _show_frame(self, frame):
        """Render the session overlay and handle keys when a display is available."""
        canvas = (cv2.cvtColor(frame, cv2.COLOR_RGB2BGR) if frame is not None
                  else np.zeros((480, 640, 3), dtype=np.uint8))
        h, w = canvas.shape[:2]

        color = (0, 160, 0) if self.session.predict_enabled else (90, 90, 90)
        cv2.rectangle(canvas, (0, 0), (w, 40), color, -1)
        cv2.putText(canvas, self._status_line(), (10, 28),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.7, (255, 255, 255), 2)
        cv2.putText(canvas, f"FPS: {self.current_fps:.1f}", (w - 120, 28),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 2)

        for i, label in enumerate(self.session.classes):
            marker = ">" if label.id == self.session.gather_target else " "
            text = f"{marker}{i + 1}. {label.name}: {label.example_count}"
            if i < len(self.session.last_prediction) and self.session.predict_enabled:
                text += f"  ({self.session.last_prediction[i] * 100:.0f}%)"
            cv2.putText(canvas, text, (10, 70 + 24 * i),
                        cv2.FONT_HERSHEY_SIMPLEX, 0.55, (255, 255, 255), 1)

        if self.last_landmarks is not None and frame is not None:
            for x, y in np.asarray(self.last_landmarks)[:, :2]:
                cv2.circle(canvas, (int(x * w), int(y * h)), 3, (0, 255, 100), -1)

        try:
            cv2.imshow(WINDOW_TITLE, canvas)
            key = cv2.waitKey(1) & 0xFF
        except cv2.error:
            return   # headless
        self._handle_key(key)

    def _handle_key(self, key: int):
        if key == 255:
            return
        char = chr(key)
        if char == "q":
            self.running = False
        elif char in "123456789":
            self.toggle_collecting(int(char) - 1)
        elif char == " ":
            self.collector.stop_collecting()
        elif char == "t":
            self.start_training()
        elif char == "m":
            self.switch_mode(self.controller.next_mode_name())
        elif char == "a":
            self.controller.add_class()
        elif char == "r":
            self.controller.reset()
        elif char == "s":
            self.save_dataset()

    def shutdown(self):
        if self._closed:
            return
        self._closed = True
        logger.info("Shutting down TinyTeach...")
        self.running = False
        self.controller.close()
        self.camera.release()
        self.microphone.release()
        self._open_inputs.clear()
        self.channel.close()
        try:
            cv2.destroyAllWindows()
        except cv2.error:
            pass
        logger.info("✅ Shutdown complete.")


def start_dashboard(config: dict, system: TinyTeachSystem):
    """Launch the Flask dashboard in a background thread."""
    from tinyteach.dashboard.app import create_app
    app = create_app(config, system)
    app.run(
        host=config["dashboard"]["host"],
        port=config["dashboard"]["port"],
        debug=False,
        use_reloader=False,
    )


def main():
    args = parse_args()
    config = load_config(args.config)

    if args.debug:
        config["system"]["debug"] = True
        set_console_level(logging.DEBUG)
    if args.port:
        config.setdefault("output", {})["port"] = args.port

    os.makedirs("logs", exist_ok=True)

    start_mode = args.mode or config["system"].get("start_mode", "image")
    model_path = args.model or config["system"].get("model_path")
    system = TinyTeachSystem(config=config, start_mode=start_mode, debug=args.debug,
                             model_path=model_path)

    if config["dashboard"]["enabled"] and not args.no_dashboard:
        dash_thread = threading.Thread(target=start_dashboard, args=(config, system), daemon=True)
        dash_thread.start()
        logger.info(f"📊 Dashboard: http://localhost:{config['dashboard']['port']}")

    def handle_signal(sig, frame):
        system.running = False

    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)

    system.run()
    sys.exit(0)


if __name__ == "__main__":
    main()
