"""
OutputGate - Output Module
Decides whether a prediction is forwarded to the external device.
"""

import math
import time
from typing import Callable, List, Optional

from tinyteach.session.modes import Mode
from tinyteach.session.state import SessionState
from tinyteach.utils.logger import setup_logger
from tinyteach.utils.status import StatusChannel

logger = setup_logger(__name__)

SEND_THRESHOLD = 0.6
SEND_COOLDOWN_MS = 500


def format_message(label: str, confidence: float) -> str:
    """``"<label>:<percent>"``, percent rounded half up."""
    return f"{label}:{int(math.floor(confidence * 100 + 0.5))}"


class OutputGate:
    """
    consider(distribution, best_index, names) sends when:
      - prediction is enabled and the active mode drives output
      - the channel is connected
      - confidence >= threshold
      - the label differs from the last sent one, or the cooldown has elapsed
    """

    def __init__(self, session: SessionState, channel=None, config: Optional[dict] = None,
                 clock: Callable[[], float] = time.monotonic,
                 status: Optional[StatusChannel] = None):
        config = config or {}
        self.session = session
        self.channel = channel
        self.threshold = config.get("threshold", SEND_THRESHOLD)
        self.cooldown_ms = config.get("cooldown_ms", SEND_COOLDOWN_MS)
        self.clock = clock
        self.status = status
        self.mode: Optional[Mode] = None
        self.sent: List[str] = []
        self.suppressed = 0

    def bind(self, mode: Optional[Mode]):
        self.mode = mode

    def consider(self, distribution, best_index: int, names: List[str]) -> bool:
        if not self.session.predict_enabled:
            return False
        if self.mode is None or not self.mode.drives_output:
            return False
        if self.channel is None or not self.channel.is_connected():
            return False
        if best_index < 0 or best_index >= len(distribution):
            return False

        confidence = float(distribution[best_index])
        if confidence < self.threshold:
            return False

        label = names[best_index] if best_index < len(names) else f"Class {best_index + 1}"
        now_ms = self.clock() * 1000.0
        if label == self.session.last_sent_label and now_ms - self.session.last_sent_at < self.cooldown_ms:
            self.suppressed += 1
            return False

        message = format_message(label, confidence)
        self.session.last_sent_label = label
        self.session.last_sent_at = now_ms
        self.channel.send(message)
        self.sent.append(message)
        logger.debug(f"Sent '{message}'")
        if self.status is not None:
            self.status.emit("output_sent", message)
        return True
