"""
StatusChannel - Utilities Module
Fans session status events out to the log, the SQLite event store and
live UI subscribers.
"""

import logging
from typing import Callable, List, Optional

from tinyteach.utils.logger import SessionEventLogger, setup_logger

logger = setup_logger(__name__)

StatusListener = Callable[[str, str], None]


class StatusChannel:
    """
    Non-fatal status reporting used in place of the status-text line of a UI.

    Event types are short snake_case strings (``mode_selected``,
    ``model_load_failure``, ``training_completed`` ...).
    """

    def __init__(self, event_logger: Optional[SessionEventLogger] = None):
        self.event_logger = event_logger
        self._listeners: List[StatusListener] = []
        self.last_event: Optional[str] = None
        self.last_detail: str = ""

    def subscribe(self, listener: StatusListener):
        self._listeners.append(listener)

    def emit(self, event_type: str, detail: str = "", level: int = logging.INFO):
        self.last_event = event_type
        self.last_detail = detail
        logger.log(level, f"[{event_type}] {detail}" if detail else f"[{event_type}]")

        if self.event_logger is not None:
            self.event_logger.log(event_type, detail, level)

        for listener in list(self._listeners):
            try:
                listener(event_type, detail)
            except Exception as e:
                logger.error(f"Status listener failed: {e}")
