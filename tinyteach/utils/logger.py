"""
Logger - Utilities Module
Structured logging + SQLite-backed session event persistence.
"""

import logging
import logging.handlers
import os
import sqlite3
from datetime import datetime, timezone
from typing import Dict, List, Optional
import colorlog

LOG_DIR = os.environ.get("TINYTEACH_LOG_DIR", "logs")


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a colourised logger for a module."""
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(level)

    # Console handler with colour
    console = colorlog.StreamHandler()
    console.setLevel(level)
    console.setFormatter(colorlog.ColoredFormatter(
        "%(log_color)s%(asctime)s [%(levelname)-8s]%(reset)s %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        log_colors={
            "DEBUG":    "cyan",
            "INFO":     "green",
            "WARNING":  "yellow",
            "ERROR":    "red",
            "CRITICAL": "red,bg_white",
        }
    ))
    logger.addHandler(console)

    # File handler (rotating)
    os.makedirs(LOG_DIR, exist_ok=True)
    file_handler = logging.handlers.RotatingFileHandler(
        os.path.join(LOG_DIR, "tinyteach.log"),
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
    ))
    logger.addHandler(file_handler)

    return logger


def set_console_level(level: int):
    """Raise or lower verbosity of every tinyteach logger (e.g. --debug)."""
    for name, obj in logging.Logger.manager.loggerDict.items():
        if not isinstance(obj, logging.Logger):
            continue
        if not (name.startswith("tinyteach") or name == "__main__"):
            continue
        obj.setLevel(level)
        for handler in obj.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(
                handler, logging.handlers.RotatingFileHandler
            ):
                handler.setLevel(level)


class SessionEventLogger:
    """
    SQLite-backed store of session status events for the dashboard.

    Each row carries the event type, its detail text, the severity it was
    emitted at and a UTC timestamp. Ids increase monotonically, so a client
    can tail the store with ``after_id``.
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        self._create_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_schema(self):
        with self._connect() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS session_events (
                    id         INTEGER PRIMARY KEY AUTOINCREMENT,
                    event_type TEXT NOT NULL,
                    detail     TEXT,
                    level      TEXT NOT NULL DEFAULT 'INFO',
                    timestamp  TEXT NOT NULL
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_event_type ON session_events(event_type)")

    def log(self, event_type: str, detail: str = "", level: int = logging.INFO):
        try:
            with self._connect() as conn:
                conn.execute(
                    "INSERT INTO session_events (event_type, detail, level, timestamp) VALUES (?, ?, ?, ?)",
                    (event_type, detail, logging.getLevelName(level),
                     datetime.now(timezone.utc).isoformat()),
                )
        except sqlite3.Error as e:
            logging.getLogger(__name__).error(f"Could not store event {event_type}: {e}")

    def get_recent(self, limit: int = 100, event_type: Optional[str] = None,
                   after_id: int = 0) -> List[Dict]:
        """Newest first, optionally only one event type and only ids above ``after_id``."""
        query = "SELECT * FROM session_events WHERE id > ?"
        params: list = [after_id]
        if event_type:
            query += " AND event_type = ?"
            params.append(event_type)
        query += " ORDER BY id DESC LIMIT ?"
        params.append(max(limit, 0))
        try:
            with self._connect() as conn:
                return [dict(row) for row in conn.execute(query, params).fetchall()]
        except sqlite3.Error:
            return []

    def get_stats(self) -> Dict:
        """Event counts by type, plus ``total`` and ``warnings`` (WARNING and above)."""
        try:
            with self._connect() as conn:
                stats = {
                    row["event_type"]: row["cnt"]
                    for row in conn.execute(
                        "SELECT event_type, COUNT(*) AS cnt FROM session_events GROUP BY event_type"
                    )
                }
                warnings = conn.execute(
                    "SELECT COUNT(*) FROM session_events WHERE level IN ('WARNING', 'ERROR', 'CRITICAL')"
                ).fetchone()[0]
        except sqlite3.Error:
            return {"total": 0, "warnings": 0}
        stats["total"] = sum(stats.values())
        stats["warnings"] = warnings
        return stats

    def clear(self):
        with self._connect() as conn:
            conn.execute("DELETE FROM session_events")
