"""
Output channels - Output Module
Line-oriented links to the paired microcontroller.
"""

import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import serial
import serial.tools.list_ports

from tinyteach.errors import OutputChannelFailure
from tinyteach.utils.logger import setup_logger

logger = setup_logger(__name__)

ConnectionListener = Callable[[bool], None]


def detect_port() -> Optional[str]:
    """First USB serial device that looks like a microcontroller, if any."""
    ports = list(serial.tools.list_ports.comports())
    for p in ports:
        if any(tag in p.device for tag in ("usbmodem", "usbserial", "ACM", "USB")):
            return p.device
    return ports[0].device if ports else None


class OutputChannel(ABC):
    """is_connected() / send(message) with connection-change listeners."""

    def __init__(self):
        self.connection_listeners: List[ConnectionListener] = []
        self._connected = False

    def add_connection_listener(self, listener: ConnectionListener):
        self.connection_listeners.append(listener)

    def is_connected(self) -> bool:
        return self._connected

    def _set_connected(self, connected: bool):
        if connected == self._connected:
            return
        self._connected = connected
        for listener in list(self.connection_listeners):
            try:
                listener(connected)
            except Exception as e:
                logger.error(f"Connection listener failed: {e}")

    def connect(self) -> bool:
        self._set_connected(True)
        return True

    @abstractmethod
    def send(self, message: str):
        """Deliver one message. Failures are logged, never raised."""

    def close(self):
        self._set_connected(False)


class LoggingOutputChannel(OutputChannel):
    """Headless channel used when no serial port is configured."""

    def __init__(self):
        super().__init__()
        self.messages: List[str] = []

    def send(self, message: str):
        self.messages.append(message)
        logger.info(f"→ {message}")


class SerialOutputChannel(OutputChannel):
    """
    Serial link to the microcontroller.

    A failed write closes the port and notifies listeners, but the link stays
    enabled: the next send() reopens the port and tries again. Only close()
    disables the link.
    """

    def __init__(self, config: dict):
        super().__init__()
        self.port = config.get("port") or None
        self.baud = config.get("baud", 9600)
        self.timeout = config.get("timeout", 0.5)
        self.ser: Optional[serial.Serial] = None
        self.enabled = False
        self.failures = 0
        self._lock = threading.Lock()

    def is_connected(self) -> bool:
        return self.enabled

    @property
    def port_open(self) -> bool:
        return self.ser is not None

    def connect(self) -> bool:
        """Open the port. Raises OutputChannelFailure when it cannot be opened."""
        with self._lock:
            self._open_port()
            self.enabled = True
        return True

    def _open_port(self):
        port = self.port or detect_port()
        if port is None:
            raise OutputChannelFailure("No serial port found")
        try:
            self.ser = serial.Serial(port, self.baud, timeout=self.timeout)
        except (serial.SerialException, OSError) as e:
            self.ser = None
            raise OutputChannelFailure(f"Could not open serial port {port}: {e}") from e
        self.port = port
        logger.info(f"✅ Serial output on {port} @ {self.baud} baud")
        self._set_connected(True)

    def send(self, message: str):
        with self._lock:
            if not self.enabled:
                return
            if self.ser is None:
                try:
                    self._open_port()
                except OutputChannelFailure as e:
                    self.failures += 1
                    logger.warning(f"Serial reopen failed, dropping '{message}': {e}")
                    return
            try:
                self.ser.write((message + "\n").encode("utf-8"))
            except (serial.SerialException, OSError) as e:
                self.failures += 1
                logger.error(f"Serial send failed, port closed until the next send: {e}")
                self._close_port()

    def _close_port(self):
        ser, self.ser = self.ser, None
        if ser is not None:
            try:
                ser.close()
            except (serial.SerialException, OSError) as e:
                logger.debug(f"Serial close failed: {e}")
        self._set_connected(False)

    def close(self):
        with self._lock:
            self.enabled = False
            self._close_port()
