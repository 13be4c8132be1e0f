# Printer Transport - owns the one physical connection to the receipt printer
# The device is opened through an injected factory: selector -> handle with write()/close()

import logging
import socket
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

import serial
import serial.tools.list_ports

from .errors import PrinterConnectionError, WriteError

logger = logging.getLogger(__name__)

# Device constants, not user-configurable
SERIAL_BAUDRATE = 9600
SERIAL_BYTESIZE = serial.EIGHTBITS
SERIAL_PARITY = serial.PARITY_NONE
SERIAL_STOPBITS = serial.STOPBITS_ONE

NETWORK_PORT = 9100
TCP_PREFIX = 'tcp://'

DEFAULT_OPEN_TIMEOUT = 5.0
DEFAULT_WRITE_TIMEOUT = 5.0


class ConnectionState(str, Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    CONNECTED = 'connected'
    ERROR = 'error'


class NetworkDevice:
    """Raw TCP printer port (JetDirect style, port 9100)"""

    def __init__(self, host: str, port: int = NETWORK_PORT, timeout: float = DEFAULT_WRITE_TIMEOUT):
        self.host = host
        self.port = port
        self.sock = socket.create_connection((host, port), timeout=timeout)

    def write(self, data: bytes) -> int:
        self.sock.sendall(data)
        return len(data)

    def close(self):
        self.sock.close()


def open_serial(port: str, write_timeout: float = DEFAULT_WRITE_TIMEOUT) -> serial.Serial:
    return serial.Serial(
        port,
        baudrate=SERIAL_BAUDRATE,
        bytesize=SERIAL_BYTESIZE,
        parity=SERIAL_PARITY,
        stopbits=SERIAL_STOPBITS,
        timeout=1,
        write_timeout=write_timeout,
    )


def open_device(selector: str, write_timeout: float = DEFAULT_WRITE_TIMEOUT):
    """'tcp://host[:port]' opens a network printer, anything else is a serial port name"""
    if selector.startswith(TCP_PREFIX):
        address = selector[len(TCP_PREFIX):]
        host, sep, port = address.rpartition(':')
        if not sep:
            host, port = address, str(NETWORK_PORT)
        return NetworkDevice(host, int(port), timeout=write_timeout)
    return open_serial(selector, write_timeout)


def list_serial_ports() -> List[Dict[str, str]]:
    """Candidate devices for the operator's 'choose this printer' action"""
    return [
        {'device': p.device, 'description': p.description, 'hwid': p.hwid}
        for p in serial.tools.list_ports.comports()
    ]


class PrinterTransport:
    """
    Connection lifecycle: disconnected -> connecting -> connected | error.
    Only one open may be in flight. close() is idempotent from any state.
    """

    def __init__(self, device_factory: Callable[[str], Any] = None,
                 open_timeout: float = DEFAULT_OPEN_TIMEOUT):
        self.device_factory = device_factory or open_device
        self.open_timeout = open_timeout
        self.selector: Optional[str] = None
        self.last_error: Optional[str] = None
        self._state = ConnectionState.DISCONNECTED
        self._handle = None
        # Bumped by close() and by timeouts; an open finishing under an old generation is stale
        self._generation = 0
        self._lock = threading.Lock()
        self._write_lock = threading.Lock()

    @property
    def state(self) -> ConnectionState:
        return self._state

    def open(self, selector: str) -> ConnectionState:
        """Open the device; raises PrinterConnectionError on failure or timeout"""
        with self._lock:
            if self._state == ConnectionState.CONNECTING:
                raise PrinterConnectionError("A connection attempt is already in progress")
            stale = self._handle
            self._handle = None
            self._generation += 1
            generation = self._generation
            self._state = ConnectionState.CONNECTING
            self.selector = selector
        if stale is not None:
            self._close_quietly(stale)

        logger.info("Opening printer device %s", selector)
        outcome: Dict[str, Any] = {}
        done = threading.Event()

        def worker():
            try:
                handle = self.device_factory(selector)
            except Exception as e:
                outcome['error'] = e
                self._finish_open(generation, None, e)
            else:
                self._finish_open(generation, handle, None)
            finally:
                done.set()

        threading.Thread(target=worker, name='printer-open', daemon=True).start()

        if not done.wait(self.open_timeout):
            with self._lock:
                if generation == self._generation:
                    self._generation += 1
                    self._state = ConnectionState.ERROR
                    self.last_error = f"Timed out opening {selector} after {self.open_timeout}s"
            logger.error("Printer open timed out: %s", selector)
            raise PrinterConnectionError(f"Timed out opening {selector}")

        if 'error' in outcome:
            raise PrinterConnectionError(f"Cannot open {selector}: {outcome['error']}")
        with self._lock:
            if generation != self._generation or self._state != ConnectionState.CONNECTED:
                raise PrinterConnectionError(f"Connection to {selector} was closed while opening")
        logger.info("Printer device %s connected", selector)
        return ConnectionState.CONNECTED

    def _finish_open(self, generation: int, handle, error: Optional[Exception]):
        """Resolve an open attempt; a handle arriving after close/timeout is closed again"""
        with self._lock:
            current = generation == self._generation
            if current:
                if error is not None:
                    self._state = ConnectionState.ERROR
                    self.last_error = str(error)
                else:
                    self._state = ConnectionState.CONNECTED
                    self._handle = handle
                    self.last_error = None
        if error is not None:
            logger.error("Printer open failed: %s", error)
        elif not current:
            logger.warning("Discarding printer handle from an abandoned open")
            self._close_quietly(handle)

    def write(self, data: bytes) -> int:
        """Send raw bytes; no framing and no acknowledgement from the device"""
        with self._lock:
            handle = self._handle
            if self._state != ConnectionState.CONNECTED or handle is None:
                raise WriteError("Printer is not connected")
        with self._write_lock:
            try:
                written = handle.write(data)
                if hasattr(handle, 'flush'):
                    handle.flush()
            except (serial.SerialException, OSError, ValueError) as e:
                logger.error("Printer write failed: %s", e)
                raise WriteError(f"Write failed: {e}") from e
        if written is not None and written < len(data):
            raise WriteError(f"Partial write: {written} of {len(data)} bytes")
        return len(data)

    def fail(self, reason: str):
        """Drop the handle and park in the error state"""
        with self._lock:
            handle = self._handle
            self._handle = None
            self._generation += 1
            self._state = ConnectionState.ERROR
            self.last_error = reason
        if handle is not None:
            self._close_quietly(handle)

    def close(self):
        with self._lock:
            handle = self._handle
            self._handle = None
            self._generation += 1
            self._state = ConnectionState.DISCONNECTED
        if handle is not None:
            self._close_quietly(handle)
            logger.info("Printer device closed")

    @staticmethod
    def _close_quietly(handle):
        try:
            handle.close()
        except (serial.SerialException, OSError) as e:
            logger.warning("Error closing printer device: %s", e)
