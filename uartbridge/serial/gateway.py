"""Serial gateway: the bridge's only view of the UART.

Contract shared by every implementation:

* ``init(tx_pin, rx_pin, baud)`` is called exactly once, before any
  transport activity.
* ``read(max_bytes)`` never blocks; an empty result means "no data",
  including when the device reports an error.
* ``write(data)`` blocks until the bytes are handed to the device and
  flushed. Failures are logged, never raised.
"""

from __future__ import annotations

import abc
import fcntl
import logging
import os
import sys
from typing import BinaryIO

from ..common import log_hexdump
from ..config.settings import RuntimeConfig
from .termios_serial import SerialException, TermiosSerial

logger = logging.getLogger("uartbridge.serial")


class SerialGateway(abc.ABC):
    """Base class enforcing the one-shot initialisation contract."""

    def __init__(self) -> None:
        self._initialised = False

    @property
    def initialised(self) -> bool:
        return self._initialised

    def init(self, tx_pin: int, rx_pin: int, baud: int) -> None:
        if self._initialised:
            raise RuntimeError("serial gateway already initialised")
        self._open(tx_pin, rx_pin, baud)
        self._initialised = True
        logger.info("Serial gateway ready (%s, tx=%d rx=%d baud=%d)", self.describe(), tx_pin, rx_pin, baud)

    def read(self, max_bytes: int) -> bytes:
        if not self._initialised:
            return b""
        try:
            data = self._read(max_bytes)
        except OSError as exc:
            logger.warning("Serial read failed: %s", exc)
            return b""
        if data and logger.isEnabledFor(logging.DEBUG):
            log_hexdump(logger, logging.DEBUG, "UART >", data)
        return data

    def write(self, data: bytes) -> None:
        if not data:
            return
        if not self._initialised:
            logger.warning("Serial gateway not initialised; dropping %d bytes", len(data))
            return
        if logger.isEnabledFor(logging.DEBUG):
            log_hexdump(logger, logging.DEBUG, "UART <", data)
        try:
            self._write(bytes(data))
        except OSError as exc:
            logger.warning("Serial write failed: %s", exc)

    def close(self) -> None:
        if self._initialised:
            self._close()
            self._initialised = False

    def describe(self) -> str:
        return type(self).__name__

    @abc.abstractmethod
    def _open(self, tx_pin: int, rx_pin: int, baud: int) -> None: ...

    @abc.abstractmethod
    def _read(self, max_bytes: int) -> bytes: ...

    @abc.abstractmethod
    def _write(self, data: bytes) -> None: ...

    def _close(self) -> None:
        return None


class TermiosSerialGateway(SerialGateway):
    """UART on a POSIX tty device.

    Pin numbers only matter on boards with a pin mux; on a tty they are
    reported but otherwise unused.
    """

    def __init__(self, port: str) -> None:
        super().__init__()
        self._port = port
        self._serial: TermiosSerial | None = None

    def describe(self) -> str:
        return self._port

    def _open(self, tx_pin: int, rx_pin: int, baud: int) -> None:
        serial = TermiosSerial(self._port, baudrate=baud)
        serial.open()
        self._serial = serial

    def _read(self, max_bytes: int) -> bytes:
        if self._serial is None:
            return b""
        return self._serial.read(max_bytes)

    def _write(self, data: bytes) -> None:
        if self._serial is None:
            raise SerialException("Port not open")
        self._serial.write_all(data)
        self._serial.flush()

    def _close(self) -> None:
        if self._serial is not None:
            self._serial.close()
            self._serial = None


class StdioSerialGateway(SerialGateway):
    """Use stdin/stdout as the UART.

    Handy on a development host: pipe a device or a generator into the
    bridge and watch what the network sends back on stdout.
    """

    def __init__(self, stdin_fd: int | None = None, stdout: BinaryIO | None = None) -> None:
        super().__init__()
        self._stdin_fd = stdin_fd
        self._stdout = stdout

    def describe(self) -> str:
        return "stdio"

    def _open(self, tx_pin: int, rx_pin: int, baud: int) -> None:
        if self._stdin_fd is None:
            self._stdin_fd = sys.stdin.fileno()
        if self._stdout is None:
            self._stdout = sys.stdout.buffer
        flags = fcntl.fcntl(self._stdin_fd, fcntl.F_GETFL)
        fcntl.fcntl(self._stdin_fd, fcntl.F_SETFL, flags | os.O_NONBLOCK)

    def _read(self, max_bytes: int) -> bytes:
        assert self._stdin_fd is not None
        try:
            return os.read(self._stdin_fd, max_bytes)
        except BlockingIOError:
            return b""

    def _write(self, data: bytes) -> None:
        assert self._stdout is not None
        self._stdout.write(data)
        self._stdout.flush()


def create_serial_gateway(config: RuntimeConfig) -> SerialGateway:
    if config.use_stdio:
        return StdioSerialGateway()
    return TermiosSerialGateway(config.serial_port)


__all__ = [
    "SerialGateway",
    "StdioSerialGateway",
    "TermiosSerialGateway",
    "create_serial_gateway",
]
