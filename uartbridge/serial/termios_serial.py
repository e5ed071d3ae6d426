"""Raw termios serial port used by the serial gateway.

Linux/POSIX only. The port is opened non-blocking and configured 8N1 raw,
so reads return whatever is buffered and writes are driven to completion
with ``select``.
"""

from __future__ import annotations

import errno
import fcntl
import os
import select
import termios
from typing import Any, Final

from ..const import SERIAL_WRITE_POLL_TIMEOUT

_STANDARD_RATES: Final[tuple[int, ...]] = (
    50, 75, 110, 134, 150, 200, 300, 600, 1200, 1800, 2400, 4800, 9600,
    19200, 38400, 57600, 115200, 230400, 460800, 500000, 576000, 921600,
    1000000, 1152000, 1500000, 2000000, 2500000, 3000000, 3500000, 4000000,
)

# Only rates the platform's termios actually defines.
BAUDRATE_MAP: Final[dict[int, int]] = {
    rate: getattr(termios, f"B{rate}") for rate in _STANDARD_RATES if hasattr(termios, f"B{rate}")
}


class SerialException(OSError):
    """Raised on serial port errors."""


class TermiosSerial:
    """Non-blocking raw serial port on a POSIX tty."""

    def __init__(self, port: str, baudrate: int = 115200, *, exclusive: bool = True) -> None:
        self._port = port
        self._baudrate = baudrate
        self._exclusive = exclusive
        self._fd: int | None = None
        self._original_attrs: list[Any] | None = None

    @property
    def port(self) -> str:
        return self._port

    @property
    def baudrate(self) -> int:
        return self._baudrate

    @property
    def is_open(self) -> bool:
        return self._fd is not None

    def open(self) -> None:
        if self._fd is not None:
            return
        if self._baudrate not in BAUDRATE_MAP:
            raise SerialException(f"Unsupported baudrate: {self._baudrate}")

        try:
            fd = os.open(self._port, os.O_RDWR | os.O_NOCTTY | os.O_NONBLOCK)
        except OSError as e:
            raise SerialException(f"Could not open port {self._port}: {e}") from e

        try:
            if self._exclusive:
                try:
                    fcntl.ioctl(fd, termios.TIOCEXCL)
                except (OSError, AttributeError):
                    pass  # TIOCEXCL not available on all platforms
            try:
                self._original_attrs = termios.tcgetattr(fd)
            except termios.error:
                self._original_attrs = None
            self._configure(fd)
        except (OSError, termios.error):
            os.close(fd)
            raise

        self._fd = fd

    def _configure(self, fd: int) -> None:
        speed = BAUDRATE_MAP[self._baudrate]
        try:
            attrs = termios.tcgetattr(fd)
        except termios.error as e:
            raise SerialException(f"Failed to get terminal attributes: {e}") from e

        attrs[0] = 0  # iflag
        attrs[1] = 0  # oflag
        attrs[2] = termios.CS8 | termios.CREAD | termios.CLOCAL  # 8N1
        attrs[3] = 0  # lflag: raw
        attrs[4] = speed
        attrs[5] = speed
        attrs[6][termios.VMIN] = 0
        attrs[6][termios.VTIME] = 0

        try:
            termios.tcsetattr(fd, termios.TCSANOW, attrs)
        except termios.error as e:
            raise SerialException(f"Failed to set terminal attributes: {e}") from e

        try:
            termios.tcflush(fd, termios.TCIOFLUSH)
        except termios.error:
            pass

    def close(self) -> None:
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            if self._original_attrs is not None:
                try:
                    termios.tcsetattr(fd, termios.TCSANOW, self._original_attrs)
                except termios.error:
                    pass
            os.close(fd)
        except OSError:
            pass
        finally:
            self._original_attrs = None

    def read(self, size: int) -> bytes:
        """Return up to *size* buffered bytes without waiting."""
        if self._fd is None:
            raise SerialException("Port not open")
        if size <= 0:
            return b""
        try:
            return os.read(self._fd, size)
        except OSError as e:
            if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                return b""
            raise SerialException(f"Read error: {e}") from e

    def write_all(self, data: bytes) -> None:
        """Write every byte, waiting for the tty to accept more when it is full."""
        if self._fd is None:
            raise SerialException("Port not open")
        view = memoryview(data)
        while view:
            try:
                written = os.write(self._fd, view)
            except OSError as e:
                if e.errno not in (errno.EAGAIN, errno.EWOULDBLOCK):
                    raise SerialException(f"Write error: {e}") from e
                written = 0
            view = view[written:]
            if view:
                select.select([], [self._fd], [], SERIAL_WRITE_POLL_TIMEOUT)

    def flush(self) -> None:
        """Wait until all output has been transmitted."""
        if self._fd is None:
            return
        try:
            termios.tcdrain(self._fd)
        except termios.error:
            pass

    def fileno(self) -> int:
        if self._fd is None:
            raise SerialException("Port not open")
        return self._fd

    def __enter__(self) -> "TermiosSerial":
        self.open()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.close()


__all__ = [
    "BAUDRATE_MAP",
    "SerialException",
    "TermiosSerial",
]
