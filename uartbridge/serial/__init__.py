"""Serial gateway implementations."""

from .gateway import SerialGateway, StdioSerialGateway, TermiosSerialGateway, create_serial_gateway
from .termios_serial import SerialException, TermiosSerial

__all__ = [
    "SerialException",
    "SerialGateway",
    "StdioSerialGateway",
    "TermiosSerial",
    "TermiosSerialGateway",
    "create_serial_gateway",
]
