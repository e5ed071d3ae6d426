"""Logging setup for the UART bridge daemon.

Every line is one JSON object. Records logged with ``extra={"role": ...,
"endpoint": ..., "peer": ...}`` get those fields at top level so traffic for
one transport can be filtered without parsing the message.
"""

from __future__ import annotations

import enum
import logging
import os
import sys
from datetime import datetime, timezone
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from ..const import LOG_STREAM_ENV_VAR
from .settings import RuntimeConfig

SYSLOG_SOCKET = Path("/dev/log")
SYSLOG_IDENT = "uartbridge "

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Promoted from ``extra`` to the top level of the JSON line.
_TRAFFIC_FIELDS = ("endpoint", "role", "peer")

# Chatty third-party loggers, only let through at DEBUG.
_LIBRARY_LOGGERS = ("websockets", "uartbridge.mqtt.client", "transitions")


def _serialise_value(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Serial payloads are arbitrary binary; never decode them as text.
        return f"[{bytes(value).hex(' ').upper()}]"
    if isinstance(value, tuple):
        # Socket peers: ("127.0.0.1", 51234) -> "127.0.0.1:51234"
        return ":".join(str(part) for part in value[:2])
    return str(value)


class StructuredLogFormatter(logging.Formatter):
    """Emit one JSON object per record, with the ``uartbridge.`` prefix trimmed."""

    PREFIX = "uartbridge."

    def format(self, record: logging.LogRecord) -> str:
        name = record.name.removeprefix(self.PREFIX)
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": name,
            "message": record.getMessage(),
        }

        extras = {
            key: _serialise_value(value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and not key.startswith("_")
        }
        for field in _TRAFFIC_FIELDS:
            if field in extras:
                payload[field] = extras.pop(field)
        if extras:
            payload["extra"] = extras

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _build_handler() -> logging.Handler:
    # stdout can be the serial line (stdio gateway): streams always use stderr.
    if not os.environ.get(LOG_STREAM_ENV_VAR) and SYSLOG_SOCKET.exists():
        handler = SysLogHandler(address=str(SYSLOG_SOCKET), facility=SysLogHandler.LOG_DAEMON)
        handler.ident = SYSLOG_IDENT
        return handler
    return logging.StreamHandler(sys.stderr)


def configure_logging(config: RuntimeConfig) -> None:
    """Install the structured handler on the root logger."""
    level_name = "DEBUG" if config.debug_logging else "INFO"
    library_level = "DEBUG" if config.debug_logging else "WARNING"

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {"()": StructuredLogFormatter},
            },
            "handlers": {
                "uartbridge": {
                    "()": _build_handler,
                    "level": level_name,
                    "formatter": "structured",
                }
            },
            "loggers": {name: {"level": library_level} for name in _LIBRARY_LOGGERS},
            "root": {
                "level": level_name,
                "handlers": ["uartbridge"],
            },
        }
    )

    logging.getLogger("uartbridge").info(
        "Logging configured at level %s (serial on %s)",
        level_name,
        "stdio" if config.use_stdio else config.serial_port,
    )
