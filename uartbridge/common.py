"""Utility helpers shared across the UART bridge packages."""

from __future__ import annotations

import logging
import os
import tomllib
from pathlib import Path
from typing import Any, Final

from .const import CONFIG_ENV_VAR, DEFAULT_CONFIG_PATH

logger = logging.getLogger(__name__)

_TRUE_STRINGS: Final[frozenset[str]] = frozenset({"1", "yes", "on", "true", "enable", "enabled"})
_CONFIG_SECTION: Final[str] = "uartbridge"


def parse_bool(value: object) -> bool:
    """Parse a boolean value safely from various types."""
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if value is None:
        return False
    s = str(value).lower().strip()
    return s in _TRUE_STRINGS


def log_hexdump(logger_instance: logging.Logger, level: int, label: str, data: bytes) -> None:
    """Log binary data in hexadecimal format.

    Format: [HEXDUMP] %s: %s
    """
    if not logger_instance.isEnabledFor(level):
        return

    hex_str = bytes(data).hex(" ").upper()
    logger_instance.log(level, "[HEXDUMP] %s: %s", label, hex_str)


def resolve_config_path(explicit: str | None = None) -> Path | None:
    """Pick the configuration file: explicit path, environment, then system default."""
    if explicit:
        return Path(explicit)
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        return Path(from_env)
    default = Path(DEFAULT_CONFIG_PATH)
    if default.exists():
        return default
    return None


def read_config_file(path: Path | None) -> dict[str, Any]:
    """Read the raw key/value table from a TOML configuration file.

    Keys may live at top level or inside a ``[uartbridge]`` table; the table
    wins when both are present.
    """
    if path is None:
        return {}

    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise RuntimeError(f"Configuration file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise RuntimeError(f"Configuration file {path} is not valid TOML: {exc}") from exc

    raw: dict[str, Any] = {key: value for key, value in document.items() if not isinstance(value, dict)}
    section = document.get(_CONFIG_SECTION)
    if isinstance(section, dict):
        raw.update(section)
    logger.debug("Loaded %d configuration keys from %s", len(raw), path)
    return raw


__all__: Final[tuple[str, ...]] = (
    "log_hexdump",
    "parse_bool",
    "read_config_file",
    "resolve_config_path",
)
