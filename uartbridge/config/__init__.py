"""Configuration helpers for the UART bridge daemon."""

from .settings import RuntimeConfig, get_default_config, load_runtime_config
from . import logging, schema, settings  # noqa: F401

__all__ = [
    "RuntimeConfig",
    "get_default_config",
    "load_runtime_config",
]
