"""Settings loader for the UART bridge daemon.

Configuration is read from a TOML file (``--config``, ``$UARTBRIDGE_CONFIG``
or ``/etc/uartbridge.toml``) and merged over the defaults below. Values are
validated by :class:`~uartbridge.config.schema.RuntimeConfigSchema`, which
builds the :class:`RuntimeConfig` consumed by every component.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field, fields
from typing import Any

from ..common import read_config_file, resolve_config_path
from ..const import (
    DEFAULT_DEBUG_LOGGING,
    DEFAULT_HTTP_ENABLED,
    DEFAULT_HTTP_URL,
    DEFAULT_METRICS_ENABLED,
    DEFAULT_MQTT_ENABLED,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_URL,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_SERIAL_BAUD,
    DEFAULT_SERIAL_PORT,
    DEFAULT_SERIAL_READ_SIZE,
    DEFAULT_SERIAL_RX_PIN,
    DEFAULT_SERIAL_TX_PIN,
    DEFAULT_TCP_ENABLED,
    DEFAULT_TCP_URL,
    DEFAULT_TICK_INTERVAL,
    DEFAULT_WEB_ROOT,
    DEFAULT_WEBSOCKET_ENABLED,
    DEFAULT_WEBSOCKET_URL,
)
from ..protocol import EndpointAddress, MqttEndpoint, parse_address, parse_mqtt_endpoint

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RuntimeConfig:
    """Strongly typed configuration for the daemon."""

    tcp_url: str = DEFAULT_TCP_URL
    tcp_enabled: bool = DEFAULT_TCP_ENABLED
    ws_url: str = DEFAULT_WEBSOCKET_URL
    ws_enabled: bool = DEFAULT_WEBSOCKET_ENABLED
    mqtt_url: str = DEFAULT_MQTT_URL
    mqtt_enabled: bool = DEFAULT_MQTT_ENABLED
    mqtt_user: str | None = None
    mqtt_pass: str | None = field(default=None, repr=False)
    mqtt_client_id: str | None = None
    mqtt_keepalive: int = DEFAULT_MQTT_KEEPALIVE

    serial_port: str = DEFAULT_SERIAL_PORT
    serial_tx_pin: int = DEFAULT_SERIAL_TX_PIN
    serial_rx_pin: int = DEFAULT_SERIAL_RX_PIN
    serial_baud: int = DEFAULT_SERIAL_BAUD
    serial_read_size: int = DEFAULT_SERIAL_READ_SIZE

    tick_interval: float = DEFAULT_TICK_INTERVAL
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY

    http_enabled: bool = DEFAULT_HTTP_ENABLED
    http_url: str = DEFAULT_HTTP_URL
    web_root: str = DEFAULT_WEB_ROOT
    metrics_enabled: bool = DEFAULT_METRICS_ENABLED
    debug_logging: bool = DEFAULT_DEBUG_LOGGING

    tcp_address: EndpointAddress = field(init=False)
    ws_address: EndpointAddress = field(init=False)
    http_address: EndpointAddress = field(init=False)
    mqtt_endpoint: MqttEndpoint = field(init=False)

    @property
    def use_stdio(self) -> bool:
        return not self.serial_port

    def __post_init__(self) -> None:
        self.tcp_address = parse_address(self.tcp_url)
        self.ws_address = parse_address(self.ws_url)
        self.http_address = parse_address(self.http_url)
        self.mqtt_endpoint = parse_mqtt_endpoint(self.mqtt_url)

        if self.tick_interval <= 0.0:
            raise ValueError("tick_interval must be a positive number")
        self.serial_read_size = self._require_positive("serial_read_size", self.serial_read_size)
        self.serial_baud = self._require_positive("serial_baud", self.serial_baud)
        self.mqtt_keepalive = self._require_positive("mqtt_keepalive", self.mqtt_keepalive)
        self.reconnect_delay = max(0.0, float(self.reconnect_delay))

        if self.mqtt_enabled:
            if not self.mqtt_endpoint.rx_topic:
                logger.warning("MQTT RX topic derived from %r is empty; subscribe will fail", self.mqtt_url)
            if not self.mqtt_user:
                logger.info("MQTT connecting without authentication (anonymous)")

    @staticmethod
    def _require_positive(name: str, value: int) -> int:
        if value <= 0:
            raise ValueError(f"{name} must be a positive integer")
        return value


def get_default_config() -> dict[str, Any]:
    """Provide default configuration values derived from ``RuntimeConfig``."""
    defaults: dict[str, Any] = {}
    for fi in fields(RuntimeConfig):
        if not fi.init:
            continue
        defaults[fi.name] = fi.default
    return defaults


def load_runtime_config(
    path: str | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> RuntimeConfig:
    """Load configuration from file/defaults and validate it."""
    from .schema import RuntimeConfigSchema

    raw: dict[str, Any] = get_default_config()
    raw.update(read_config_file(resolve_config_path(path)))
    if overrides:
        raw.update(overrides)
    return RuntimeConfigSchema().load(raw)
