"""Marshmallow schema for RuntimeConfig validation."""

from __future__ import annotations

import logging
from typing import Any, Dict

from marshmallow import EXCLUDE, Schema, ValidationError, fields, post_load, pre_load, validate

from ..common import parse_bool
from ..const import (
    DEFAULT_HTTP_URL,
    DEFAULT_MQTT_KEEPALIVE,
    DEFAULT_MQTT_URL,
    DEFAULT_SERIAL_BAUD,
    DEFAULT_SERIAL_READ_SIZE,
    DEFAULT_SERIAL_RX_PIN,
    DEFAULT_SERIAL_TX_PIN,
    DEFAULT_TCP_URL,
    DEFAULT_TICK_INTERVAL,
    DEFAULT_WEB_ROOT,
    DEFAULT_WEBSOCKET_URL,
)
from .settings import RuntimeConfig

logger = logging.getLogger(__name__)

_BOOL_FIELDS = (
    "tcp_enabled",
    "ws_enabled",
    "mqtt_enabled",
    "http_enabled",
    "metrics_enabled",
    "debug_logging",
)


class RuntimeConfigSchema(Schema):
    """Declarative validation schema for UART bridge configuration."""

    class Meta:
        unknown = EXCLUDE

    # Endpoints
    tcp_url = fields.Str(load_default=DEFAULT_TCP_URL, validate=validate.Length(min=1))
    tcp_enabled = fields.Bool(load_default=True)
    ws_url = fields.Str(load_default=DEFAULT_WEBSOCKET_URL, validate=validate.Length(min=1))
    ws_enabled = fields.Bool(load_default=True)
    mqtt_url = fields.Str(load_default=DEFAULT_MQTT_URL, validate=validate.Length(min=1))
    mqtt_enabled = fields.Bool(load_default=True)
    mqtt_user = fields.Str(load_default=None, allow_none=True)
    mqtt_pass = fields.Str(load_default=None, allow_none=True)
    mqtt_client_id = fields.Str(load_default=None, allow_none=True)
    mqtt_keepalive = fields.Int(load_default=DEFAULT_MQTT_KEEPALIVE, validate=validate.Range(min=1))

    # Serial
    serial_port = fields.Str(load_default="")
    serial_tx_pin = fields.Int(load_default=DEFAULT_SERIAL_TX_PIN)
    serial_rx_pin = fields.Int(load_default=DEFAULT_SERIAL_RX_PIN)
    serial_baud = fields.Int(load_default=DEFAULT_SERIAL_BAUD, validate=validate.Range(min=50))
    serial_read_size = fields.Int(load_default=DEFAULT_SERIAL_READ_SIZE, validate=validate.Range(min=1))

    # Supervisor
    tick_interval = fields.Float(load_default=DEFAULT_TICK_INTERVAL, validate=validate.Range(min=0.001))
    reconnect_delay = fields.Float(load_default=0.0, validate=validate.Range(min=0.0))

    # Control surface
    http_enabled = fields.Bool(load_default=True)
    http_url = fields.Str(load_default=DEFAULT_HTTP_URL, validate=validate.Length(min=1))
    web_root = fields.Str(load_default=DEFAULT_WEB_ROOT)
    metrics_enabled = fields.Bool(load_default=True)
    debug_logging = fields.Bool(load_default=False)

    @pre_load
    def normalise_raw(self, data: Dict[str, Any], **kwargs: Any) -> Dict[str, Any]:
        cleaned = dict(data)
        # "debug" is accepted as a shorthand for debug_logging.
        if "debug" in cleaned:
            debug = cleaned.pop("debug")
            if parse_bool(debug):
                cleaned["debug_logging"] = True
        unknown = sorted(key for key in cleaned if key not in self.fields)
        if unknown:
            logger.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
        for key in _BOOL_FIELDS:
            if key in cleaned and cleaned[key] is not None:
                cleaned[key] = parse_bool(cleaned[key])
        for key in ("mqtt_user", "mqtt_pass", "mqtt_client_id"):
            value = cleaned.get(key)
            if isinstance(value, str) and not value.strip():
                cleaned[key] = None
        return cleaned

    @post_load
    def make_config(self, data: Dict[str, Any], **kwargs: Any) -> RuntimeConfig:
        try:
            return RuntimeConfig(**data)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
