"""Shared constants and defaults for the UART bridge daemon."""

from __future__ import annotations

from typing import Final

# Endpoints
DEFAULT_TCP_URL: Final[str] = "tcp://0.0.0.0:4001"
DEFAULT_WEBSOCKET_URL: Final[str] = "ws://0.0.0.0:4002"
DEFAULT_MQTT_URL: Final[str] = "mqtt://broker.hivemq.com:1883"
DEFAULT_TCP_ENABLED: Final[bool] = True
DEFAULT_WEBSOCKET_ENABLED: Final[bool] = True
DEFAULT_MQTT_ENABLED: Final[bool] = True

# MQTT
DEFAULT_MQTT_RX_TOPIC: Final[str] = "b/rx"
DEFAULT_MQTT_TX_TOPIC: Final[str] = "b/tx"
DEFAULT_MQTT_PORT: Final[int] = 1883
DEFAULT_MQTTS_PORT: Final[int] = 8883
DEFAULT_MQTT_KEEPALIVE: Final[int] = 60
MQTT_TOPIC_SEPARATOR: Final[str] = ","
MQTT_QOS: Final[int] = 1
MQTT_WILL_QOS: Final[int] = 1

# Serial
DEFAULT_SERIAL_PORT: Final[str] = ""
DEFAULT_SERIAL_TX_PIN: Final[int] = 5
DEFAULT_SERIAL_RX_PIN: Final[int] = 4
DEFAULT_SERIAL_BAUD: Final[int] = 115200
DEFAULT_SERIAL_READ_SIZE: Final[int] = 512
SERIAL_WRITE_POLL_TIMEOUT: Final[float] = 0.1

# Supervisor
DEFAULT_TICK_INTERVAL: Final[float] = 0.02
DEFAULT_RECONNECT_DELAY: Final[float] = 0.0
SUPERVISOR_DEFAULT_MIN_BACKOFF: Final[float] = 0.5
SUPERVISOR_DEFAULT_MAX_BACKOFF: Final[float] = 30.0
SUPERVISOR_DEFAULT_RESTART_INTERVAL: Final[float] = 60.0
SUPERVISOR_MIN_RESTART_WINDOW: Final[float] = 10.0

# HTTP control surface
DEFAULT_HTTP_ENABLED: Final[bool] = True
DEFAULT_HTTP_URL: Final[str] = "http://0.0.0.0:8000"
DEFAULT_WEB_ROOT: Final[str] = "web_root"
DEFAULT_METRICS_ENABLED: Final[bool] = True
HTTP_MAX_HEADER_LINES: Final[int] = 100

# Logging / config
DEFAULT_DEBUG_LOGGING: Final[bool] = False
DEFAULT_CONFIG_PATH: Final[str] = "/etc/uartbridge.toml"
CONFIG_ENV_VAR: Final[str] = "UARTBRIDGE_CONFIG"
LOG_STREAM_ENV_VAR: Final[str] = "UARTBRIDGE_LOG_STREAM"
