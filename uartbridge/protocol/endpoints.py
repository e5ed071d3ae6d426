"""Endpoint URL parsing and MQTT topic derivation.

This module is the single place where endpoint URLs are taken apart. Every
transport receives an already parsed descriptor; nothing downstream slices
URL strings.
"""

from __future__ import annotations

from typing import Final
from urllib.parse import parse_qs, urlsplit

import msgspec

from ..const import (
    DEFAULT_MQTT_PORT,
    DEFAULT_MQTT_RX_TOPIC,
    DEFAULT_MQTT_TX_TOPIC,
    DEFAULT_MQTTS_PORT,
    MQTT_TOPIC_SEPARATOR,
)

_DEFAULT_PORTS: Final[dict[str, int]] = {
    "mqtt": DEFAULT_MQTT_PORT,
    "mqtts": DEFAULT_MQTTS_PORT,
    "http": 80,
    "ws": 80,
    "wss": 443,
}
_TLS_SCHEMES: Final[frozenset[str]] = frozenset({"mqtts", "wss", "https"})


class EndpointAddress(msgspec.Struct, frozen=True):
    """Parsed ``scheme://host:port`` part of an endpoint URL."""

    scheme: str
    host: str
    port: int

    @property
    def tls(self) -> bool:
        return self.scheme in _TLS_SCHEMES


class MqttEndpoint(msgspec.Struct, frozen=True):
    """Broker address plus the topics the bridge subscribes and publishes to."""

    address: EndpointAddress
    rx_topic: str
    tx_topic: str


def derive_rx_topic(url: str) -> str:
    """Return everything after the last comma, or ``b/rx`` when there is none."""
    last = url.rfind(MQTT_TOPIC_SEPARATOR)
    if last < 0:
        return DEFAULT_MQTT_RX_TOPIC
    return url[last + 1 :]


def derive_tx_topic(url: str) -> str:
    """Return the span from the first comma to the last comma, both included.

    The slice keeps the separators: ``host,x/tx,x/rx`` yields ``,x/tx,``,
    a single comma yields ``,`` and extra commas end up inside the topic.
    """
    first = url.find(MQTT_TOPIC_SEPARATOR)
    last = url.rfind(MQTT_TOPIC_SEPARATOR)
    if first < 0 or last < 0:
        return DEFAULT_MQTT_TX_TOPIC
    return url[first : last + 1]


def parse_address(url: str, *, default_host: str = "0.0.0.0") -> EndpointAddress:
    """Parse ``scheme://host:port`` into an :class:`EndpointAddress`.

    Anything after the first comma is ignored so MQTT URLs with topic
    overrides can be passed unchanged.
    """
    base = url.split(MQTT_TOPIC_SEPARATOR, 1)[0].strip()
    if not base:
        raise ValueError("endpoint URL must not be empty")
    if "://" not in base:
        raise ValueError(f"endpoint URL {url!r} has no scheme")

    parts = urlsplit(base)
    scheme = parts.scheme.lower()
    try:
        port = parts.port
    except ValueError as exc:
        raise ValueError(f"endpoint URL {url!r} has an invalid port") from exc
    if port is None:
        port = _DEFAULT_PORTS.get(scheme)
    if port is None:
        raise ValueError(f"endpoint URL {url!r} has no port")
    host = parts.hostname or default_host
    return EndpointAddress(scheme=scheme, host=host, port=port)


def parse_mqtt_endpoint(url: str) -> MqttEndpoint:
    """Build the MQTT descriptor once, at configuration load time.

    Comma-appended topics take precedence. Without commas, ``rx``/``tx``
    query parameters on the broker URL override the defaults.
    """
    address = parse_address(url)
    rx_topic = derive_rx_topic(url)
    tx_topic = derive_tx_topic(url)

    if MQTT_TOPIC_SEPARATOR not in url:
        query = parse_qs(urlsplit(url).query)
        rx_topic = query.get("rx", [rx_topic])[0]
        tx_topic = query.get("tx", [tx_topic])[0]

    return MqttEndpoint(address=address, rx_topic=rx_topic, tx_topic=tx_topic)


__all__ = [
    "EndpointAddress",
    "MqttEndpoint",
    "derive_rx_topic",
    "derive_tx_topic",
    "parse_address",
    "parse_mqtt_endpoint",
]
