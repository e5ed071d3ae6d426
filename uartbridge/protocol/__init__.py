"""Endpoint and topic helpers for the UART bridge."""

from .endpoints import (
    EndpointAddress,
    MqttEndpoint,
    derive_rx_topic,
    derive_tx_topic,
    parse_address,
    parse_mqtt_endpoint,
)

__all__ = [
    "EndpointAddress",
    "MqttEndpoint",
    "derive_rx_topic",
    "derive_tx_topic",
    "parse_address",
    "parse_mqtt_endpoint",
]
