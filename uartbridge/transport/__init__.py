"""Transport handlers (TCP, WebSocket, MQTT) for the UART bridge."""

from .base import Connection, Listener, TransportHandler
from .mqtt import MqttConnection, MqttTransport
from .tcp import TcpConnection, TcpTransport
from .websocket import WebSocketConnection, WebSocketTransport

__all__ = [
    "Connection",
    "Listener",
    "MqttConnection",
    "MqttTransport",
    "TcpConnection",
    "TcpTransport",
    "TransportHandler",
    "WebSocketConnection",
    "WebSocketTransport",
]
