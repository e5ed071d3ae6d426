"""Runtime state container for the UART bridge daemon.

``BridgeState`` is the configuration-derived endpoint registry; ``BridgeContext``
adds everything that only exists while the daemon runs: the serial gateway,
the registry of live connections and the traffic counters. A single context
is created per daemon and handed explicitly to the supervisor and to every
transport handler. All of it is touched from the event loop thread only.
"""

from __future__ import annotations

import collections
import enum
import logging
import weakref
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Final

import msgspec

from ..config.settings import RuntimeConfig

if TYPE_CHECKING:
    from ..serial.gateway import SerialGateway
    from ..transport.base import Connection

logger = logging.getLogger("uartbridge.state")


class Role(enum.Enum):
    """Transport that owns a handshake-complete connection."""

    TCP = "tcp"
    WEBSOCKET = "ws"
    MQTT = "mqtt"


class EndpointName(str, enum.Enum):
    TCP = "tcp"
    WEBSOCKET = "ws"
    MQTT = "mqtt"


class Endpoint:
    """A configured listener or broker destination.

    ``active_connection`` is a weak reference: the context's connection
    registry owns the connection, the endpoint only observes it.
    """

    __slots__ = ("name", "url", "enabled", "_active")

    def __init__(self, name: EndpointName, url: str, enabled: bool) -> None:
        self.name = name
        self.url = url
        self.enabled = enabled
        self._active: weakref.ReferenceType[Connection] | None = None

    @property
    def active_connection(self) -> Connection | None:
        if self._active is None:
            return None
        return self._active()

    @property
    def is_connected(self) -> bool:
        return self.active_connection is not None

    def attach(self, connection: Connection) -> None:
        self._active = weakref.ref(connection)

    def detach(self, connection: Connection) -> bool:
        """Clear the reference if it still points at *connection*."""
        if self.active_connection is connection:
            self._active = None
            return True
        return False

    def config_payload(self) -> dict[str, str]:
        return {"url": self.url, "enable": "true" if self.enabled else "false"}

    def __repr__(self) -> str:
        return f"Endpoint({self.name.value!r}, url={self.url!r}, enabled={self.enabled}, connected={self.is_connected})"


@dataclass(slots=True)
class BridgeState:
    """The three endpoints plus the serial line settings."""

    tcp: Endpoint
    websocket: Endpoint
    mqtt: Endpoint
    tx_pin: int
    rx_pin: int
    baud: int

    def endpoints(self) -> tuple[Endpoint, ...]:
        return (self.tcp, self.websocket, self.mqtt)

    def endpoint(self, name: EndpointName | str) -> Endpoint:
        key = EndpointName(name)
        for candidate in self.endpoints():
            if candidate.name is key:
                return candidate
        raise KeyError(name)  # pragma: no cover

    def config_payload(self) -> dict[str, Any]:
        """Shape served by ``GET /api/config/get``."""
        return {
            "tcp": self.tcp.config_payload(),
            "ws": self.websocket.config_payload(),
            "mqtt": self.mqtt.config_payload(),
            "rx": self.rx_pin,
            "tx": self.tx_pin,
            "baud": self.baud,
        }

    def config_json(self) -> bytes:
        return msgspec.json.encode(self.config_payload()) + b"\n"


class TrafficSnapshot(msgspec.Struct):
    """Point-in-time copy of the bridge counters."""

    serial_bytes_read: int
    serial_reads: int
    serial_bytes_written: dict[str, int]
    dispatched_bytes: dict[str, int]
    connection_attempts: dict[str, int]
    connection_failures: dict[str, int]
    task_failures: dict[str, int]
    live_connections: dict[str, int]
    endpoints_connected: dict[str, bool]
    endpoints_enabled: dict[str, bool]


_ROLE_KEYS: Final[tuple[str, ...]] = tuple(role.value for role in Role)
_ENDPOINT_KEYS: Final[tuple[str, ...]] = tuple(name.value for name in EndpointName)


@dataclass(slots=True)
class BridgeContext:
    """Explicit runtime context shared by the supervisor and transports."""

    config: RuntimeConfig
    state: BridgeState
    gateway: SerialGateway
    connections: list[Connection] = field(default_factory=list)

    serial_bytes_read: int = 0
    serial_reads: int = 0
    serial_bytes_written: collections.Counter[str] = field(default_factory=collections.Counter)
    dispatched_bytes: collections.Counter[str] = field(default_factory=collections.Counter)
    connection_attempts: collections.Counter[str] = field(default_factory=collections.Counter)
    connection_failures: collections.Counter[str] = field(default_factory=collections.Counter)
    task_failures: collections.Counter[str] = field(default_factory=collections.Counter)

    # Connection registry -------------------------------------------------

    def register(self, connection: Connection) -> None:
        if connection not in self.connections:
            self.connections.append(connection)

    def unregister(self, connection: Connection) -> None:
        try:
            self.connections.remove(connection)
        except ValueError:
            pass

    def live_connections(self) -> Iterator[Connection]:
        # Snapshot: sends may close connections while we iterate.
        return iter(tuple(self.connections))

    def tagged_connections(self, role: Role | None = None) -> list[Connection]:
        return [
            conn for conn in self.connections if conn.role is not None and (role is None or conn.role is role)
        ]

    # Serial side ---------------------------------------------------------

    def write_serial(self, role: Role | None, data: bytes) -> None:
        """Forward network bytes to the serial line."""
        if not data:
            return
        self.gateway.write(data)
        self.serial_bytes_written[role.value if role else "unknown"] += len(data)

    def read_serial(self) -> bytes:
        data = self.gateway.read(self.config.serial_read_size)
        if data:
            self.serial_reads += 1
            self.serial_bytes_read += len(data)
        return data

    # Bookkeeping ---------------------------------------------------------

    def record_attempt(self, endpoint: Endpoint) -> None:
        self.connection_attempts[endpoint.name.value] += 1

    def record_failure(self, endpoint: Endpoint) -> None:
        self.connection_failures[endpoint.name.value] += 1

    def record_dispatch(self, role: Role, size: int) -> None:
        self.dispatched_bytes[role.value] += size

    def record_task_failure(self, name: str, exc: BaseException, fatal: bool) -> None:
        self.task_failures[name] += 1
        logger.debug("Task %s failure recorded (fatal=%s): %s", name, fatal, exc)

    def close_all(self) -> None:
        """Close every live connection (shutdown path)."""
        for connection in tuple(self.connections):
            try:
                connection.close()
            except (OSError, RuntimeError) as exc:
                logger.debug("Error closing %r during shutdown: %s", connection, exc)

    def snapshot(self) -> TrafficSnapshot:
        live = collections.Counter(conn.role.value for conn in self.connections if conn.role is not None)
        return TrafficSnapshot(
            serial_bytes_read=self.serial_bytes_read,
            serial_reads=self.serial_reads,
            serial_bytes_written={key: self.serial_bytes_written[key] for key in _ROLE_KEYS},
            dispatched_bytes={key: self.dispatched_bytes[key] for key in _ROLE_KEYS},
            connection_attempts={key: self.connection_attempts[key] for key in _ENDPOINT_KEYS},
            connection_failures={key: self.connection_failures[key] for key in _ENDPOINT_KEYS},
            task_failures=dict(self.task_failures),
            live_connections={key: live[key] for key in _ROLE_KEYS},
            endpoints_connected={ep.name.value: ep.is_connected for ep in self.state.endpoints()},
            endpoints_enabled={ep.name.value: ep.enabled for ep in self.state.endpoints()},
        )


def create_bridge_state(config: RuntimeConfig) -> BridgeState:
    return BridgeState(
        tcp=Endpoint(EndpointName.TCP, config.tcp_url, config.tcp_enabled),
        websocket=Endpoint(EndpointName.WEBSOCKET, config.ws_url, config.ws_enabled),
        mqtt=Endpoint(EndpointName.MQTT, config.mqtt_url, config.mqtt_enabled),
        tx_pin=config.serial_tx_pin,
        rx_pin=config.serial_rx_pin,
        baud=config.serial_baud,
    )


def create_bridge_context(config: RuntimeConfig, gateway: SerialGateway) -> BridgeContext:
    return BridgeContext(config=config, state=create_bridge_state(config), gateway=gateway)


__all__: Final[tuple[str, ...]] = (
    "BridgeContext",
    "BridgeState",
    "Endpoint",
    "EndpointName",
    "Role",
    "TrafficSnapshot",
    "create_bridge_context",
    "create_bridge_state",
)
