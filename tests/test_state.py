"""Tests for the endpoint registry and the bridge context."""

from __future__ import annotations

import gc

import msgspec

from uartbridge.config.settings import RuntimeConfig
from uartbridge.state.context import BridgeContext, EndpointName, Role, create_bridge_state

from .mocks import FakeConnection, FakeSerialGateway


def test_config_json_reports_strings_and_integers() -> None:
    state = create_bridge_state(RuntimeConfig(ws_enabled=False, serial_baud=9600))

    body = state.config_json()
    assert body.endswith(b"\n")
    payload = msgspec.json.decode(body)

    assert payload == {
        "tcp": {"url": "tcp://0.0.0.0:4001", "enable": "true"},
        "ws": {"url": "ws://0.0.0.0:4002", "enable": "false"},
        "mqtt": {"url": "mqtt://broker.hivemq.com:1883", "enable": "true"},
        "rx": 4,
        "tx": 5,
        "baud": 9600,
    }


def test_endpoint_lookup_by_name() -> None:
    state = create_bridge_state(RuntimeConfig())
    assert state.endpoint("ws") is state.websocket
    assert state.endpoint(EndpointName.MQTT) is state.mqtt
    assert [ep.name for ep in state.endpoints()] == [EndpointName.TCP, EndpointName.WEBSOCKET, EndpointName.MQTT]


def test_detach_only_clears_matching_connection(bridge_context: BridgeContext) -> None:
    endpoint = bridge_context.state.tcp
    first = FakeConnection(bridge_context)
    second = FakeConnection(bridge_context)

    endpoint.attach(second)
    assert endpoint.detach(first) is False
    assert endpoint.active_connection is second
    assert endpoint.detach(second) is True
    assert endpoint.is_connected is False


def test_endpoint_reference_is_weak(bridge_context: BridgeContext) -> None:
    endpoint = bridge_context.state.websocket
    connection = FakeConnection(bridge_context)
    endpoint.attach(connection)
    assert endpoint.is_connected

    del connection
    gc.collect()
    assert endpoint.active_connection is None


def test_registry_snapshot_tolerates_removal_during_iteration(bridge_context: BridgeContext) -> None:
    connections = [FakeConnection(bridge_context, Role.TCP) for _ in range(3)]
    for connection in connections:
        bridge_context.register(connection)
    bridge_context.register(connections[0])

    seen = []
    for connection in bridge_context.live_connections():
        seen.append(connection)
        bridge_context.unregister(connection)

    assert seen == connections
    assert bridge_context.connections == []
    bridge_context.unregister(connections[0])


def test_tagged_connections_filters_by_role(bridge_context: BridgeContext) -> None:
    tcp = FakeConnection(bridge_context, Role.TCP)
    ws = FakeConnection(bridge_context, Role.WEBSOCKET)
    untagged = FakeConnection(bridge_context)
    for connection in (tcp, ws, untagged):
        bridge_context.register(connection)

    assert bridge_context.tagged_connections() == [tcp, ws]
    assert bridge_context.tagged_connections(Role.WEBSOCKET) == [ws]


def test_serial_counters_and_snapshot(bridge_context: BridgeContext, fake_gateway: FakeSerialGateway) -> None:
    fake_gateway.feed(b"abc")
    assert bridge_context.read_serial() == b"abc"
    assert bridge_context.read_serial() == b""
    bridge_context.write_serial(Role.MQTT, b"xy")
    bridge_context.write_serial(Role.TCP, b"")
    bridge_context.record_attempt(bridge_context.state.tcp)
    bridge_context.record_failure(bridge_context.state.tcp)
    bridge_context.record_dispatch(Role.WEBSOCKET, 3)
    bridge_context.record_task_failure("control-http", RuntimeError("x"), False)
    bridge_context.register(FakeConnection(bridge_context, Role.WEBSOCKET))

    snapshot = bridge_context.snapshot()

    assert fake_gateway.written == bytearray(b"xy")
    assert snapshot.serial_bytes_read == 3
    assert snapshot.serial_reads == 1
    assert snapshot.serial_bytes_written == {"tcp": 0, "ws": 0, "mqtt": 2}
    assert snapshot.dispatched_bytes["ws"] == 3
    assert snapshot.connection_attempts == {"tcp": 1, "ws": 0, "mqtt": 0}
    assert snapshot.connection_failures["tcp"] == 1
    assert snapshot.task_failures == {"control-http": 1}
    assert snapshot.live_connections == {"tcp": 0, "ws": 1, "mqtt": 0}
    assert snapshot.endpoints_enabled == {"tcp": True, "ws": True, "mqtt": False}


def test_close_all_closes_every_connection(bridge_context: BridgeContext) -> None:
    connections = [FakeConnection(bridge_context, Role.TCP), FakeConnection(bridge_context)]
    for connection in connections:
        bridge_context.register(connection)

    bridge_context.close_all()

    assert all(connection.closed for connection in connections)
    assert bridge_context.connections == []
