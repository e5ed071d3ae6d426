"""Tests for the connection supervisor tick and its retry policy."""

from __future__ import annotations

import asyncio

import pytest
import tenacity

from uartbridge.services.supervisor import ConnectionSupervisor, RetryPolicy
from uartbridge.state.context import BridgeContext, EndpointName, Role

from .mocks import FakeConnection, FakeSerialGateway, FakeTransportHandler


def _supervisor(
    context: BridgeContext,
    *,
    fail: set[EndpointName] | None = None,
    retry_policy: RetryPolicy | None = None,
) -> tuple[ConnectionSupervisor, dict[EndpointName, FakeTransportHandler]]:
    fail = fail or set()
    handlers = {name: FakeTransportHandler(context, name, fail=name in fail) for name in EndpointName}
    return ConnectionSupervisor(context, handlers.values(), retry_policy=retry_policy), handlers


def test_repeated_ticks_create_one_connection_per_endpoint(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)

    for _ in range(10):
        supervisor.tick()

    assert len(handlers[EndpointName.TCP].opened) == 1
    assert len(handlers[EndpointName.WEBSOCKET].opened) == 1
    # MQTT is disabled in the test configuration.
    assert handlers[EndpointName.MQTT].opened == []
    assert bridge_context.state.tcp.active_connection is handlers[EndpointName.TCP].opened[0]


def test_closed_connection_is_replaced_exactly_once(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    tcp = handlers[EndpointName.TCP]
    supervisor.tick()

    tcp.drop(tcp.opened[0])
    assert not bridge_context.state.tcp.is_connected
    supervisor.tick()
    supervisor.tick()

    assert len(tcp.opened) == 2
    assert bridge_context.state.tcp.active_connection is tcp.opened[1]


def test_stale_close_does_not_clear_new_connection(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    tcp = handlers[EndpointName.TCP]
    supervisor.tick()
    old = tcp.opened[0]
    tcp.drop(old)
    supervisor.tick()

    # A second close notification for the old connection arrives late.
    assert bridge_context.state.tcp.detach(old) is False
    assert bridge_context.state.tcp.active_connection is tcp.opened[1]


def test_disabled_endpoint_is_never_reconnected(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    ws = handlers[EndpointName.WEBSOCKET]
    supervisor.tick()

    bridge_context.state.websocket.enabled = False
    ws.drop(ws.opened[0])
    for _ in range(5):
        supervisor.tick()

    assert len(ws.opened) == 1
    assert not bridge_context.state.websocket.is_connected


def test_disabling_does_not_close_live_connection(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    supervisor.tick()
    bridge_context.state.tcp.enabled = False
    supervisor.tick()
    assert bridge_context.state.tcp.active_connection is handlers[EndpointName.TCP].opened[0]


def test_failed_open_is_retried_next_tick(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context, fail={EndpointName.TCP})
    tcp = handlers[EndpointName.TCP]

    supervisor.tick()
    supervisor.tick()
    assert bridge_context.connection_attempts["tcp"] == 2
    assert bridge_context.connection_failures["tcp"] == 2
    assert not bridge_context.state.tcp.is_connected

    tcp.fail = False
    supervisor.tick()
    assert bridge_context.state.tcp.is_connected
    # Other endpoints are unaffected by the failing one.
    assert len(handlers[EndpointName.WEBSOCKET].opened) == 1


def test_tick_order_reconcile_then_read_then_dispatch(
    bridge_context: BridgeContext, fake_gateway: FakeSerialGateway
) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    fake_gateway.feed(b"boot")

    def open_tagged() -> FakeConnection:
        connection = FakeConnection(bridge_context, Role.TCP)
        bridge_context.register(connection)
        handlers[EndpointName.TCP].opened.append(connection)
        return connection

    handlers[EndpointName.TCP].open = open_tagged  # type: ignore[method-assign]

    assert supervisor.tick() == 4
    # The connection created by this tick already sees this tick's bytes.
    assert handlers[EndpointName.TCP].opened[0].sent == [b"boot"]
    # Listener-like untagged connections get nothing.
    assert handlers[EndpointName.WEBSOCKET].opened[0].sent == []


def test_read_is_bounded_by_configured_size(bridge_context: BridgeContext, fake_gateway: FakeSerialGateway) -> None:
    supervisor, _ = _supervisor(bridge_context)
    fake_gateway.feed(b"x" * 1000)
    assert supervisor.tick() == 512
    assert supervisor.tick() == 488
    assert supervisor.tick() == 0


def test_retry_policy_default_allows_every_tick(bridge_context: BridgeContext) -> None:
    policy = RetryPolicy()
    endpoint = bridge_context.state.tcp
    for _ in range(3):
        assert policy.allows(endpoint)
        policy.record_attempt(endpoint)
    assert policy.attempts(endpoint) == 3


def test_retry_policy_waits_between_attempts(bridge_context: BridgeContext) -> None:
    now = [100.0]
    policy = RetryPolicy(tenacity.wait_exponential(multiplier=1, max=8), clock=lambda: now[0])
    supervisor, handlers = _supervisor(bridge_context, fail={EndpointName.TCP}, retry_policy=policy)

    supervisor.tick()
    supervisor.tick()
    assert bridge_context.connection_attempts["tcp"] == 1

    now[0] += 1.0
    supervisor.tick()
    assert bridge_context.connection_attempts["tcp"] == 2

    # Second consecutive failure doubles the delay.
    now[0] += 1.0
    supervisor.tick()
    assert bridge_context.connection_attempts["tcp"] == 2
    now[0] += 1.0
    supervisor.tick()
    assert bridge_context.connection_attempts["tcp"] == 3

    handlers[EndpointName.TCP].fail = False
    now[0] += 4.0
    supervisor.tick()
    supervisor.tick()
    assert policy.attempts(bridge_context.state.tcp) == 0


def test_retry_policy_from_delay() -> None:
    assert isinstance(RetryPolicy.from_delay(0)._wait, tenacity.wait_none)
    assert isinstance(RetryPolicy.from_delay(2.5)._wait, tenacity.wait_fixed)


@pytest.mark.asyncio
async def test_run_ticks_until_cancelled(bridge_context: BridgeContext) -> None:
    supervisor, handlers = _supervisor(bridge_context)
    task = asyncio.create_task(supervisor.run())
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert supervisor.ticks >= 2
    assert len(handlers[EndpointName.TCP].opened) == 1
