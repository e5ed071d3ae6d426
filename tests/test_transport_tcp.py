"""Loopback tests for the raw TCP transport."""

from __future__ import annotations

import asyncio
import logging
import socket

import pytest

from uartbridge.protocol import EndpointAddress
from uartbridge.services.supervisor import ConnectionSupervisor
from uartbridge.state.context import BridgeContext, Role
from uartbridge.transport.base import Listener
from uartbridge.transport.tcp import TcpConnection, TcpTransport

from .mocks import FakeSerialGateway, wait_until


@pytest.mark.asyncio
async def test_client_bytes_reach_serial_and_serial_bytes_reach_client(
    bridge_context: BridgeContext, fake_gateway: FakeSerialGateway
) -> None:
    supervisor = ConnectionSupervisor(bridge_context, [TcpTransport(bridge_context)])
    supervisor.tick()
    listener = bridge_context.state.tcp.active_connection
    assert isinstance(listener, Listener)
    await wait_until(lambda: listener.fsm_state == Listener.STATE_ACTIVE)

    reader, writer = await asyncio.open_connection("127.0.0.1", listener.port)
    try:
        await wait_until(lambda: bridge_context.tagged_connections(Role.TCP) != [])
        writer.write(b"AT\r\n")
        await writer.drain()
        await wait_until(lambda: bytes(fake_gateway.written) == b"AT\r\n")

        fake_gateway.feed(b"OK\r\n")
        supervisor.tick()
        assert await asyncio.wait_for(reader.readexactly(4), 1.0) == b"OK\r\n"
        assert bridge_context.snapshot().serial_bytes_written["tcp"] == 4
    finally:
        writer.close()
        await writer.wait_closed()

    await wait_until(lambda: bridge_context.tagged_connections(Role.TCP) == [])
    # A client leaving does not touch the listener.
    assert bridge_context.state.tcp.active_connection is listener
    listener.close()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)


@pytest.mark.asyncio
async def test_every_client_gets_its_own_copy(bridge_context: BridgeContext, fake_gateway: FakeSerialGateway) -> None:
    supervisor = ConnectionSupervisor(bridge_context, [TcpTransport(bridge_context)])
    supervisor.tick()
    listener = bridge_context.state.tcp.active_connection
    assert isinstance(listener, Listener)
    await wait_until(lambda: listener.fsm_state == Listener.STATE_ACTIVE)

    clients = [await asyncio.open_connection("127.0.0.1", listener.port) for _ in range(2)]
    try:
        await wait_until(lambda: len(bridge_context.tagged_connections(Role.TCP)) == 2)
        fake_gateway.feed(b"tick")
        supervisor.tick()
        for reader, _ in clients:
            assert await asyncio.wait_for(reader.readexactly(4), 1.0) == b"tick"
    finally:
        for _, writer in clients:
            writer.close()
        bridge_context.close_all()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)


@pytest.mark.asyncio
async def test_listener_close_triggers_exactly_one_relisten(bridge_context: BridgeContext) -> None:
    supervisor = ConnectionSupervisor(bridge_context, [TcpTransport(bridge_context)])
    supervisor.tick()
    first = bridge_context.state.tcp.active_connection
    assert isinstance(first, Listener)
    await wait_until(lambda: first.fsm_state == Listener.STATE_ACTIVE)

    first.close()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)
    assert first.fsm_state == Listener.STATE_CLOSED
    assert first not in bridge_context.connections

    supervisor.tick()
    supervisor.tick()
    second = bridge_context.state.tcp.active_connection
    assert isinstance(second, Listener) and second is not first
    assert bridge_context.connection_attempts["tcp"] == 2
    assert sum(isinstance(conn, Listener) for conn in bridge_context.connections) == 1
    second.close()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)


@pytest.mark.asyncio
async def test_listener_close_with_attached_client_relistens(
    bridge_context: BridgeContext, fake_gateway: FakeSerialGateway, caplog: pytest.LogCaptureFixture
) -> None:
    caplog.set_level(logging.INFO, logger="uartbridge")
    supervisor = ConnectionSupervisor(bridge_context, [TcpTransport(bridge_context)])
    supervisor.tick()
    first = bridge_context.state.tcp.active_connection
    assert isinstance(first, Listener)
    await wait_until(lambda: first.fsm_state == Listener.STATE_ACTIVE)

    reader, writer = await asyncio.open_connection("127.0.0.1", first.port)
    try:
        await wait_until(lambda: len(bridge_context.tagged_connections(Role.TCP)) == 1)
        connected = [rec for rec in caplog.records if getattr(rec, "role", None) is Role.TCP]
        assert connected and connected[0].peer == writer.get_extra_info("sockname")
        first.close()
        # The endpoint is free immediately, even though a client is still attached.
        assert not bridge_context.state.tcp.is_connected
        assert first.fsm_state == Listener.STATE_CLOSED
        assert first not in bridge_context.connections

        supervisor.tick()
        second = bridge_context.state.tcp.active_connection
        assert isinstance(second, Listener) and second is not first
        await wait_until(lambda: second.fsm_state == Listener.STATE_ACTIVE)

        # The surviving client still shares the serial line.
        fake_gateway.feed(b"still")
        supervisor.tick()
        assert await asyncio.wait_for(reader.readexactly(5), 1.0) == b"still"
    finally:
        writer.close()
        await writer.wait_closed()
    bridge_context.close_all()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)


@pytest.mark.asyncio
async def test_bind_failure_leaves_endpoint_unset(bridge_context: BridgeContext) -> None:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind(("127.0.0.1", 0))
    blocker.listen()
    port = blocker.getsockname()[1]
    try:
        bridge_context.config.tcp_address = EndpointAddress("tcp", "127.0.0.1", port)
        supervisor = ConnectionSupervisor(bridge_context, [TcpTransport(bridge_context)])
        supervisor.tick()
        assert not bridge_context.state.tcp.is_connected
        assert bridge_context.connection_failures["tcp"] == 1
    finally:
        blocker.close()

    supervisor.tick()
    listener = bridge_context.state.tcp.active_connection
    assert isinstance(listener, Listener)
    listener.close()
    await wait_until(lambda: not bridge_context.state.tcp.is_connected)


def test_send_after_close_is_ignored(bridge_context: BridgeContext) -> None:
    connection = TcpConnection(bridge_context)
    connection.send_from_serial(b"dropped")
    connection.close()
