"""Raw TCP transport: every accepted client shares the serial line."""

from __future__ import annotations

import asyncio
import logging
import socket
from typing import cast

from ..common import log_hexdump
from ..state.context import BridgeContext, EndpointName, Role
from .base import Connection, Listener, TransportHandler

logger = logging.getLogger("uartbridge.tcp")


class TcpConnection(Connection, asyncio.Protocol):
    """One accepted TCP client."""

    def __init__(self, context: BridgeContext) -> None:
        super().__init__(context)
        self.transport: asyncio.Transport | None = None
        self.peer: object = None

    def connection_made(self, transport: asyncio.BaseTransport) -> None:
        self.transport = cast(asyncio.Transport, transport)
        self.peer = transport.get_extra_info("peername")
        self.role = Role.TCP
        self.context.register(self)
        logger.info("TCP client connected: %s", self.peer, extra={"role": Role.TCP, "peer": self.peer})

    def data_received(self, data: bytes) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            log_hexdump(logger, logging.DEBUG, f"TCP < {self.peer}", data)
        self.forward_to_serial(data)

    def connection_lost(self, exc: Exception | None) -> None:
        self.context.unregister(self)
        self.transport = None
        logger.info(
            "TCP client disconnected: %s (%s)", self.peer, exc or "closed", extra={"role": Role.TCP, "peer": self.peer}
        )

    def send_from_serial(self, data: bytes) -> None:
        if self.transport is None or self.transport.is_closing():
            return
        self.transport.write(data)

    def close(self) -> None:
        if self.transport is not None:
            self.transport.close()

    def __repr__(self) -> str:
        return f"TcpConnection(peer={self.peer})"


class TcpTransport(TransportHandler):
    """Keeps the raw TCP listener alive."""

    endpoint_name = EndpointName.TCP

    def open(self) -> Listener:
        listener = Listener(
            self.context,
            self.endpoint,
            self.context.config.tcp_address,
            self._start_server,
        )
        self.context.register(listener)
        listener.start()
        return listener

    async def _start_server(self, sock: socket.socket) -> asyncio.Server:
        loop = asyncio.get_running_loop()
        return await loop.create_server(lambda: TcpConnection(self.context), sock=sock)


__all__ = ["TcpConnection", "TcpTransport"]
