"""WebSocket transport: an HTTP listener that upgrades any path."""

from __future__ import annotations

import asyncio
import logging
import socket

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from ..common import log_hexdump
from ..state.context import BridgeContext, EndpointName, Role
from .base import Connection, Listener, TransportHandler

logger = logging.getLogger("uartbridge.websocket")


class WebSocketConnection(Connection):
    """One upgraded WebSocket client.

    Outgoing frames go through an unbounded queue drained by a sender task,
    so a slow client never stalls the tick.
    """

    def __init__(self, context: BridgeContext, websocket: ServerConnection) -> None:
        super().__init__(context)
        self.websocket = websocket
        self.peer = websocket.remote_address
        self._outgoing: asyncio.Queue[bytes] = asyncio.Queue()
        self._closing: asyncio.Task[None] | None = None

    def send_from_serial(self, data: bytes) -> None:
        self._outgoing.put_nowait(data)

    def close(self) -> None:
        if self._closing is None:
            self._closing = asyncio.get_running_loop().create_task(
                self.websocket.close(), name="ws-close"
            )

    async def sender_loop(self) -> None:
        while True:
            data = await self._outgoing.get()
            # Serial bytes are relayed verbatim inside text frames.
            await self.websocket.send(data, text=True)

    async def receive_loop(self) -> None:
        async for message in self.websocket:
            payload = message.encode("utf-8") if isinstance(message, str) else bytes(message)
            if logger.isEnabledFor(logging.DEBUG):
                log_hexdump(logger, logging.DEBUG, f"WS < {self.peer}", payload)
            self.forward_to_serial(payload)

    def __repr__(self) -> str:
        return f"WebSocketConnection(peer={self.peer})"


class WebSocketTransport(TransportHandler):
    """Keeps the WebSocket listener alive and services its clients."""

    endpoint_name = EndpointName.WEBSOCKET

    def open(self) -> Listener:
        listener = Listener(
            self.context,
            self.endpoint,
            self.context.config.ws_address,
            self._start_server,
        )
        self.context.register(listener)
        listener.start()
        return listener

    async def _start_server(self, sock: socket.socket) -> Server:
        return await serve(self.handle_client, sock=sock)

    async def handle_client(self, websocket: ServerConnection) -> None:
        # The handler only runs once the upgrade handshake has completed.
        connection = WebSocketConnection(self.context, websocket)
        connection.role = Role.WEBSOCKET
        self.context.register(connection)
        path = websocket.request.path if websocket.request is not None else "?"
        logger.info(
            "WebSocket client connected: %s (path %s)",
            connection.peer,
            path,
            extra={"role": Role.WEBSOCKET, "peer": connection.peer},
        )

        sender = asyncio.create_task(connection.sender_loop(), name="ws-sender")
        try:
            await connection.receive_loop()
        except ConnectionClosed as exc:
            logger.debug("WebSocket client %s closed: %s", connection.peer, exc)
        finally:
            self.context.unregister(connection)
            sender.cancel()
            await asyncio.gather(sender, return_exceptions=True)
            logger.info(
                "WebSocket client disconnected: %s", connection.peer, extra={"role": Role.WEBSOCKET, "peer": connection.peer}
            )


__all__ = ["WebSocketConnection", "WebSocketTransport"]
