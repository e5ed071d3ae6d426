"""Connection model shared by all transport handlers.

Every socket the bridge owns is a :class:`Connection`. Connections that have
completed their transport handshake carry a :class:`~uartbridge.state.Role`
and implement :meth:`Connection.send_from_serial`; listeners never get a
role, so the broadcast dispatcher skips them.
"""

from __future__ import annotations

import abc
import asyncio
import logging
import socket
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Protocol

from transitions import Machine

from ..protocol import EndpointAddress
from ..state.context import BridgeContext, Endpoint, EndpointName, Role

logger = logging.getLogger("uartbridge.transport")


class Connection:
    """A live socket registered with the bridge context."""

    def __init__(self, context: BridgeContext) -> None:
        self.context = context
        self.role: Role | None = None

    def forward_to_serial(self, data: bytes) -> None:
        """Network → UART. The received buffer is discarded afterwards."""
        self.context.write_serial(self.role, data)

    def send_from_serial(self, data: bytes) -> None:
        """UART → network, using this transport's send primitive."""
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError


class ServingServer(Protocol):
    """What a listener needs from ``asyncio.Server`` or a websockets server."""

    def close(self) -> None: ...

    async def serve_forever(self) -> None: ...


ServerStarter = Callable[[socket.socket], Awaitable[ServingServer]]


def bind_listening_socket(address: EndpointAddress) -> socket.socket:
    """Bind and listen synchronously so failures surface inside the tick."""
    family = socket.AF_INET6 if ":" in address.host else socket.AF_INET
    sock = socket.create_server((address.host, address.port), family=family)
    sock.setblocking(False)
    return sock


class Listener(Connection):
    """Listening socket tracked by a TCP or WebSocket endpoint.

    The endpoint reference is cleared as soon as the listening socket is
    closed, whatever the reason. Clients it already accepted stay connected
    and are tracked on their own.
    """

    STATE_OPENING = "opening"
    STATE_ACTIVE = "active"
    STATE_CLOSED = "closed"

    if TYPE_CHECKING:
        fsm_state: str
        trigger: Callable[[str], bool]

    def __init__(
        self,
        context: BridgeContext,
        endpoint: Endpoint,
        address: EndpointAddress,
        starter: ServerStarter,
    ) -> None:
        super().__init__(context)
        self.endpoint = endpoint
        self.address = address
        self._starter = starter
        self._server: ServingServer | None = None
        self._task: asyncio.Task[None] | None = None
        self._sock: socket.socket | None = bind_listening_socket(address)
        self.port: int = self._sock.getsockname()[1]

        self.machine = Machine(
            model=self,
            states=[self.STATE_OPENING, self.STATE_ACTIVE, self.STATE_CLOSED],
            initial=self.STATE_OPENING,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )
        self.machine.add_transition("serving", self.STATE_OPENING, self.STATE_ACTIVE)
        self.machine.add_transition("shutdown", "*", self.STATE_CLOSED)

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self._task = loop.create_task(self._serve(), name=f"{self.endpoint.name.value}-listener")
        self._task.add_done_callback(self._on_serve_done)

    async def _serve(self) -> None:
        assert self._sock is not None
        self._server = await self._starter(self._sock)
        self.trigger("serving")
        logger.info(
            "%s listening on %s:%d",
            self.endpoint.name.value,
            self.address.host,
            self.port,
            extra={"endpoint": self.endpoint.name},
        )
        try:
            await self._server.serve_forever()
        except asyncio.CancelledError:
            # serve_forever waits for accepted clients after closing (3.12+).
            self._finish()
            raise

    def _on_serve_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled():
            exc = task.exception()
            if exc is not None and self.fsm_state != self.STATE_CLOSED:
                logger.debug("%s listener failed: %s", self.endpoint.name.value, exc)
                self.context.record_failure(self.endpoint)
        self._finish()

    def _finish(self) -> None:
        if self.fsm_state == self.STATE_CLOSED:
            return
        self.trigger("shutdown")
        self._release_socket()
        self.context.unregister(self)
        if self.endpoint.detach(self):
            logger.info("%s listener closed", self.endpoint.name.value, extra={"endpoint": self.endpoint.name})

    def _release_socket(self) -> None:
        if self._sock is not None and self._server is None:
            self._sock.close()
        self._sock = None

    def close(self) -> None:
        if self._server is not None:
            self._server.close()
        elif self._task is not None:
            self._task.cancel()
        self._finish()

    def __repr__(self) -> str:
        return f"Listener({self.endpoint.name.value}, port={self.port}, state={self.fsm_state})"


class TransportHandler(abc.ABC):
    """Creates the connection that keeps one endpoint alive."""

    endpoint_name: EndpointName

    def __init__(self, context: BridgeContext) -> None:
        self.context = context

    @property
    def endpoint(self) -> Endpoint:
        return self.context.state.endpoint(self.endpoint_name)

    @abc.abstractmethod
    def open(self) -> Connection:
        """Create, register and start the endpoint's connection.

        Raises ``OSError`` when the attempt fails synchronously.
        """


__all__ = [
    "Connection",
    "Listener",
    "ServerStarter",
    "ServingServer",
    "TransportHandler",
    "bind_listening_socket",
]
