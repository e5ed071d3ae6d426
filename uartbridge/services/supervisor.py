"""Connection supervisor: the bridge's fixed-interval tick.

Every tick, in this order:

1. reconcile endpoints: each enabled endpoint without a connection gets one,
2. poll the serial gateway once,
3. fan out whatever was read.

The tick itself is synchronous and never yields, so it cannot interleave
with transport callbacks.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Iterable

import tenacity
from tenacity.wait import wait_base

from ..state.context import BridgeContext, Endpoint, EndpointName
from ..transport.base import TransportHandler
from .dispatcher import BroadcastDispatcher

logger = logging.getLogger("uartbridge.supervisor")


class RetryPolicy:
    """Decides whether a disconnected endpoint may be retried on this tick.

    The delay after the n-th consecutive attempt comes from a tenacity wait
    strategy. The default, ``wait_none``, retries on every tick.
    """

    def __init__(
        self,
        wait: wait_base | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._wait = wait if wait is not None else tenacity.wait_none()
        self._clock = clock
        self._attempts: dict[EndpointName, int] = {}
        self._not_before: dict[EndpointName, float] = {}

    @classmethod
    def from_delay(cls, delay: float) -> "RetryPolicy":
        if delay > 0:
            return cls(tenacity.wait_fixed(delay))
        return cls()

    def attempts(self, endpoint: Endpoint) -> int:
        return self._attempts.get(endpoint.name, 0)

    def allows(self, endpoint: Endpoint) -> bool:
        not_before = self._not_before.get(endpoint.name)
        return not_before is None or self._clock() >= not_before

    def record_attempt(self, endpoint: Endpoint) -> None:
        attempt = self._attempts.get(endpoint.name, 0) + 1
        self._attempts[endpoint.name] = attempt
        retry_state = tenacity.RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]
        retry_state.attempt_number = attempt
        self._not_before[endpoint.name] = self._clock() + self._wait(retry_state)

    def record_healthy(self, endpoint: Endpoint) -> None:
        """The endpoint survived a full tick; start counting from scratch."""
        self._attempts.pop(endpoint.name, None)
        self._not_before.pop(endpoint.name, None)


class ConnectionSupervisor:
    """Keeps every enabled endpoint connected and drains the serial gateway."""

    def __init__(
        self,
        context: BridgeContext,
        handlers: Iterable[TransportHandler],
        *,
        dispatcher: BroadcastDispatcher | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.context = context
        self.handlers: dict[EndpointName, TransportHandler] = {
            handler.endpoint_name: handler for handler in handlers
        }
        self.dispatcher = dispatcher or BroadcastDispatcher(context)
        self.retry_policy = retry_policy or RetryPolicy.from_delay(context.config.reconnect_delay)
        self.ticks = 0

    def tick(self) -> int:
        """Run one supervision cycle; returns the number of serial bytes read."""
        self.ticks += 1
        self.reconcile()
        data = self.context.read_serial()
        if data:
            self.dispatcher.dispatch(data)
        return len(data)

    def reconcile(self) -> None:
        for endpoint in self.context.state.endpoints():
            if not endpoint.enabled:
                continue
            if endpoint.is_connected:
                self.retry_policy.record_healthy(endpoint)
                continue
            handler = self.handlers.get(endpoint.name)
            if handler is None or not self.retry_policy.allows(endpoint):
                continue
            self._connect(endpoint, handler)

    def _connect(self, endpoint: Endpoint, handler: TransportHandler) -> None:
        self.retry_policy.record_attempt(endpoint)
        self.context.record_attempt(endpoint)
        try:
            connection = handler.open()
        except OSError as exc:
            self.context.record_failure(endpoint)
            logger.debug("%s: connection attempt failed: %s", endpoint.name.value, exc)
            return
        endpoint.attach(connection)
        logger.debug("%s: connection created (%r)", endpoint.name.value, connection)

    async def run(self) -> None:
        """Tick on a fixed period until cancelled."""
        loop = asyncio.get_running_loop()
        interval = self.context.config.tick_interval
        deadline = loop.time()
        logger.info("Connection supervisor running (tick %.3fs)", interval)
        while True:
            self.tick()
            deadline += interval
            delay = deadline - loop.time()
            if delay < 0:
                # Fell behind (slow serial write); resynchronise instead of bursting.
                deadline = loop.time()
                delay = 0.0
            await asyncio.sleep(delay)


__all__ = ["ConnectionSupervisor", "RetryPolicy"]
