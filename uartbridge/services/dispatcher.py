"""Serial → network fan-out."""

from __future__ import annotations

import logging

from ..state.context import BridgeContext

logger = logging.getLogger("uartbridge.dispatcher")


class BroadcastDispatcher:
    """Hands freshly read serial bytes to every tagged connection.

    Each connection picks its own send primitive (text frame, raw write,
    QoS 1 publish). Sends never raise into the dispatcher; a failing client
    goes away through its transport's close path.
    """

    def __init__(self, context: BridgeContext) -> None:
        self.context = context

    def dispatch(self, data: bytes) -> int:
        """Deliver *data* and return how many connections received it."""
        if not data:
            return 0
        delivered = 0
        for connection in self.context.live_connections():
            role = connection.role
            if role is None:
                continue
            connection.send_from_serial(data)
            self.context.record_dispatch(role, len(data))
            delivered += 1
        logger.debug("Dispatched %d bytes to %d connections", len(data), delivered)
        return delivered


__all__ = ["BroadcastDispatcher"]
