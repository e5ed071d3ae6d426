"""Runtime state for the UART bridge."""

from .context import (
    BridgeContext,
    BridgeState,
    Endpoint,
    EndpointName,
    Role,
    TrafficSnapshot,
    create_bridge_context,
    create_bridge_state,
)

__all__ = [
    "BridgeContext",
    "BridgeState",
    "Endpoint",
    "EndpointName",
    "Role",
    "TrafficSnapshot",
    "create_bridge_context",
    "create_bridge_state",
]
