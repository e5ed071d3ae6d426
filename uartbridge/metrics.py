"""Prometheus projection of the bridge counters."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, generate_latest
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, InfoMetricFamily
from prometheus_client.registry import Collector

from . import __version__
from .state.context import BridgeContext

logger = logging.getLogger("uartbridge.metrics")

_PREFIX = "uartbridge"


class _BridgeCollector(Collector):
    """Builds metric families from a fresh context snapshot on every scrape."""

    def __init__(self, context: BridgeContext) -> None:
        self._context = context

    def collect(self) -> Iterator[Any]:
        snapshot = self._context.snapshot()

        info = InfoMetricFamily(_PREFIX, "UART bridge build and serial settings")
        state = self._context.state
        info.add_metric(
            (),
            {
                "version": __version__,
                "serial": self._context.gateway.describe(),
                "baud": str(state.baud),
                "tx_pin": str(state.tx_pin),
                "rx_pin": str(state.rx_pin),
            },
        )
        yield info

        serial_read = CounterMetricFamily(f"{_PREFIX}_serial_read_bytes", "Bytes read from the serial line")
        serial_read.add_metric((), snapshot.serial_bytes_read)
        yield serial_read

        serial_reads = CounterMetricFamily(f"{_PREFIX}_serial_reads", "Non-empty serial reads")
        serial_reads.add_metric((), snapshot.serial_reads)
        yield serial_reads

        yield self._per_label(
            CounterMetricFamily(
                f"{_PREFIX}_serial_written_bytes",
                "Bytes written to the serial line, by originating transport",
                labels=("role",),
            ),
            snapshot.serial_bytes_written,
        )
        yield self._per_label(
            CounterMetricFamily(
                f"{_PREFIX}_dispatched_bytes",
                "Serial bytes handed to network connections, by transport",
                labels=("role",),
            ),
            snapshot.dispatched_bytes,
        )
        yield self._per_label(
            CounterMetricFamily(
                f"{_PREFIX}_connection_attempts",
                "Connection attempts made by the supervisor",
                labels=("endpoint",),
            ),
            snapshot.connection_attempts,
        )
        yield self._per_label(
            CounterMetricFamily(
                f"{_PREFIX}_connection_failures",
                "Failed connection attempts",
                labels=("endpoint",),
            ),
            snapshot.connection_failures,
        )
        yield self._per_label(
            CounterMetricFamily(
                f"{_PREFIX}_task_failures",
                "Daemon task crashes seen by the task supervisor",
                labels=("task",),
            ),
            snapshot.task_failures,
        )
        yield self._per_label(
            GaugeMetricFamily(
                f"{_PREFIX}_live_connections",
                "Handshake-complete connections, by transport",
                labels=("role",),
            ),
            snapshot.live_connections,
        )
        yield self._per_label(
            GaugeMetricFamily(
                f"{_PREFIX}_endpoint_connected",
                "1 when the endpoint has an active connection",
                labels=("endpoint",),
            ),
            snapshot.endpoints_connected,
        )
        yield self._per_label(
            GaugeMetricFamily(
                f"{_PREFIX}_endpoint_enabled",
                "1 when the endpoint is enabled",
                labels=("endpoint",),
            ),
            snapshot.endpoints_enabled,
        )

    @staticmethod
    def _per_label(family: Any, values: dict[str, Any]) -> Any:
        for key, value in values.items():
            family.add_metric((key,), float(value))
        return family


class MetricsRenderer:
    """Owns a private registry so tests and the daemon never share state."""

    content_type = CONTENT_TYPE_LATEST

    def __init__(self, context: BridgeContext) -> None:
        self.registry = CollectorRegistry()
        self.registry.register(_BridgeCollector(context))

    def render(self) -> bytes:
        return generate_latest(self.registry)


__all__ = ["MetricsRenderer"]
