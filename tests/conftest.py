"""Pytest configuration for UART bridge tests."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest

from uartbridge.config.settings import RuntimeConfig
from uartbridge.state.context import BridgeContext, create_bridge_context

from .mocks import FakeSerialGateway


@pytest.fixture(autouse=True)
def reset_logging_handlers() -> Iterator[None]:
    """Close and remove all logging handlers after each test to prevent ResourceWarnings."""
    yield
    root = logging.getLogger()
    for handler in root.handlers[:]:
        try:
            handler.close()
        except (OSError, RuntimeError):
            pass
        root.removeHandler(handler)


@pytest.fixture
def web_root(tmp_path: Path) -> Path:
    root = tmp_path / "web_root"
    root.mkdir()
    (root / "index.html").write_text("<html>bridge</html>")
    return root


@pytest.fixture
def runtime_config(web_root: Path) -> RuntimeConfig:
    """Loopback-only configuration with ephemeral ports and MQTT disabled."""
    return RuntimeConfig(
        tcp_url="tcp://127.0.0.1:0",
        ws_url="ws://127.0.0.1:0",
        mqtt_url="mqtt://127.0.0.1:1883",
        mqtt_enabled=False,
        serial_port="/dev/null",
        http_url="http://127.0.0.1:0",
        web_root=str(web_root),
        tick_interval=0.01,
    )


@pytest.fixture
def fake_gateway() -> FakeSerialGateway:
    gateway = FakeSerialGateway()
    gateway.init(5, 4, 115200)
    return gateway


@pytest.fixture
def bridge_context(runtime_config: RuntimeConfig, fake_gateway: FakeSerialGateway) -> BridgeContext:
    return create_bridge_context(runtime_config, fake_gateway)
