#!/usr/bin/env python3
"""Async orchestrator for the UART bridge daemon.

Architecture:
    main() -> BridgeDaemon -> TaskGroup
        ├── connection-supervisor (ConnectionSupervisor.run)
        └── control-http (ControlServer.run, optional)

The serial gateway is initialised once, before any transport activity, and
every connection is closed when the task group exits.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import NoReturn

import uvloop
from marshmallow import ValidationError

from . import __version__
from .config.logging import configure_logging
from .config.settings import RuntimeConfig, load_runtime_config
from .const import SUPERVISOR_DEFAULT_MAX_BACKOFF
from .serial import SerialGateway, create_serial_gateway
from .services import ConnectionSupervisor, SupervisedTaskSpec, supervise_task
from .state.context import BridgeContext, create_bridge_context
from .transport import MqttTransport, TcpTransport, TransportHandler, WebSocketTransport
from .web import ControlServer

logger = logging.getLogger("uartbridge")


class BridgeDaemon:
    """Owns the gateway, the context and the daemon-level tasks.

    Attributes:
        config: Validated runtime configuration.
        gateway: Serial gateway shared by every transport.
        context: Runtime context handed to the supervisor and the handlers.
        supervisor: Periodic connection supervisor.
        control: Optional HTTP control server.
    """

    def __init__(self, config: RuntimeConfig, gateway: SerialGateway | None = None) -> None:
        self.config = config
        self.gateway = gateway if gateway is not None else create_serial_gateway(config)
        self.context: BridgeContext = create_bridge_context(config, self.gateway)
        self.handlers: list[TransportHandler] = [
            TcpTransport(self.context),
            WebSocketTransport(self.context),
            MqttTransport(self.context),
        ]
        self.supervisor = ConnectionSupervisor(self.context, self.handlers)
        self.control: ControlServer | None = ControlServer(self.context) if config.http_enabled else None

    def _setup_supervision(self) -> list[SupervisedTaskSpec]:
        specs = [
            SupervisedTaskSpec(
                name="connection-supervisor",
                factory=self.supervisor.run,
            ),
        ]
        if self.control is not None:
            specs.append(
                SupervisedTaskSpec(
                    name="control-http",
                    factory=self.control.run,
                    max_restarts=5,
                    max_backoff=SUPERVISOR_DEFAULT_MAX_BACKOFF,
                )
            )
        return specs

    async def _supervise(self, spec: SupervisedTaskSpec) -> None:
        await supervise_task(
            spec.name,
            spec.factory,
            fatal_exceptions=spec.fatal_exceptions,
            min_backoff=spec.min_backoff,
            max_backoff=spec.max_backoff,
            max_restarts=spec.max_restarts,
            restart_interval=spec.restart_interval,
            on_failure=self.context.record_task_failure,
        )

    async def run(self) -> None:
        """Main async entry point."""
        state = self.context.state
        self.gateway.init(state.tx_pin, state.rx_pin, state.baud)

        loop = asyncio.get_running_loop()
        current = asyncio.current_task()
        sigterm_installed = False
        if current is not None:
            try:
                loop.add_signal_handler(signal.SIGTERM, current.cancel)
                sigterm_installed = True
            except (NotImplementedError, RuntimeError):
                logger.debug("SIGTERM handler not installed")

        try:
            async with asyncio.TaskGroup() as task_group:
                for spec in self._setup_supervision():
                    task_group.create_task(self._supervise(spec), name=spec.name)
        except* Exception as exc_group:
            for group_exc in exc_group.exceptions:
                logger.critical("Unhandled exception in main task group: %s", group_exc, exc_info=group_exc)
            raise
        finally:
            if sigterm_installed:
                loop.remove_signal_handler(signal.SIGTERM)
            self.context.close_all()
            self.gateway.close()
            logger.info("UART bridge daemon stopped.")


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="uartbridge", description="Bridge a UART to TCP, WebSocket and MQTT.")
    parser.add_argument("-c", "--config", help="path to a TOML configuration file")
    parser.add_argument("-d", "--debug", action="store_true", help="enable debug logging")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: Sequence[str] | None = None) -> NoReturn:  # pragma: no cover (Entry point wrapper)
    args = build_arg_parser().parse_args(argv)
    overrides = {"debug_logging": True} if args.debug else None

    try:
        config = load_runtime_config(args.config, overrides)
    except (ValidationError, ValueError, RuntimeError) as exc:
        logging.basicConfig(stream=sys.stderr)
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)

    configure_logging(config)
    logger.info(
        "Starting UART bridge. Serial: %s@%d TCP: %s WS: %s MQTT: %s",
        config.serial_port or "stdio",
        config.serial_baud,
        config.tcp_url if config.tcp_enabled else "off",
        config.ws_url if config.ws_enabled else "off",
        config.mqtt_url if config.mqtt_enabled else "off",
    )

    try:
        daemon = BridgeDaemon(config)
        asyncio.run(daemon.run(), loop_factory=uvloop.new_event_loop)
        sys.exit(0)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Daemon interrupted; shutting down.")
        sys.exit(0)
    except RuntimeError as exc:
        logger.critical("Startup aborted due to runtime error: %s", exc)
        sys.exit(1)
    except ExceptionGroup as exc_group:
        for group_exc in exc_group.exceptions:
            logger.critical("Fatal error in task group: %s", group_exc, exc_info=group_exc)
        sys.exit(1)
    except OSError as exc:
        logger.critical("System/OS error during daemon execution: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
