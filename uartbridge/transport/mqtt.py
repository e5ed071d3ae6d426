"""MQTT transport: one outbound broker session relaying the serial line."""

from __future__ import annotations

import asyncio
import logging
import ssl
from typing import TYPE_CHECKING, Any, Callable

import aiomqtt
from transitions import Machine

from ..common import log_hexdump
from ..const import MQTT_QOS, MQTT_WILL_QOS
from ..protocol import MqttEndpoint
from ..state.context import BridgeContext, Endpoint, EndpointName, Role
from .base import Connection, TransportHandler

logger = logging.getLogger("uartbridge.mqtt")


def _payload_bytes(payload: Any) -> bytes:
    if payload is None:
        return b""
    if isinstance(payload, (bytes, bytearray, memoryview)):
        return bytes(payload)
    return str(payload).encode("utf-8")


class MqttConnection(Connection):
    """Broker session with FSM-based state management.

    The connection is tagged as soon as the session is started. Serial data
    read while the broker handshake is still running waits in the outgoing
    queue and is published once the session is ready.
    """

    if TYPE_CHECKING:
        fsm_state: str
        trigger: Callable[[str], bool]

    STATE_DISCONNECTED = "disconnected"
    STATE_CONNECTING = "connecting"
    STATE_SUBSCRIBING = "subscribing"
    STATE_READY = "ready"

    def __init__(self, context: BridgeContext, endpoint: Endpoint, descriptor: MqttEndpoint) -> None:
        super().__init__(context)
        self.endpoint = endpoint
        self.descriptor = descriptor
        self._outgoing: asyncio.Queue[bytes] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._accepted = False

        self.machine = Machine(
            model=self,
            states=[
                self.STATE_DISCONNECTED,
                self.STATE_CONNECTING,
                self.STATE_SUBSCRIBING,
                self.STATE_READY,
            ],
            initial=self.STATE_DISCONNECTED,
            model_attribute="fsm_state",
            ignore_invalid_triggers=True,
        )

        self.machine.add_transition("connect", "*", self.STATE_CONNECTING)
        self.machine.add_transition("connected", self.STATE_CONNECTING, self.STATE_SUBSCRIBING)
        self.machine.add_transition("subscribed", self.STATE_SUBSCRIBING, self.STATE_READY)
        self.machine.add_transition("disconnect", "*", self.STATE_DISCONNECTED)

    @property
    def rx_topic(self) -> str:
        return self.descriptor.rx_topic

    @property
    def tx_topic(self) -> str:
        return self.descriptor.tx_topic

    def start(self) -> None:
        loop = asyncio.get_running_loop()
        self.role = Role.MQTT
        self._task = loop.create_task(self.run(), name="mqtt-session")
        self._task.add_done_callback(self._on_session_done)

    def send_from_serial(self, data: bytes) -> None:
        self._outgoing.put_nowait(data)

    def close(self) -> None:
        if self._task is not None:
            self._task.cancel()

    def _build_client(self) -> aiomqtt.Client:
        config = self.context.config
        address = self.descriptor.address
        tls_context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH) if address.tls else None
        return aiomqtt.Client(
            hostname=address.host,
            port=address.port,
            username=config.mqtt_user,
            password=config.mqtt_pass,
            identifier=config.mqtt_client_id,
            keepalive=config.mqtt_keepalive,
            clean_session=True,
            will=aiomqtt.Will(topic=self.tx_topic, payload=None, qos=MQTT_WILL_QOS, retain=False),
            tls_context=tls_context,
            logger=logging.getLogger("uartbridge.mqtt.client"),
        )

    async def run(self) -> None:
        address = self.descriptor.address
        self.trigger("connect")
        try:
            async with self._build_client() as client:
                self._accepted = True
                self.trigger("connected")
                logger.info("Connected to MQTT broker %s:%d", address.host, address.port)

                await client.subscribe(self.rx_topic, qos=MQTT_QOS)
                self.trigger("subscribed")
                logger.info("Subscribed to %s; publishing to %s", self.rx_topic, self.tx_topic)

                async with asyncio.TaskGroup() as task_group:
                    task_group.create_task(self._publisher_loop(client))
                    task_group.create_task(self._subscriber_loop(client))
        except* (aiomqtt.MqttError, OSError, ValueError) as exc_group:
            for exc in exc_group.exceptions:
                logger.debug("MQTT session with %s:%d ended: %s", address.host, address.port, exc)

    async def _publisher_loop(self, client: aiomqtt.Client) -> None:
        while True:
            data = await self._outgoing.get()
            if logger.isEnabledFor(logging.DEBUG):
                log_hexdump(logger, logging.DEBUG, f"MQTT PUB > {self.tx_topic}", data)
            await client.publish(self.tx_topic, data, qos=MQTT_QOS, retain=False)

    async def _subscriber_loop(self, client: aiomqtt.Client) -> None:
        async for message in client.messages:
            payload = _payload_bytes(message.payload)
            if logger.isEnabledFor(logging.DEBUG):
                log_hexdump(logger, logging.DEBUG, f"MQTT SUB < {message.topic}", payload)
            self.forward_to_serial(payload)

    def _on_session_done(self, task: asyncio.Task[None]) -> None:
        if not task.cancelled():
            exc = task.exception()
            if exc is not None:
                logger.error("MQTT session crashed: %s", exc, exc_info=exc)
        if not self._accepted:
            self.context.record_failure(self.endpoint)
        self.role = None
        self.trigger("disconnect")
        self.context.unregister(self)
        # Any close ends the single broker session.
        if self.endpoint.detach(self):
            logger.info("MQTT connection closed")

    def __repr__(self) -> str:
        address = self.descriptor.address
        return f"MqttConnection({address.host}:{address.port}, state={self.fsm_state})"


class MqttTransport(TransportHandler):
    """Keeps the single broker session alive."""

    endpoint_name = EndpointName.MQTT

    def open(self) -> MqttConnection:
        connection = MqttConnection(self.context, self.endpoint, self.context.config.mqtt_endpoint)
        self.context.register(connection)
        connection.start()
        return connection


__all__ = ["MqttConnection", "MqttTransport"]
