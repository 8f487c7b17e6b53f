"""MQTT subscription that yields raw payloads and reconnects on failure."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

import aiomqtt

from datastore.collections import ConnectionState
from settings import Settings

logger = logging.getLogger(__name__)


class MessageSource(Protocol):
    def messages(self) -> AsyncIterator[bytes]: ...


class MqttTransport:
    """Subscribes to one topic and yields each payload as bytes.

    Connection loss is logged and retried after ``reconnect_seconds``; the
    consumer of :meth:`messages` never sees the reconnect. Connection up and
    down transitions are reported through ``state``.
    """

    def __init__(
        self,
        host: str,
        topic: str,
        port: int = 1883,
        username: Optional[str] = None,
        password: Optional[str] = None,
        reconnect_seconds: float = 5.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        state: Optional[ConnectionState] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.topic = topic
        self.username = username
        self.password = password
        self.reconnect_seconds = reconnect_seconds
        self._sleep = sleep
        self.state = state or ConnectionState(connected=False)

    @classmethod
    def from_settings(
        cls, settings: Settings, state: Optional[ConnectionState] = None
    ) -> "MqttTransport":
        return cls(
            host=settings.mqtt_host,
            port=settings.mqtt_port,
            topic=settings.mqtt_topic,
            username=settings.mqtt_username,
            password=settings.mqtt_password,
            reconnect_seconds=settings.mqtt_reconnect_seconds,
            state=state,
        )

    @property
    def connected(self) -> bool:
        return self.state.connected

    def _client(self) -> aiomqtt.Client:
        return aiomqtt.Client(
            self.host,
            port=self.port,
            username=self.username,
            password=self.password,
        )

    async def messages(self) -> AsyncIterator[bytes]:
        while True:
            try:
                async with self._client() as client:
                    self.state.mark_up()
                    logger.info(
                        "Connected to MQTT broker %s:%d", self.host, self.port
                    )
                    await client.subscribe(self.topic)
                    logger.info("Subscribed to topic", extra={"topic": self.topic})
                    async for message in client.messages:
                        yield _payload_bytes(message.payload)
            except aiomqtt.MqttError as exc:
                logger.error(
                    "MQTT connection lost: %s",
                    exc,
                    extra={"topic": self.topic, "reason": type(exc).__name__},
                )
            finally:
                if self.state.connected:
                    logger.info("MQTT connection closed", extra={"topic": self.topic})
                self.state.mark_down()

            logger.info(
                "Attempting to reconnect to MQTT broker in %.1fs", self.reconnect_seconds
            )
            await self._sleep(self.reconnect_seconds)


def _payload_bytes(payload: object) -> bytes:
    if isinstance(payload, (bytes, bytearray)):
        return bytes(payload)
    if payload is None:
        return b""
    return str(payload).encode("utf-8")
