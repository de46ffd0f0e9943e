"""Internal MQTT transport.

The supervisor only talks to the :class:`Transport` protocol. Requests
(connect, subscribe, ...) return immediately; outcomes arrive later as
:class:`ConnectionStatus` notifications and inbound messages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Protocol, cast

import paho.mqtt.client as mqtt

from pyespresense.config import parse_broker
from pyespresense.exceptions import EspresenseTransportError


class ConnectionStatusKind(StrEnum):
    SUCCEEDED = "connection_succeeded"
    ERROR = "error"


@dataclass(frozen=True)
class ConnectionStatus:
    """Connection-status notification from the transport."""

    kind: ConnectionStatusKind
    detail: str = ""

    @classmethod
    def succeeded(cls) -> ConnectionStatus:
        return cls(ConnectionStatusKind.SUCCEEDED)

    @classmethod
    def error(cls, detail: str) -> ConnectionStatus:
        return cls(ConnectionStatusKind.ERROR, detail)


MessageHandler = Callable[[str, str], None]
StatusHandler = Callable[[ConnectionStatus], None]


class Transport(Protocol):
    """Structural transport interface used by the connection supervisor.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`PahoTransport`) concrete.
    """

    def bind(self, on_message: MessageHandler, on_status: StatusHandler) -> None:
        ...

    def connect(self, address: str, client_id: str) -> None:
        ...

    def subscribe(self, topic_filter: str, qos: int) -> None:
        ...

    def unsubscribe(self, topic_filter: str) -> None:
        ...

    def disconnect(self) -> None:
        ...


class PahoTransport:
    """Threaded paho-mqtt transport that delivers notifications onto an asyncio loop.

    paho's own reconnect logic is disabled; reconnecting is the supervisor's
    job. Each ``connect`` replaces the previous client.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        keepalive: int = 60,
        username: str | None = None,
        password: str | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._keepalive = keepalive
        self._username = username
        self._password = password
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._on_message: MessageHandler | None = None
        self._on_status: StatusHandler | None = None

    @property
    def is_connected(self) -> bool:
        client = self._client
        return client is not None and client.is_connected()

    def bind(self, on_message: MessageHandler, on_status: StatusHandler) -> None:
        self._on_message = on_message
        self._on_status = on_status

    def _notify_status(self, status: ConnectionStatus) -> None:
        if self._on_status is not None:
            self._loop.call_soon_threadsafe(self._on_status, status)

    def connect(self, address: str, client_id: str) -> None:
        """Start an asynchronous connection attempt."""
        self.disconnect()
        try:
            host, port = parse_broker(address)
        except ValueError as exc:
            raise EspresenseTransportError(str(exc), operation="connect") from exc

        self._logger.debug("MQTT connect requested host=%s port=%s client_id=%s", host, port, client_id)

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=client_id,
            reconnect_on_failure=False,
        )
        client.enable_logger(self._logger)
        if self._username:
            client.username_pw_set(self._username, self._password)

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if c is not self._client:
                return
            if reason_code.value != 0:
                self._notify_status(ConnectionStatus.error(f"connect refused: {reason_code}"))
                return
            self._notify_status(ConnectionStatus.succeeded())

        def on_connect_fail(c: mqtt.Client, _userdata: Any) -> None:
            if c is not self._client:
                return
            # Stop paho's first-connection retry loop.
            c.disconnect()
            self._notify_status(ConnectionStatus.error("connection failed"))

        def on_disconnect(
            c: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if c is not self._client:
                return
            self._notify_status(ConnectionStatus.error(f"connection lost: {reason_code}"))

        def on_message(c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            if c is not self._client or self._on_message is None:
                return
            payload = msg.payload.decode("utf-8", errors="replace")
            self._loop.call_soon_threadsafe(self._on_message, msg.topic, payload)

        client.on_connect = on_connect
        client.on_connect_fail = on_connect_fail
        client.on_disconnect = on_disconnect
        client.on_message = on_message

        try:
            client.connect_async(host, port, keepalive=self._keepalive)
        except (OSError, ValueError) as exc:
            raise EspresenseTransportError(f"MQTT connect failed: {exc}", operation="connect") from exc

        self._client = client
        client.loop_start()
        self._logger.debug("MQTT network loop started")

    def subscribe(self, topic_filter: str, qos: int) -> None:
        client = self._client
        if client is None:
            raise EspresenseTransportError("Not connected", operation="subscribe")
        result, _mid = client.subscribe(topic_filter, qos=qos)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise EspresenseTransportError(
                f"MQTT subscribe failed: {mqtt.error_string(result)}",
                operation="subscribe",
            )

    def unsubscribe(self, topic_filter: str) -> None:
        client = self._client
        if client is None:
            return
        result, _mid = client.unsubscribe(topic_filter)
        if result != mqtt.MQTT_ERR_SUCCESS:
            raise EspresenseTransportError(
                f"MQTT unsubscribe failed: {mqtt.error_string(result)}",
                operation="unsubscribe",
            )

    def disconnect(self) -> None:
        """Disconnect and stop the network loop; safe when already disconnected."""
        client = self._client
        self._client = None
        if client is None:
            return
        try:
            self._logger.debug("MQTT disconnect requested")
            client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")
