"""Connection supervision for the MQTT session.

State machine::

    DISCONNECTED -> CONNECTING -> CONNECTED
    CONNECTING | CONNECTED -> BACKOFF -> CONNECTING

The supervisor owns every timer of a tracker: the periodic staleness sweep,
the single in-flight reconnect and the delayed subscribe. ``stop()`` cancels
all of them.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
from collections.abc import Callable
from enum import StrEnum

from pyespresense._mqtt import ConnectionStatus, ConnectionStatusKind, MessageHandler, Transport
from pyespresense._scheduler import Scheduler, TimerHandle
from pyespresense.exceptions import EspresenseTransportError

_logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_FLOOR: float = 10.0
DEFAULT_BACKOFF_CEILING: float = 300.0


class ConnectionPhase(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


@dataclasses.dataclass(frozen=True)
class ConnectionState:
    phase: ConnectionPhase
    current_delay: float


def next_backoff_delay(delay: float, ceiling: float) -> float:
    """Delay to use after one more consecutive failure."""
    return min(delay * 2, ceiling)


class ConnectionSupervisor:
    """Keeps the transport connected and subscribed.

    Failures move the supervisor into ``BACKOFF`` and schedule a reconnect
    after ``current_delay``; the delay then doubles (up to the ceiling) until
    a successful connection resets it to the floor.
    """

    def __init__(
        self,
        *,
        transport: Transport,
        scheduler: Scheduler,
        address: str,
        client_id: str,
        topic_filter: str,
        on_message: MessageHandler,
        qos: int = 1,
        on_sweep: Callable[[], None] | None = None,
        sweep_interval: float = 15.0,
        subscribe_delay: float = 1.0,
        backoff_floor: float = DEFAULT_BACKOFF_FLOOR,
        backoff_ceiling: float = DEFAULT_BACKOFF_CEILING,
        logger: logging.Logger | None = None,
    ) -> None:
        self._transport = transport
        self._scheduler = scheduler
        self._address = address
        self._client_id = client_id
        self._topic_filter = topic_filter
        self._qos = qos
        self._on_message = on_message
        self._on_sweep = on_sweep
        self._sweep_interval = sweep_interval
        self._subscribe_delay = subscribe_delay
        self._backoff_floor = backoff_floor
        self._backoff_ceiling = backoff_ceiling
        self._logger = logger or _logger
        self._lock = threading.RLock()

        self._state = ConnectionState(ConnectionPhase.DISCONNECTED, backoff_floor)
        self._sweep_handle: TimerHandle | None = None
        self._reconnect_handle: TimerHandle | None = None
        self._subscribe_handle: TimerHandle | None = None

        transport.bind(self.handle_message, self.handle_status)

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def phase(self) -> ConnectionPhase:
        return self._state.phase

    @property
    def topic_filter(self) -> str:
        return self._topic_filter

    def _set_state(self, **changes: object) -> None:
        self._state = dataclasses.replace(self._state, **changes)  # type: ignore[arg-type]

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Connect from ``DISCONNECTED`` and start the sweep timer."""
        with self._lock:
            if self._state.phase != ConnectionPhase.DISCONNECTED:
                self._logger.debug("Supervisor already started (phase=%s)", self._state.phase)
                return
            if self._on_sweep is not None:
                self._sweep_handle = self._scheduler.every(self._sweep_interval, self._on_sweep)
            self._connect()

    def stop(self) -> None:
        """Cancel all timers, unsubscribe and disconnect. Idempotent."""
        with self._lock:
            self._scheduler.cancel(self._sweep_handle)
            self._scheduler.cancel(self._reconnect_handle)
            self._scheduler.cancel(self._subscribe_handle)
            self._sweep_handle = None
            self._reconnect_handle = None
            self._subscribe_handle = None

            if self._state.phase == ConnectionPhase.DISCONNECTED:
                return
            self._set_state(phase=ConnectionPhase.DISCONNECTED)

            self._logger.info("Disconnecting from MQTT broker")
            try:
                self._transport.unsubscribe(self._topic_filter)
            except EspresenseTransportError as exc:
                self._logger.debug("Error during unsubscribe: %s", exc)
            try:
                self._transport.disconnect()
            except EspresenseTransportError as exc:
                self._logger.debug("Error during disconnect: %s", exc)

    # ------------------------------------------------------------------
    # Transport notifications
    # ------------------------------------------------------------------

    def handle_status(self, status: ConnectionStatus) -> None:
        with self._lock:
            phase = self._state.phase
            if phase == ConnectionPhase.DISCONNECTED:
                self._logger.debug("Ignoring %s while disconnected", status.kind)
                return

            if status.kind == ConnectionStatusKind.SUCCEEDED:
                self._logger.info("MQTT connection succeeded")
                self._scheduler.cancel(self._reconnect_handle)
                self._reconnect_handle = None
                self._set_state(phase=ConnectionPhase.CONNECTED, current_delay=self._backoff_floor)
                self._scheduler.cancel(self._subscribe_handle)
                self._subscribe_handle = self._scheduler.after(self._subscribe_delay, self._subscribe)
                return

            if phase == ConnectionPhase.BACKOFF:
                self._logger.debug("Ignoring MQTT error while backing off: %s", status.detail)
                return
            self._logger.warning("MQTT error: %s", status.detail)
            self._enter_backoff()

    def handle_message(self, topic: str, payload: str) -> None:
        if self._state.phase != ConnectionPhase.CONNECTED:
            self._logger.debug("Dropping message on %s received while %s", topic, self._state.phase)
            return
        self._on_message(topic, payload)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        self._set_state(phase=ConnectionPhase.CONNECTING)
        self._logger.info("Connecting to MQTT broker: %s", self._address)
        try:
            self._transport.connect(self._address, self._client_id)
        except EspresenseTransportError as exc:
            self._logger.warning("Error connecting to MQTT: %s", exc)
            self._enter_backoff()

    def _enter_backoff(self) -> None:
        self._scheduler.cancel(self._subscribe_handle)
        self._subscribe_handle = None
        self._scheduler.cancel(self._reconnect_handle)

        delay = self._state.current_delay
        self._set_state(
            phase=ConnectionPhase.BACKOFF,
            current_delay=next_backoff_delay(delay, self._backoff_ceiling),
        )
        self._logger.info("Reconnecting in %s seconds", delay)
        self._reconnect_handle = self._scheduler.after(delay, self._reconnect)

    def _reconnect(self) -> None:
        with self._lock:
            self._reconnect_handle = None
            if self._state.phase != ConnectionPhase.BACKOFF:
                return
            self._connect()

    def _subscribe(self) -> None:
        with self._lock:
            self._subscribe_handle = None
            if self._state.phase != ConnectionPhase.CONNECTED:
                return
            try:
                self._transport.subscribe(self._topic_filter, self._qos)
            except EspresenseTransportError as exc:
                self._logger.warning("MQTT subscribe failed: %s", exc)
                self._enter_backoff()
                return
            self._logger.debug("Subscribed to topic: %s", self._topic_filter)
