"""High-level presence tracker for a single ESPresense device."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime, tzinfo
from typing import Any

from pyespresense._mqtt import PahoTransport, Transport
from pyespresense._scheduler import AsyncioScheduler, Scheduler
from pyespresense.config import TrackerConfig
from pyespresense.decoder import decode_message
from pyespresense.exceptions import EspresenseDecodeError, EspresenseError
from pyespresense.state.events import PresenceUpdate, ResolvedState, RoomReading, state_attributes
from pyespresense.state.store import PresenceSink, ProximityResolver
from pyespresense.supervisor import ConnectionState, ConnectionSupervisor

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class PresenceTracker:
    """Resolves the closest room of one device from ESPresense MQTT readings.

    Usage::

        async with PresenceTracker(config, on_update=print) as tracker:
            ...
            print(tracker.attributes())

    ``transport`` and ``scheduler`` may be injected; otherwise a paho-mqtt
    transport and an asyncio scheduler are created on ``__aenter__``.
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        on_update: PresenceSink | None = None,
        transport: Transport | None = None,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._on_update = on_update
        self._transport = transport
        self._scheduler = scheduler
        self._loop: asyncio.AbstractEventLoop | None = None
        self._owns_transport = transport is None
        self._owns_logger = logger is None
        self._logger = logger or _logger.getChild(config.device_id)
        self._apply_log_level()
        self._resolver = ProximityResolver(sink=self._emit, clock=clock, logger=self._logger)
        self._supervisor: ConnectionSupervisor | None = None

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> PresenceTracker:
        self._config.validate()
        self._loop = asyncio.get_running_loop()
        if self._scheduler is None:
            self._scheduler = AsyncioScheduler(self._loop)
        if self._transport is None:
            self._transport = self._build_transport(self._loop)
        self.initialize()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def state(self) -> ResolvedState:
        return self._resolver.state

    @property
    def connection(self) -> ConnectionState | None:
        supervisor = self._supervisor
        return supervisor.state if supervisor is not None else None

    @property
    def time_zone(self) -> tzinfo | None:
        return self._config.zone

    def readings(self) -> dict[str, RoomReading]:
        return self._resolver.readings()

    def attributes(self) -> dict[str, Any]:
        """Current sink attributes, whether or not an update was emitted yet."""
        return state_attributes(self._resolver.state, self.time_zone)

    def initialize(self) -> None:
        """(Re)start tracking: validate, clear state, connect and schedule sweeps.

        Raises :class:`EspresenseConfigError` before touching the transport
        when the configuration is invalid.
        """
        self._config.validate()
        if self._transport is None or self._scheduler is None:
            raise EspresenseError("Tracker not initialized. Use 'async with PresenceTracker(...) as tracker:'")

        self._logger.debug("Initializing MQTT connection")
        self.shutdown()
        self._resolver.reset()

        config = self._config
        self._supervisor = ConnectionSupervisor(
            transport=self._transport,
            scheduler=self._scheduler,
            address=config.broker_address,
            client_id=config.effective_client_id,
            topic_filter=config.topic_filter,
            qos=config.qos,
            on_message=self._handle_message,
            on_sweep=self.sweep,
            sweep_interval=config.sweep_interval,
            subscribe_delay=config.subscribe_delay,
            backoff_floor=config.reconnect_floor,
            backoff_ceiling=config.reconnect_ceiling,
            logger=self._logger,
        )
        self._supervisor.start()

    def reconfigure(self, config: TrackerConfig) -> None:
        """Swap the configuration and reinitialize."""
        config.validate()
        self.shutdown()
        self._config = config
        self._apply_log_level()
        if self._owns_transport and self._loop is not None:
            self._transport = self._build_transport(self._loop)
        self.initialize()

    def refresh(self) -> PresenceUpdate | None:
        """Re-evaluate the closest room from the current readings."""
        self._logger.debug("Refresh requested")
        return self._resolver.recompute()

    def sweep(self) -> PresenceUpdate | None:
        """Evict readings older than ``data_timeout``."""
        return self._resolver.sweep(self._config.data_timeout)

    def shutdown(self) -> None:
        """Stop timers and disconnect. Safe to call repeatedly."""
        supervisor = self._supervisor
        self._supervisor = None
        if supervisor is not None:
            supervisor.stop()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _build_transport(self, loop: asyncio.AbstractEventLoop) -> Transport:
        return PahoTransport(
            loop=loop,
            keepalive=self._config.keepalive,
            username=self._config.username,
            password=self._config.password,
            logger=self._logger,
        )

    def _apply_log_level(self) -> None:
        if not self._owns_logger:
            return
        self._logger.setLevel(logging.DEBUG if self._config.log_enable else logging.INFO)

    def _handle_message(self, topic: str, payload: str) -> None:
        try:
            reading = decode_message(topic, payload)
        except EspresenseDecodeError as exc:
            self._logger.debug("Discarding message topic=%s payload=%r: %s", topic, payload, exc)
            return
        self._logger.debug("Processing message for room: %s, distance: %s", reading.room, reading.distance)
        self._resolver.ingest(reading.room, reading.distance)

    def _emit(self, update: PresenceUpdate) -> None:
        if self._on_update is not None:
            self._on_update(update)
