"""Per-device reading table and closest-room resolver.

The resolver is the only component allowed to mutate the table or the
resolved state. All mutations happen under a single lock so message-driven
ingestion and timer-driven sweeps never interleave.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Callable
from datetime import UTC, datetime

from pyespresense.state.events import (
    DISTANCE_UNIT,
    PresenceChange,
    PresenceUpdate,
    ResolvedState,
    RoomReading,
    ensure_tz_aware,
)
from pyespresense.state.policy import age_seconds, is_stale, select_closest

_logger = logging.getLogger(__name__)

PresenceSink = Callable[[PresenceUpdate], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReadingTable:
    """Latest reading per room, remembering first-seen order."""

    def __init__(self) -> None:
        self._readings: dict[str, RoomReading] = {}
        self._sequence = 0

    def __len__(self) -> int:
        return len(self._readings)

    def __contains__(self, room: object) -> bool:
        return room in self._readings

    def get(self, room: str) -> RoomReading | None:
        return self._readings.get(room)

    def readings(self) -> list[RoomReading]:
        return list(self._readings.values())

    def upsert(self, room: str, distance: float, now: datetime) -> RoomReading:
        """Overwrite the reading for *room*.

        ``observed_at`` never moves backwards for a room, and a room keeps
        its first-seen position until it is evicted.
        """
        existing = self._readings.get(room)
        if existing is None:
            self._sequence += 1
            reading = RoomReading(room=room, distance=distance, observed_at=now, first_seen=self._sequence)
        else:
            reading = RoomReading(
                room=room,
                distance=distance,
                observed_at=max(existing.observed_at, now),
                first_seen=existing.first_seen,
            )
        self._readings[room] = reading
        return reading

    def evict_stale(self, now: datetime, timeout_seconds: float) -> list[RoomReading]:
        """Remove and return every reading older than *timeout_seconds*."""
        stale = [reading for reading in self._readings.values() if is_stale(now, reading, timeout_seconds)]
        for reading in stale:
            del self._readings[reading.room]
        return stale

    def clear(self) -> None:
        self._readings.clear()
        self._sequence = 0


class ProximityResolver:
    """Tracks which room a single device is closest to.

    Every operation returns the :class:`PresenceUpdate` it emitted, or
    ``None`` when the room did not change. The sink is called while the
    lock is held so updates reach it in order; it must not block.
    """

    def __init__(
        self,
        *,
        sink: PresenceSink | None = None,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._logger = logger or _logger
        self._lock = threading.RLock()
        self._table = ReadingTable()
        self._state = ResolvedState()

    @property
    def state(self) -> ResolvedState:
        return self._state

    def readings(self) -> dict[str, RoomReading]:
        """Snapshot of the current table keyed by room."""
        with self._lock:
            return {reading.room: reading for reading in self._table.readings()}

    def reset(self) -> None:
        """Drop all readings and forget the resolved state without emitting."""
        with self._lock:
            self._table.clear()
            self._state = ResolvedState()

    def ingest(self, room: str, distance: float, now: datetime | None = None) -> PresenceUpdate | None:
        """Record a distance for *room* and recompute the closest room."""
        if not room or not math.isfinite(distance) or distance < 0:
            self._logger.debug("Rejected reading room=%r distance=%r", room, distance)
            return None
        with self._lock:
            now = ensure_tz_aware(now or self._clock())
            self._table.upsert(room, distance, now)
            return self.recompute(now)

    def sweep(self, timeout_seconds: float, now: datetime | None = None) -> PresenceUpdate | None:
        """Evict stale readings; recompute only if something was removed."""
        with self._lock:
            now = ensure_tz_aware(now or self._clock())
            stale = self._table.evict_stale(now, timeout_seconds)
            if not stale:
                return None
            for reading in stale:
                self._logger.debug(
                    "Room %s data is stale (%.1fs old)",
                    reading.room,
                    age_seconds(now, reading),
                )
            return self.recompute(now)

    def recompute(self, now: datetime | None = None) -> PresenceUpdate | None:
        """Select the closest room and emit if it changed."""
        with self._lock:
            now = ensure_tz_aware(now or self._clock())
            current = self._state
            closest = select_closest(self._table.readings())

            if closest is None:
                if current.closest_room is None:
                    return None
                self._logger.info("No room data available")
                self._state = ResolvedState(
                    closest_room=None,
                    closest_distance=None,
                    previous_room=current.closest_room,
                    changed_at=now,
                )
                return self._emit(PresenceChange.PRESENCE_LOST)

            self._logger.debug("Closest room: %s at %s%s", closest.room, closest.distance, DISTANCE_UNIT)

            if closest.room == current.closest_room:
                if closest.distance != current.closest_distance:
                    self._state = current.model_copy(update={"closest_distance": closest.distance})
                return None

            self._logger.info(
                "Room changed: %s -> %s (%s%s)",
                current.closest_room or "none",
                closest.room,
                closest.distance,
                DISTANCE_UNIT,
            )
            self._state = ResolvedState(
                closest_room=closest.room,
                closest_distance=closest.distance,
                previous_room=current.closest_room,
                changed_at=now,
            )
            return self._emit(PresenceChange.ROOM_CHANGED)

    def _emit(self, change: PresenceChange) -> PresenceUpdate:
        update = PresenceUpdate(change=change, state=self._state)
        if self._sink is not None:
            try:
                self._sink(update)
            except Exception:
                self._logger.warning("Presence sink failed for %s", change, exc_info=True)
        return update
