"""Staleness and closest-room selection rules.

Pure functions only; the store owns mutation and locking.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from pyespresense.state.events import RoomReading


def age_seconds(now: datetime, reading: RoomReading) -> float:
    return (now - reading.observed_at).total_seconds()


def is_stale(now: datetime, reading: RoomReading, timeout_seconds: float) -> bool:
    """A reading is stale once its age strictly exceeds the timeout."""
    return age_seconds(now, reading) > timeout_seconds


def select_closest(readings: Iterable[RoomReading]) -> RoomReading | None:
    """Return the reading with minimum distance.

    Ties go to the room that was inserted into the table first.
    """
    best: RoomReading | None = None
    for reading in readings:
        if best is None or (reading.distance, reading.first_seen) < (best.distance, best.first_seen):
            best = reading
    return best
