"""Readings and resolved presence state.

Every model here is immutable; the store replaces instances rather than
mutating them.
"""

from __future__ import annotations

import math
from datetime import UTC, datetime, tzinfo
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

#: Attribute value used for "no room" in sink attributes.
NO_ROOM = "none"
DISTANCE_UNIT = "m"

_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def ensure_tz_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class RoomReading(BaseModel):
    """Latest distance reported by one room."""

    model_config = ConfigDict(frozen=True)

    room: str
    distance: float = Field(..., ge=0)
    observed_at: datetime
    first_seen: int = Field(
        default=0,
        description="Insertion sequence of the room; lower wins distance ties.",
    )

    @field_validator("room")
    @classmethod
    def _room_not_empty(cls, value: str) -> str:
        if not value:
            raise ValueError("room must be non-empty")
        return value

    @field_validator("distance")
    @classmethod
    def _finite_distance(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("distance must be finite")
        return value

    @field_validator("observed_at")
    @classmethod
    def _observed_tz_aware(cls, value: datetime) -> datetime:
        return ensure_tz_aware(value)


class ResolvedState(BaseModel):
    """Closest room as of the last recomputation.

    ``closest_room is None`` means no fresh data exists.
    """

    model_config = ConfigDict(frozen=True)

    closest_room: str | None = None
    closest_distance: float | None = None
    previous_room: str | None = None
    changed_at: datetime | None = None

    @property
    def present(self) -> bool:
        return self.closest_room is not None


class PresenceChange(StrEnum):
    ROOM_CHANGED = "room_changed"
    PRESENCE_LOST = "presence_lost"


class PresenceUpdate(BaseModel):
    """A state change handed to the sink."""

    model_config = ConfigDict(frozen=True)

    change: PresenceChange
    state: ResolvedState

    @property
    def description(self) -> str:
        if self.change == PresenceChange.PRESENCE_LOST:
            return "No valid room data available"
        return f"Device is closest to {self.state.closest_room}"

    def attributes(self, tz: tzinfo | None = None) -> dict[str, Any]:
        return state_attributes(self.state, tz)


def state_attributes(state: ResolvedState, tz: tzinfo | None = None) -> dict[str, Any]:
    """Render a resolved state as sink attributes.

    ``roomChangedDate`` is formatted in *tz*, or local time when omitted.
    """
    changed_at = state.changed_at
    changed_text = changed_at.astimezone(tz).strftime(_DATE_FORMAT) if changed_at is not None else None
    return {
        "closestRoom": state.closest_room or NO_ROOM,
        "previousRoom": state.previous_room or NO_ROOM,
        "roomChangedDate": changed_text,
        "closestDistance": state.closest_distance,
        "presence": "present" if state.present else "not present",
    }
