"""Decode ESPresense MQTT messages into ``(room, distance)`` pairs.

Supported payloads, tried in order:

* a JSON object with a ``distance`` field (``{"distance": 1.5, "rssi": -65}``)
* ``key=value`` text (``distance=1.5``)
* a bare number (``1.5``)

The room is the last ``/``-separated topic segment. If that segment embeds
a value (``.../kitchen=1.5``) only the part before the first ``=`` is used.
"""

from __future__ import annotations

import math
from typing import NamedTuple

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from pyespresense.exceptions import EspresenseDecodeError


class DecodedReading(NamedTuple):
    room: str
    distance: float


class _DistancePayload(BaseModel):
    """JSON payload envelope; only ``distance`` is read."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    distance: float

    @field_validator("distance", mode="before")
    @classmethod
    def _reject_bool(cls, value: object) -> object:
        if isinstance(value, bool):
            raise ValueError("distance must be a number, not a boolean")
        return value


def room_from_topic(topic: str) -> str:
    segments = [segment for segment in topic.split("/") if segment]
    if not segments:
        raise EspresenseDecodeError("Topic has no room segment", topic=topic)
    room = segments[-1]
    if "=" in room:
        room = room.split("=", 1)[0].strip()
    if not room:
        raise EspresenseDecodeError("Topic room segment is empty", topic=topic)
    return room


def _parse_number(text: str) -> float:
    return float(text.strip())


def distance_from_payload(payload: str) -> float:
    text = payload.strip()
    if not text:
        raise EspresenseDecodeError("Empty payload", payload=payload)

    try:
        if text.startswith("{"):
            distance = _DistancePayload.model_validate_json(text).distance
        elif "=" in payload:
            distance = _parse_number(payload.split("=", 1)[1])
        else:
            distance = _parse_number(text)
    except (ValidationError, ValueError) as exc:
        raise EspresenseDecodeError(f"Failed to parse distance: {exc}", payload=payload) from exc

    if not math.isfinite(distance):
        raise EspresenseDecodeError("Distance is not a finite number", payload=payload)
    if distance < 0:
        raise EspresenseDecodeError(f"Negative distance {distance}", payload=payload)
    return distance


def decode_message(topic: str, payload: str | bytes) -> DecodedReading:
    """Decode one MQTT message or raise :class:`EspresenseDecodeError`."""
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    try:
        return DecodedReading(room=room_from_topic(topic), distance=distance_from_payload(payload))
    except EspresenseDecodeError as exc:
        exc.topic = topic
        exc.payload = payload
        raise
