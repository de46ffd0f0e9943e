from __future__ import annotations

import pytest

from pyespresense.decoder import decode_message, distance_from_payload, room_from_topic
from pyespresense.exceptions import EspresenseDecodeError

TOPIC = "espresense/devices/phone:tim/kitchen"


@pytest.mark.parametrize("payload", ['{"distance": 3.2}', "distance=3.2", "3.2"])
def test_supported_payload_formats_decode_same_distance(payload: str) -> None:
    assert decode_message(TOPIC, payload).distance == 3.2


def test_json_payload_ignores_extra_fields_and_coerces_string_distance() -> None:
    payload = '{"id": "phone:tim", "rssi": -65, "raw": 4.1, "distance": "1.25", "speed": 0.01}'
    assert distance_from_payload(payload) == 1.25


def test_key_value_payload_uses_text_after_first_equals() -> None:
    assert distance_from_payload("distance = 0.75 ") == 0.75


def test_surrounding_whitespace_is_ignored() -> None:
    assert distance_from_payload("  \n 2 \t") == 2.0
    assert distance_from_payload('   {"distance": 2}') == 2.0


def test_zero_distance_is_valid() -> None:
    assert distance_from_payload("0") == 0.0


def test_bytes_payload_is_decoded_as_utf8() -> None:
    reading = decode_message(TOPIC, b'{"distance": 1.5}')
    assert reading.room == "kitchen"
    assert reading.distance == 1.5


def test_room_is_last_topic_segment() -> None:
    assert room_from_topic("espresense/devices/phone:tim/living_room") == "living_room"


def test_room_ignores_trailing_slash() -> None:
    assert room_from_topic("espresense/devices/phone:tim/office/") == "office"


def test_room_segment_with_embedded_value_is_truncated() -> None:
    assert room_from_topic("espresense/devices/phone:tim/ den =4.0") == "den"


def test_empty_topic_rejected() -> None:
    with pytest.raises(EspresenseDecodeError):
        room_from_topic("///")


def test_room_segment_empty_before_equals_rejected() -> None:
    with pytest.raises(EspresenseDecodeError):
        room_from_topic("espresense/devices/phone:tim/=4.0")


@pytest.mark.parametrize(
    "payload",
    [
        "",
        "   ",
        "{not json",
        '{"rssi": -70}',
        '{"distance": null}',
        '{"distance": true}',
        '{"distance": false}',
        '{"distance": "far"}',
        "distance=",
        "distance=abc",
        "near",
        "-1.5",
        "distance=-0.1",
        '{"distance": -2}',
        "nan",
        "distance=inf",
    ],
)
def test_invalid_payloads_raise_decode_error(payload: str) -> None:
    with pytest.raises(EspresenseDecodeError):
        decode_message(TOPIC, payload)


def test_decode_error_carries_topic_and_payload() -> None:
    with pytest.raises(EspresenseDecodeError) as excinfo:
        decode_message(TOPIC, "bogus")
    assert excinfo.value.topic == TOPIC
    assert excinfo.value.payload == "bogus"


def test_json_branch_does_not_fall_back_to_key_value() -> None:
    # A broken object is a failure even though it contains "=".
    with pytest.raises(EspresenseDecodeError):
        distance_from_payload("{distance=1.0}")


def test_boolean_json_distance_is_not_coerced() -> None:
    with pytest.raises(EspresenseDecodeError, match="boolean"):
        decode_message(TOPIC, '{"distance": true}')
