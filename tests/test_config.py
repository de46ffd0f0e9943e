from __future__ import annotations

import pytest

from pyespresense.config import TrackerConfig, parse_broker
from pyespresense.exceptions import EspresenseConfigError


def _config(**overrides: object) -> TrackerConfig:
    values: dict[str, object] = {
        "broker": "mqtt.local",
        "topic_base": "espresense/devices",
        "device_id": "phone:timsiphone",
    }
    values.update(overrides)
    return TrackerConfig(**values)  # type: ignore[arg-type]


def test_defaults_match_driver_preferences() -> None:
    config = _config()
    config.validate()
    assert config.data_timeout == 15
    assert config.log_enable is False
    assert config.qos == 1
    assert config.sweep_interval == 15.0


def test_topic_filter_covers_all_rooms_of_the_device() -> None:
    assert _config().topic_filter == "espresense/devices/phone:timsiphone/#"
    assert _config(topic_base="espresense/devices/").topic_filter == "espresense/devices/phone:timsiphone/#"


@pytest.mark.parametrize(
    ("broker", "address"),
    [
        ("mqtt.local", "tcp://mqtt.local:1883"),
        ("mqtt.local:1884", "tcp://mqtt.local:1884"),
        ("tcp://10.0.0.2:1883", "tcp://10.0.0.2:1883"),
        ("mqtt://broker/", "tcp://broker:1883"),
    ],
)
def test_broker_address_is_normalized(broker: str, address: str) -> None:
    assert _config(broker=broker).broker_address == address


def test_parse_broker_rejects_empty_value() -> None:
    with pytest.raises(ValueError):
        parse_broker("tcp://")


@pytest.mark.parametrize("broker", ["mqtt.local:abc", "mqtt.local:", "mqtt.local:0", "mqtt.local:70000", ":1883"])
def test_parse_broker_rejects_bad_port_or_host(broker: str) -> None:
    with pytest.raises(ValueError):
        parse_broker(broker)


def test_unusable_broker_port_fails_validation() -> None:
    with pytest.raises(EspresenseConfigError, match="broker is invalid"):
        _config(broker="mqtt.local:abc").validate()


def test_client_id_derived_from_device_id() -> None:
    assert _config().effective_client_id == "espresense_phone_timsiphone"
    assert _config(client_id="custom").effective_client_id == "custom"


@pytest.mark.parametrize("field_name", ["broker", "topic_base", "device_id"])
def test_missing_required_setting_is_reported(field_name: str) -> None:
    with pytest.raises(EspresenseConfigError, match=f"{field_name} is required"):
        _config(**{field_name: "  "}).validate()


@pytest.mark.parametrize("timeout", [5, 15, 120])
def test_data_timeout_bounds_are_inclusive(timeout: float) -> None:
    _config(data_timeout=timeout).validate()


@pytest.mark.parametrize("timeout", [4.9, 0, 121])
def test_data_timeout_out_of_range_rejected(timeout: float) -> None:
    with pytest.raises(EspresenseConfigError, match="data_timeout"):
        _config(data_timeout=timeout).validate()


def test_invalid_backoff_bounds_rejected() -> None:
    with pytest.raises(EspresenseConfigError, match="reconnect_floor"):
        _config(reconnect_floor=60.0, reconnect_ceiling=30.0).validate()


def test_unknown_time_zone_rejected() -> None:
    with pytest.raises(EspresenseConfigError, match="time_zone"):
        _config(time_zone="Mars/Olympus_Mons").validate()


def test_zone_defaults_to_local_time() -> None:
    assert _config().zone is None


def test_from_env_reads_variables_and_overrides_win(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ESPRESENSE_BROKER", "mqtt.env")
    monkeypatch.setenv("ESPRESENSE_TOPIC_BASE", "espresense/devices")
    monkeypatch.setenv("ESPRESENSE_DEVICE_ID", "watch:anna")
    monkeypatch.setenv("ESPRESENSE_DATA_TIMEOUT", "30")
    monkeypatch.setenv("ESPRESENSE_LOG_ENABLE", "yes")

    config = TrackerConfig.from_env(broker="mqtt.override:1999")

    assert config.broker == "mqtt.override:1999"
    assert config.device_id == "watch:anna"
    assert config.data_timeout == 30.0
    assert config.log_enable is True


def test_from_env_without_variables_fails_validation(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("ESPRESENSE_BROKER", "ESPRESENSE_TOPIC_BASE", "ESPRESENSE_DEVICE_ID"):
        monkeypatch.delenv(name, raising=False)

    config = TrackerConfig.from_env()

    with pytest.raises(EspresenseConfigError) as excinfo:
        config.validate()
    message = str(excinfo.value)
    assert "broker is required" in message
    assert "device_id is required" in message
