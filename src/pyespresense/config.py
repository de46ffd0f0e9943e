"""Tracker configuration for pyespresense."""

from __future__ import annotations

import dataclasses
import os
import re
from datetime import tzinfo
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pyespresense.exceptions import EspresenseConfigError

#: Inclusive bounds for :attr:`TrackerConfig.data_timeout`.
DATA_TIMEOUT_MIN: float = 5
DATA_TIMEOUT_MAX: float = 120

DEFAULT_MQTT_PORT = 1883

_CLIENT_ID_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def parse_broker(raw_broker: str) -> tuple[str, int]:
    """Split a ``[scheme://]host[:port]`` broker value into host and port."""
    value = raw_broker.strip()
    if "://" in value:
        value = value.split("://", 1)[1]
    if "/" in value:
        value = value.split("/", 1)[0]
    if not value:
        raise ValueError("Broker value is empty")

    host, sep, raw_port = value.rpartition(":")
    if not sep:
        return value, DEFAULT_MQTT_PORT
    if not host:
        raise ValueError(f"Broker host is empty: {raw_broker!r}")
    if not raw_port.isdigit() or not 1 <= int(raw_port) <= 65535:
        raise ValueError(f"Broker port must be 1-65535, got {raw_port!r}")
    return host, int(raw_port)


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Configuration for tracking a single device.

    Parameters
    ----------
    broker : str
        MQTT broker as ``host[:port]``. A ``tcp://`` or ``mqtt://`` prefix
        is accepted and ignored.
    topic_base : str
        ESPresense topic base (e.g. ``"espresense/devices"``).
    device_id : str
        Unique ID of the tracked device (e.g. ``"phone:timsiphone"``).
    data_timeout : float
        Seconds before a room reading is considered stale (5-120).
    log_enable : bool
        Enable debug logging for this device's tracker.
    client_id : str or None
        MQTT client id. Derived from ``device_id`` when omitted.
    username, password : str or None
        Optional broker credentials.
    keepalive : int
        MQTT keepalive in seconds.
    qos : int
        QoS level used for the subscription.
    sweep_interval : float
        Seconds between staleness sweeps.
    subscribe_delay : float
        Settle delay between a successful connect and the subscribe.
    reconnect_floor, reconnect_ceiling : float
        Bounds of the exponential reconnect backoff, in seconds.
    time_zone : str or None
        IANA time zone used to render ``roomChangedDate``. Local time
        when omitted.
    """

    broker: str
    topic_base: str
    device_id: str
    data_timeout: float = 15
    log_enable: bool = False
    client_id: str | None = None
    username: str | None = None
    password: str | None = None
    keepalive: int = 60
    qos: int = 1
    sweep_interval: float = 15.0
    subscribe_delay: float = 1.0
    reconnect_floor: float = 10.0
    reconnect_ceiling: float = 300.0
    time_zone: str | None = None

    @property
    def topic_filter(self) -> str:
        """Subscription filter for every room reporting on this device."""
        return f"{self.topic_base.strip().rstrip('/')}/{self.device_id.strip()}/#"

    @property
    def broker_address(self) -> str:
        """Normalized ``tcp://host:port`` connect address."""
        host, port = parse_broker(self.broker)
        return f"tcp://{host}:{port}"

    @property
    def effective_client_id(self) -> str:
        if self.client_id:
            return self.client_id
        return f"espresense_{_CLIENT_ID_UNSAFE.sub('_', self.device_id.strip())}"

    @property
    def zone(self) -> tzinfo | None:
        """Time zone for rendered dates; ``None`` means local time."""
        if not self.time_zone:
            return None
        return ZoneInfo(self.time_zone)

    def validate(self) -> None:
        """Raise :class:`EspresenseConfigError` if the configuration is unusable."""
        problems: list[str] = []
        for name in ("broker", "topic_base", "device_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                problems.append(f"{name} is required")

        if not problems:
            try:
                parse_broker(self.broker)
            except ValueError as exc:
                problems.append(f"broker is invalid: {exc}")

        if not DATA_TIMEOUT_MIN <= self.data_timeout <= DATA_TIMEOUT_MAX:
            problems.append(
                f"data_timeout must be between {DATA_TIMEOUT_MIN:g} and {DATA_TIMEOUT_MAX:g} seconds"
            )
        if self.qos not in (0, 1, 2):
            problems.append("qos must be 0, 1 or 2")
        if self.sweep_interval <= 0:
            problems.append("sweep_interval must be positive")
        if self.subscribe_delay < 0:
            problems.append("subscribe_delay must not be negative")
        if self.reconnect_floor <= 0 or self.reconnect_ceiling < self.reconnect_floor:
            problems.append("reconnect_floor must be positive and not above reconnect_ceiling")
        if self.time_zone:
            try:
                ZoneInfo(self.time_zone)
            except (ZoneInfoNotFoundError, ValueError):
                problems.append(f"time_zone {self.time_zone!r} is unknown")

        if problems:
            raise EspresenseConfigError("Invalid tracker configuration: " + "; ".join(problems))

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from environment variables.

        Reads ``ESPRESENSE_BROKER``, ``ESPRESENSE_TOPIC_BASE``,
        ``ESPRESENSE_DEVICE_ID`` and the optional ``ESPRESENSE_*``
        variables. Explicit keyword arguments override environment values.
        Missing required values are reported by :meth:`validate`, not here.
        """
        env = os.environ

        _ENV_CONFIG_MAP = {
            "ESPRESENSE_BROKER": "broker",
            "ESPRESENSE_TOPIC_BASE": "topic_base",
            "ESPRESENSE_DEVICE_ID": "device_id",
            "ESPRESENSE_CLIENT_ID": "client_id",
            "ESPRESENSE_USERNAME": "username",
            "ESPRESENSE_PASSWORD": "password",
            "ESPRESENSE_TIME_ZONE": "time_zone",
        }
        config_kwargs: dict[str, Any] = {"broker": "", "topic_base": "", "device_id": ""}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        timeout_env = env.get("ESPRESENSE_DATA_TIMEOUT")
        if timeout_env is not None and "data_timeout" not in overrides:
            config_kwargs["data_timeout"] = float(timeout_env)

        keepalive_env = env.get("ESPRESENSE_KEEPALIVE")
        if keepalive_env is not None and "keepalive" not in overrides:
            config_kwargs["keepalive"] = int(keepalive_env)

        if "log_enable" not in overrides:
            config_kwargs["log_enable"] = _env_bool(env.get("ESPRESENSE_LOG_ENABLE"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
