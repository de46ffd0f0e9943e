"""Custom exception hierarchy for pyespresense."""

from __future__ import annotations


class EspresenseError(Exception):
    """Base exception for all pyespresense errors."""


class EspresenseConfigError(EspresenseError):
    """Invalid or missing configuration.

    Raised before any connection attempt is made.
    """


class EspresenseDecodeError(EspresenseError):
    """An inbound MQTT message could not be turned into a room distance."""

    def __init__(
        self,
        message: str,
        *,
        topic: str = "",
        payload: str = "",
    ) -> None:
        self.topic = topic
        self.payload = payload
        super().__init__(message)


class EspresenseTransportError(EspresenseError):
    """Broker-level failure (connect, subscribe, unsubscribe, disconnect)."""

    def __init__(
        self,
        message: str,
        *,
        operation: str = "",
    ) -> None:
        self.operation = operation
        super().__init__(message)
