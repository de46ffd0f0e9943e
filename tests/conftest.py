from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import pytest

from pyespresense._mqtt import ConnectionStatus, MessageHandler, StatusHandler
from pyespresense.exceptions import EspresenseTransportError


@dataclass
class FakeTimer:
    due: float
    delay: float
    callback: Callable[[], None]
    interval: float | None = None
    cancelled: bool = False
    fired: bool = False

    def cancel(self) -> None:
        self.cancelled = True

    @property
    def active(self) -> bool:
        return not self.cancelled and not self.fired


@dataclass
class FakeScheduler:
    """Manual-clock scheduler; time only moves through :meth:`advance`."""

    now: float = 0.0
    timers: list[FakeTimer] = field(default_factory=list)

    def after(self, delay: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(due=self.now + delay, delay=delay, callback=callback)
        self.timers.append(timer)
        return timer

    def every(self, interval: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(due=self.now + interval, delay=interval, callback=callback, interval=interval)
        self.timers.append(timer)
        return timer

    def cancel(self, handle: Any) -> None:
        if handle is not None:
            handle.cancel()

    def pending(self) -> list[FakeTimer]:
        return [timer for timer in self.timers if timer.active]

    def pending_once(self) -> list[FakeTimer]:
        return [timer for timer in self.pending() if timer.interval is None]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [timer for timer in self.pending() if timer.due <= target]
            if not due:
                break
            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            if timer.interval is None:
                timer.fired = True
            else:
                timer.due += timer.interval
            timer.callback()
        self.now = target


@dataclass
class FakeTransport:
    """Records requests; notifications are pushed by the test."""

    calls: list[tuple[Any, ...]] = field(default_factory=list)
    fail_connect: bool = False
    fail_subscribe: bool = False
    fail_teardown: bool = False
    on_message: MessageHandler | None = None
    on_status: StatusHandler | None = None

    def bind(self, on_message: MessageHandler, on_status: StatusHandler) -> None:
        self.on_message = on_message
        self.on_status = on_status

    def connect(self, address: str, client_id: str) -> None:
        self.calls.append(("connect", address, client_id))
        if self.fail_connect:
            raise EspresenseTransportError("connection refused", operation="connect")

    def subscribe(self, topic_filter: str, qos: int) -> None:
        self.calls.append(("subscribe", topic_filter, qos))
        if self.fail_subscribe:
            raise EspresenseTransportError("subscribe rejected", operation="subscribe")

    def unsubscribe(self, topic_filter: str) -> None:
        self.calls.append(("unsubscribe", topic_filter))
        if self.fail_teardown:
            raise EspresenseTransportError("not connected", operation="unsubscribe")

    def disconnect(self) -> None:
        self.calls.append(("disconnect",))
        if self.fail_teardown:
            raise EspresenseTransportError("not connected", operation="disconnect")

    def count(self, name: str) -> int:
        return sum(1 for call in self.calls if call[0] == name)

    def succeed(self) -> None:
        assert self.on_status is not None
        self.on_status(ConnectionStatus.succeeded())

    def fail(self, detail: str = "connection lost") -> None:
        assert self.on_status is not None
        self.on_status(ConnectionStatus.error(detail))

    def deliver(self, topic: str, payload: str) -> None:
        assert self.on_message is not None
        self.on_message(topic, payload)


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
