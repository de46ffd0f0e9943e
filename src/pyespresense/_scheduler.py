"""Timer scheduling used by the connection supervisor and the sweep loop.

Components depend on the :class:`Scheduler` protocol so tests can drive
time by hand instead of waiting on the wall clock.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol

_logger = logging.getLogger(__name__)


class TimerHandle(Protocol):
    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    """Structural scheduler interface.

    ``after`` runs *callback* once, ``every`` runs it repeatedly until the
    returned handle is cancelled. ``cancel`` accepts ``None`` so callers can
    cancel optional handles unconditionally.
    """

    def after(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        ...

    def cancel(self, handle: TimerHandle | None) -> None:
        ...


def _run_callback(callback: Callable[[], None]) -> None:
    try:
        callback()
    except Exception:
        _logger.warning("Scheduled callback %r failed", callback, exc_info=True)


class _RepeatingHandle:
    """Re-arms itself before each run so the interval ignores callback time."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        interval: float,
        callback: Callable[[], None],
    ) -> None:
        self._loop = loop
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._handle: asyncio.TimerHandle | None = None
        self._arm()

    def _arm(self) -> None:
        self._handle = self._loop.call_later(self._interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._arm()
        _run_callback(self._callback)

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop.

    Must be used from the loop's own thread; the MQTT transport marshals its
    callbacks onto the loop before they reach the supervisor.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def after(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return self._loop.call_later(max(delay, 0.0), _run_callback, callback)

    def every(self, interval: float, callback: Callable[[], None]) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return _RepeatingHandle(self._loop, interval, callback)

    def cancel(self, handle: TimerHandle | None) -> None:
        if handle is not None:
            handle.cancel()
