"""One-second interval tickers that session timers are built on."""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Callable

from config import TICK_INTERVAL_SECONDS

LOGGER = logging.getLogger("studyengine.clock")

TickCallback = Callable[[], None]


class Clock(ABC):
    """Cancelable ticker: ``start`` fires ``on_tick`` once per elapsed second until ``stop``."""

    @abstractmethod
    def start(self, on_tick: TickCallback) -> int:
        """Begin ticking and return a handle for ``stop``."""

    @abstractmethod
    def stop(self, handle: int | None) -> None:
        """Stop a handle. Unknown or already-stopped handles are ignored."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic seconds, used for per-item timing."""


class AsyncioClock(Clock):
    """Ticks on the running asyncio event loop via ``call_later``."""

    def __init__(self, interval: float = TICK_INTERVAL_SECONDS) -> None:
        self._interval = interval
        self._ids = itertools.count(1)
        self._timers: dict[int, asyncio.TimerHandle] = {}

    def start(self, on_tick: TickCallback) -> int:
        loop = asyncio.get_running_loop()
        handle = next(self._ids)

        def _fire() -> None:
            if handle not in self._timers:
                return
            # Re-arm before the callback so a stop() inside it wins.
            self._timers[handle] = loop.call_later(self._interval, _fire)
            on_tick()

        self._timers[handle] = loop.call_later(self._interval, _fire)
        return handle

    def stop(self, handle: int | None) -> None:
        if handle is None:
            return
        timer = self._timers.pop(handle, None)
        if timer is not None:
            timer.cancel()

    def now(self) -> float:
        try:
            return asyncio.get_running_loop().time()
        except RuntimeError:
            return 0.0

    @property
    def active_handles(self) -> int:
        return len(self._timers)


class ManualClock(Clock):
    """Deterministic clock driven by ``advance``; ticks fire synchronously."""

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._callbacks: dict[int, TickCallback] = {}
        self._elapsed = 0.0

    def start(self, on_tick: TickCallback) -> int:
        handle = next(self._ids)
        self._callbacks[handle] = on_tick
        return handle

    def stop(self, handle: int | None) -> None:
        if handle is None:
            return
        self._callbacks.pop(handle, None)

    def now(self) -> float:
        return self._elapsed

    def advance(self, seconds: int = 1) -> None:
        """Move time forward one second at a time, ticking every live handle."""
        for _ in range(int(seconds)):
            self._elapsed += 1
            for handle, callback in list(self._callbacks.items()):
                if handle in self._callbacks:
                    callback()

    @property
    def active_handles(self) -> int:
        return len(self._callbacks)
