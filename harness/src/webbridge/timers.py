from __future__ import annotations

import asyncio
import time
from typing import Any, Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Timers(Protocol):
    def call_later(self, delay_s: float, callback: Callable[[], Any]) -> TimerHandle: ...

    def now_ms(self) -> int: ...


def _now_ms() -> int:
    return int(time.time() * 1000)


class LoopTimers:
    """Timers on the running asyncio loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def call_later(self, delay_s: float, callback: Callable[[], Any]) -> asyncio.TimerHandle:
        return self._get_loop().call_later(delay_s, callback)

    def now_ms(self) -> int:
        return _now_ms()
