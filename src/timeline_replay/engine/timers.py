from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, Dict


class TimerKind(str, Enum):
    FETCH = "fetch"          # next poll of the history source
    DUE = "due"              # re-evaluate the buffered event
    COUNTDOWN = "countdown"  # presentational tick


class Timers:
    """One live handle per TimerKind on top of loop.call_later.

    Arming a kind cancels that kind's previous handle first.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop
        self._handles: Dict[TimerKind, asyncio.TimerHandle] = {}

    def arm(self, kind: TimerKind, delay_ms: int, callback: Callable[[], None]) -> None:
        self.cancel(kind)
        self._handles[kind] = self._loop.call_later(max(0, delay_ms) / 1000.0, self._fire, kind, callback)

    def _fire(self, kind: TimerKind, callback: Callable[[], None]) -> None:
        self._handles.pop(kind, None)
        callback()

    def cancel(self, kind: TimerKind) -> bool:
        h = self._handles.pop(kind, None)
        if h is None:
            return False
        h.cancel()
        return True

    def cancel_all(self) -> None:
        for kind in list(self._handles):
            self.cancel(kind)

    def armed(self, kind: TimerKind) -> bool:
        h = self._handles.get(kind)
        return h is not None and not h.cancelled()

    def live_counts(self) -> Dict[TimerKind, int]:
        return {kind: int(self.armed(kind)) for kind in TimerKind}
