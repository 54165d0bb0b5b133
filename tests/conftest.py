"""
Deterministic event loop for the replay core.

Time is virtual and integral in milliseconds; nothing runs until the test calls
run_ready() or advance(). Only the loop surface the core uses is provided.
"""

from __future__ import annotations

import heapq
import itertools
from typing import Any, Callable, List, Optional, Tuple

import pytest

from timeline_replay.errors import NotFound
from timeline_replay.sources.memory import HistoryRecord, InMemoryHistorySource
from timeline_replay.types import ShowRequest


class FakeHandle:
    def __init__(self, when_ms: int, callback: Callable[..., Any], args: Tuple[Any, ...]):
        self.when_ms = when_ms
        self.callback = callback
        self.args = args
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled


class FakeTask:
    def __init__(self, loop: "FakeLoop", coro):
        self._loop = loop
        self._coro = coro
        self._done = False
        self._cancelled = False
        self._callbacks: List[Callable[["FakeTask"], None]] = []
        self.exception_: Optional[BaseException] = None
        loop.call_soon(self._step)

    def _step(self) -> None:
        if self._done:
            return
        try:
            yielded = self._coro.send(None)
        except StopIteration:
            self._finish()
            return
        except BaseException as e:
            self.exception_ = e
            self._finish()
            return
        if isinstance(yielded, Gate):
            yielded.waiters.append(self)
        else:
            # bare yield (e.g. asyncio.sleep(0)): resume on the next pass
            self._loop.call_soon(self._step)

    def _finish(self) -> None:
        self._done = True
        for cb in self._callbacks:
            cb(self)

    def done(self) -> bool:
        return self._done

    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> bool:
        if self._done:
            return False
        self._coro.close()
        self._cancelled = True
        self._finish()
        return True

    def add_done_callback(self, cb: Callable[["FakeTask"], None]) -> None:
        self._callbacks.append(cb)


class Gate:
    """Awaitable that holds a coroutine until open() is called."""

    def __init__(self, loop: "FakeLoop"):
        self._loop = loop
        self.opened = False
        self.waiters: List[FakeTask] = []

    def open(self) -> None:
        self.opened = True
        for task in self.waiters:
            self._loop.call_soon(task._step)
        self.waiters.clear()

    def __await__(self):
        while not self.opened:
            yield self
        return None


class FakeLoop:
    def __init__(self, start_ms: int = 0):
        self.ms = start_ms
        self._heap: List[Tuple[int, int, FakeHandle]] = []
        self._seq = itertools.count()
        self.tasks: List[FakeTask] = []

    def time(self) -> float:
        return self.ms / 1000.0

    def now_ms(self) -> int:
        return self.ms

    def call_later(self, delay: float, callback, *args) -> FakeHandle:
        h = FakeHandle(self.ms + max(0, int(round(delay * 1000))), callback, args)
        heapq.heappush(self._heap, (h.when_ms, next(self._seq), h))
        return h

    def call_soon(self, callback, *args) -> FakeHandle:
        return self.call_later(0, callback, *args)

    def create_task(self, coro) -> FakeTask:
        t = FakeTask(self, coro)
        self.tasks.append(t)
        return t

    def pending(self) -> List[FakeHandle]:
        return [h for _, _, h in self._heap if not h.cancelled()]

    def _run_until(self, target_ms: int) -> None:
        while self._heap and self._heap[0][0] <= target_ms:
            when, _, h = heapq.heappop(self._heap)
            if h.cancelled():
                continue
            self.ms = max(self.ms, when)
            h.callback(*h.args)
        self.ms = max(self.ms, target_ms)

    def run_ready(self) -> None:
        self._run_until(self.ms)

    def advance(self, ms: int) -> None:
        self._run_until(self.ms + ms)


class RecordingRenderer:
    """Keeps (local ms, request) for every show; optionally fails on chosen indexes."""

    def __init__(self, loop: FakeLoop, fail_on: Tuple[int, ...] = ()):
        self.loop = loop
        self.fail_on = set(fail_on)
        self.shown: List[Tuple[int, ShowRequest]] = []
        self.countdowns: List[Optional[int]] = []

    def show(self, req: ShowRequest) -> None:
        if req.index in self.fail_on:
            raise RuntimeError(f"cannot show {req.target}")
        self.shown.append((self.loop.ms, req))

    def countdown(self, remaining_ms: Optional[int]) -> None:
        self.countdowns.append(remaining_ms)

    @property
    def indexes(self) -> List[int]:
        return [req.index for _, req in self.shown]

    @property
    def times(self) -> List[int]:
        return [t for t, _ in self.shown]


class ScriptedSource(InMemoryHistorySource):
    """In-memory source with hooks to hold, break or count fetches."""

    def __init__(self, records, loop: FakeLoop, **kwargs):
        kwargs.setdefault("local_ms", loop.now_ms)
        super().__init__(records, **kwargs)
        self.loop = loop
        self.gates = {}
        self.missing = set()
        self.fail_with: Optional[BaseException] = None
        self.fetches: List[int] = []
        self.clock_gate: Optional[Gate] = None

    def hold(self, index: int) -> Gate:
        g = Gate(self.loop)
        self.gates[index] = g
        return g

    def hold_clock(self) -> Gate:
        self.clock_gate = Gate(self.loop)
        return self.clock_gate

    async def remote_now(self):
        gate, self.clock_gate = self.clock_gate, None
        if gate is not None:
            await gate
        return await super().remote_now()

    async def count(self) -> int:
        if self.fail_with is not None:
            raise self.fail_with
        return await super().count()

    async def fetch(self, index: int, *, until_epoch_ms=None):
        self.fetches.append(index)
        if self.fail_with is not None:
            raise self.fail_with
        gate = self.gates.pop(index, None)
        if gate is not None:
            await gate
        if index in self.missing:
            raise NotFound(f"event {index} was removed", index=index)
        return self.event_at(index, until_epoch_ms)


def _make_records(dues, prefix: str = "P") -> List[HistoryRecord]:
    return [
        HistoryRecord(due_at_epoch_ms=d, label=f"{prefix}{i}", target=f"/pages/{prefix.lower()}{i}.html")
        for i, d in enumerate(dues)
    ]


@pytest.fixture
def loop() -> FakeLoop:
    return FakeLoop()


@pytest.fixture
def renderer(loop) -> RecordingRenderer:
    return RecordingRenderer(loop)
