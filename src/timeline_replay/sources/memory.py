from __future__ import annotations

import bisect
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, List, Optional

from ..clock import now_ms
from ..errors import NotFound
from ..types import TimelineEvent


@dataclass(frozen=True)
class HistoryRecord:
    """One stored event, before it is given an index."""
    due_at_epoch_ms: int
    label: str
    target: str
    action: str = ""


class InMemoryHistorySource:
    """Random-access source over a list of records.

    Records are kept sorted by due time; indexes follow that order. `clock_skew_ms`
    shifts remote_now() away from the local clock to stand in for a remote server.
    """

    def __init__(
        self,
        records: Iterable[HistoryRecord],
        *,
        clock_skew_ms: int = 0,
        local_ms: Callable[[], int] = now_ms,
        has_clock: bool = True,
    ):
        self._records: List[HistoryRecord] = sorted(records, key=lambda r: r.due_at_epoch_ms)
        self._dues = [r.due_at_epoch_ms for r in self._records]
        self.clock_skew_ms = clock_skew_ms
        self._local_ms = local_ms
        self._has_clock = has_clock

    @classmethod
    def from_jsonl(cls, path: str | Path, **kwargs) -> "InMemoryHistorySource":
        from ..io.recorder import read_history

        return cls(read_history(path), **kwargs)

    @property
    def records(self) -> List[HistoryRecord]:
        return list(self._records)

    def event_at(self, index: int, until_epoch_ms: Optional[int] = None) -> TimelineEvent:
        if index < 0 or index >= len(self._records):
            raise NotFound(f"no event at index {index} (count={len(self._records)})", index=index)
        rec = self._records[index]
        nxt: Optional[int] = None
        if index + 1 < len(self._records):
            nxt = self._records[index + 1].due_at_epoch_ms
            if until_epoch_ms is not None and nxt > until_epoch_ms:
                nxt = None
        return TimelineEvent(
            index=index,
            due_at_epoch_ms=rec.due_at_epoch_ms,
            label=rec.label,
            target=rec.target,
            next_due_at_epoch_ms=nxt,
            action=rec.action,
        )

    def index_at_or_after(self, remote_epoch_ms: int) -> int:
        i = bisect.bisect_left(self._dues, remote_epoch_ms)
        if i >= len(self._dues):
            raise NotFound(f"no event at or after {remote_epoch_ms}", epoch_ms=remote_epoch_ms)
        return i

    # HistorySource

    async def count(self) -> int:
        return len(self._records)

    async def fetch(self, index: int, *, until_epoch_ms: Optional[int] = None) -> TimelineEvent:
        return self.event_at(index, until_epoch_ms)

    async def find_index_at_or_after(self, remote_epoch_ms: int) -> int:
        return self.index_at_or_after(remote_epoch_ms)

    def remote_now_ms(self) -> Optional[int]:
        if not self._has_clock:
            return None
        return int(self._local_ms()) + self.clock_skew_ms

    async def remote_now(self) -> Optional[int]:
        return self.remote_now_ms()
