from __future__ import annotations

"""History source boundary.

Anything the transport controller reads events from. Every call may raise
errors.Unreachable (or MalformedResponse); fetch and find raise errors.NotFound
when nothing qualifies.
"""

from typing import Optional, Protocol, runtime_checkable

from ..types import TimelineEvent


@runtime_checkable
class HistorySource(Protocol):
    async def count(self) -> int:
        ...

    async def fetch(self, index: int, *, until_epoch_ms: Optional[int] = None) -> TimelineEvent:
        """Event at `index`.

        With `until_epoch_ms`, an event whose successor is due after that instant is
        returned as the last one (next_due_at_epoch_ms=None).
        """
        ...

    async def find_index_at_or_after(self, remote_epoch_ms: int) -> int:
        """First index due at or after the instant. Past the last event: NotFound."""
        ...

    async def remote_now(self) -> Optional[int]:
        """Source clock in epoch ms, or None when the source has no clock."""
        ...
