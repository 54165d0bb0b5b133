from __future__ import annotations

"""Local/remote clock reconciliation.

The viewer trusts the history source's clock, not its own. One sample of the remote
clock fixes an offset; every due-time comparison and every user-supplied target time
goes through it.
"""

import datetime as dt
import logging
import time
from typing import Callable, Optional

from .types import ClockOffset

logger = logging.getLogger("timeline_replay.clock")


def now_ms() -> int:
    return int(time.time() * 1000)


def fmt_epoch_ms(epoch_ms: Optional[int]) -> str:
    """Local ISO timestamp with milliseconds, for log lines."""
    if epoch_ms is None:
        return "-"
    try:
        return dt.datetime.fromtimestamp(epoch_ms / 1000.0).isoformat(timespec="milliseconds")
    except (OverflowError, OSError, ValueError):
        return str(epoch_ms)


class ClockReconciler:
    def __init__(self, local_ms: Callable[[], int] = now_ms):
        self._local_ms = local_ms
        self._offset: Optional[ClockOffset] = None
        self._warned = False

    @property
    def sampled(self) -> bool:
        return self._offset is not None

    @property
    def sample_info(self) -> Optional[ClockOffset]:
        return self._offset

    @property
    def offset_ms(self) -> int:
        if self._offset is None:
            if not self._warned:
                logger.warning("clock not reconciled with history source; trusting local clock (offset 0)")
                self._warned = True
            return 0
        return self._offset.offset_ms

    def local_now(self) -> int:
        return int(self._local_ms())

    def sample(self, remote_epoch_ms: int) -> ClockOffset:
        self._offset = ClockOffset(
            remote_epoch_ms_at_sample=int(remote_epoch_ms),
            local_epoch_ms_at_sample=self.local_now(),
        )
        self._warned = False
        logger.info(
            "clock sampled: remote=%s local=%s offset=%+d ms",
            fmt_epoch_ms(self._offset.remote_epoch_ms_at_sample),
            fmt_epoch_ms(self._offset.local_epoch_ms_at_sample),
            self._offset.offset_ms,
        )
        return self._offset

    def reset(self) -> None:
        self._offset = None
        self._warned = False

    def to_remote(self, local_epoch_ms: int) -> int:
        return int(local_epoch_ms) + self.offset_ms

    def to_local(self, remote_epoch_ms: int) -> int:
        return int(remote_epoch_ms) - self.offset_ms

    def now(self) -> int:
        """Reconciled (remote-axis) now."""
        return self.to_remote(self.local_now())
