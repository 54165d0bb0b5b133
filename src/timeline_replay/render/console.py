from __future__ import annotations

import sys
from typing import Optional, TextIO

from ..clock import fmt_epoch_ms
from ..types import ShowRequest
from .base import fmt_countdown


class ConsoleRenderer:
    """Prints one line per shown event. Countdown ticks are printed only when asked for."""

    def __init__(self, out: Optional[TextIO] = None, *, show_countdown: bool = False):
        self.out = out if out is not None else sys.stdout
        self.show_countdown = show_countdown
        self._last_countdown: Optional[str] = None

    def show(self, req: ShowRequest) -> None:
        action = f" [{req.action}]" if req.action else ""
        print(
            f"{fmt_epoch_ms(req.display_epoch_ms)}  #{req.index:<4d} {req.label}{action} -> {req.target}",
            file=self.out,
            flush=True,
        )

    def countdown(self, remaining_ms: Optional[int]) -> None:
        if not self.show_countdown:
            return
        text = fmt_countdown(remaining_ms)
        # only print when the whole-second value changes
        if text == self._last_countdown:
            return
        self._last_countdown = text
        print(f"  next in {text}", file=self.out, flush=True)
