from __future__ import annotations

"""Display scheduler.

Turns "an event is buffered" into "the event is shown at the right moment". Firing is
always decided by re-reading the reconciled clock; the countdown is only for display.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from ..clock import ClockReconciler, fmt_epoch_ms
from ..render.base import Renderer
from ..state import PlaybackState
from ..types import Direction, ShowRequest, StopReason, TimelineEvent
from .buffer import EventBuffer
from .timers import TimerKind, Timers

logger = logging.getLogger("timeline_replay.scheduler")


@dataclass(frozen=True)
class ReplayConfig:
    # an event this close to its due time is shown now
    due_threshold_ms: int = 100
    # floor for any display wait
    min_wait_ms: int = 100
    countdown_tick_ms: int = 100
    # None disables polling; the next index is then fetched when DUE fires
    poll_interval_ms: Optional[int] = 1000


class ScheduleListener(Protocol):
    def on_displayed(self, ev: TimelineEvent) -> None: ...

    def on_finished(self, ev: TimelineEvent, reason: StopReason) -> None: ...

    def on_due_idle(self) -> None: ...

    def on_render_failed(self, ev: TimelineEvent, exc: Exception) -> None: ...


class DisplayScheduler:
    def __init__(
        self,
        cfg: ReplayConfig,
        reconciler: ClockReconciler,
        buffer: EventBuffer,
        timers: Timers,
        renderer: Renderer,
        state: PlaybackState,
        listener: ScheduleListener,
        on_countdown: Optional[Callable[[Optional[int]], None]] = None,
    ):
        self.cfg = cfg
        self.reconciler = reconciler
        self.buffer = buffer
        self.timers = timers
        self.renderer = renderer
        self.state = state
        self.listener = listener
        self.on_countdown = on_countdown
        self.remaining_ms: Optional[int] = None

    def offer(self, ev: TimelineEvent) -> None:
        replaced = self.buffer.put(ev)
        self.state.buffered_event = ev
        if replaced is not None and replaced.index != ev.index:
            logger.info("buffer: [%d] replaced unshown [%d]", ev.index, replaced.index)
        else:
            logger.debug("buffer: [%d] %s", ev.index, ev.label)
        self.evaluate()

    def evaluate(self) -> None:
        ev = self.buffer.peek()
        if ev is None:
            return
        self.timers.cancel(TimerKind.DUE)
        self.timers.cancel(TimerKind.COUNTDOWN)

        now = self.reconciler.now()
        slack = ev.due_at_epoch_ms - now
        if slack > self.cfg.due_threshold_ms:
            wait = max(self.cfg.min_wait_ms, slack)
            logger.info("holding [%d] %s until %s (%d ms)", ev.index, ev.label, fmt_epoch_ms(ev.due_at_epoch_ms), wait)
            self._arm_due(wait)
            return

        self.buffer.take()
        self.state.buffered_event = None
        try:
            self.renderer.show(
                ShowRequest(
                    label=ev.label,
                    target=ev.target,
                    display_epoch_ms=ev.due_at_epoch_ms,
                    index=ev.index,
                    action=ev.action,
                )
            )
        except Exception as e:
            logger.exception("renderer failed on [%d] %s", ev.index, ev.target)
            self.listener.on_render_failed(ev, e)
            return
        self.state.current_index = ev.index
        logger.info("shown [%d] %s -> %s (due %s, slack %d ms)", ev.index, ev.label, ev.target, fmt_epoch_ms(ev.due_at_epoch_ms), slack)

        reason = self._terminal_reason(ev)
        if reason is not None:
            self._publish(None)
            self.listener.on_finished(ev, reason)
            return

        self.listener.on_displayed(ev)
        if ev.next_due_at_epoch_ms is None:
            wait = self.cfg.due_threshold_ms
        else:
            wait = max(self.cfg.due_threshold_ms, ev.next_due_at_epoch_ms - now)
        self._arm_due(wait)

    def _terminal_reason(self, ev: TimelineEvent) -> Optional[StopReason]:
        if self.state.direction == Direction.REVERSE:
            return StopReason.START_OF_TIMELINE if ev.index == 0 else None
        return StopReason.END_OF_TIMELINE if ev.is_last else None

    def _arm_due(self, wait_ms: int) -> None:
        self.timers.arm(TimerKind.DUE, wait_ms, self._on_due)
        self._start_countdown(wait_ms)

    def _on_due(self) -> None:
        if self.buffer:
            self.evaluate()
        else:
            self.listener.on_due_idle()

    # countdown

    def _start_countdown(self, remaining_ms: int) -> None:
        self._publish(max(0, remaining_ms))
        self.timers.arm(TimerKind.COUNTDOWN, self.cfg.countdown_tick_ms, self._tick)

    def _tick(self) -> None:
        remaining = max(0, (self.remaining_ms or 0) - self.cfg.countdown_tick_ms)
        self._publish(remaining)
        if remaining > 0:
            self.timers.arm(TimerKind.COUNTDOWN, self.cfg.countdown_tick_ms, self._tick)

    def _publish(self, remaining_ms: Optional[int]) -> None:
        self.remaining_ms = remaining_ms
        if self.on_countdown is not None:
            self.on_countdown(remaining_ms)

    def clear(self) -> None:
        """Drop the buffered event and the display timers."""
        self.buffer.clear()
        self.state.buffered_event = None
        self.timers.cancel(TimerKind.DUE)
        self.timers.cancel(TimerKind.COUNTDOWN)
        self._publish(None)
