from __future__ import annotations

"""Transport controller.

Owns the playback state machine (idle -> playing <-> stopped, with a transient seeking
state) and mediates every timer through the display scheduler.

Every command bumps a generation counter. Adapter responses carry the generation they
were issued under; anything answering an older generation is discarded, so a slow fetch
can never land on top of a newer seek.
"""

import asyncio
import logging
from typing import Any, Callable, Coroutine, Dict, Optional, Set, Tuple

from ..clock import ClockReconciler, fmt_epoch_ms, now_ms
from ..errors import HistoryError, MalformedResponse, NotFound, OutOfRange, Unreachable
from ..render.base import Renderer, countdown_hook
from ..sources.base import HistorySource
from ..state import PlaybackState
from ..types import Direction, Mode, StopReason, TimelineEvent
from .buffer import EventBuffer
from .scheduler import DisplayScheduler, ReplayConfig
from .timers import TimerKind, Timers

logger = logging.getLogger("timeline_replay.transport")


def stop_reason_for(exc: BaseException) -> StopReason:
    if isinstance(exc, OutOfRange):
        return StopReason.OUT_OF_RANGE
    if isinstance(exc, NotFound):
        return StopReason.NOT_FOUND
    if isinstance(exc, MalformedResponse):
        return StopReason.MALFORMED_RESPONSE
    return StopReason.UNREACHABLE


class TransportController:
    def __init__(
        self,
        source: HistorySource,
        renderer: Renderer,
        cfg: ReplayConfig = ReplayConfig(),
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        local_ms: Callable[[], int] = now_ms,
        on_countdown: Optional[Callable[[Optional[int]], None]] = None,
    ):
        self.source = source
        self.cfg = cfg
        self._loop = loop if loop is not None else asyncio.get_running_loop()

        self.state = PlaybackState()
        self.reconciler = ClockReconciler(local_ms)
        self.buffer = EventBuffer()
        self.timers = Timers(self._loop)
        self.scheduler = DisplayScheduler(
            cfg,
            self.reconciler,
            self.buffer,
            self.timers,
            renderer,
            self.state,
            listener=self,
            on_countdown=on_countdown or countdown_hook(renderer),
        )

        self._generation = 0
        self._contacted = False
        self._count: Optional[int] = None
        # next index due on screen while playing
        self._cursor: Optional[int] = None
        self._inflight: Optional[Tuple[int, int]] = None
        self._until_remote: Optional[int] = None
        self._tasks: Set[asyncio.Future] = set()

    # ------------------------------------------------------------------ info

    @property
    def count(self) -> Optional[int]:
        return self._count

    @property
    def generation(self) -> int:
        return self._generation

    def available_commands(self) -> Dict[str, bool]:
        mode = self.state.mode
        cur = self.state.current_index
        loaded = mode != Mode.IDLE and self._count is not None
        return {
            "start": mode != Mode.PLAYING,
            "stop": mode in (Mode.PLAYING, Mode.SEEKING),
            "step_forward": loaded,
            "step_backward": loaded and cur > 0,
            "fast_forward": loaded and self._count is not None and cur + 2 < self._count,
            "fast_backward": loaded and cur > 1,
        }

    def live_timers(self) -> Dict[TimerKind, int]:
        return self.timers.live_counts()

    # -------------------------------------------------------------- commands

    def start(self, target_local_ms: Optional[int] = None, *, until_local_ms: Optional[int] = None) -> None:
        """Play forward from the first event, or from the first one due at/after a local wall-clock time."""
        if target_local_ms is None and self.state.mode == Mode.PLAYING:
            logger.debug("start ignored: already playing")
            return
        gen = self._begin("start")
        self._spawn(self._resolve_start(gen, target_local_ms, until_local_ms))

    def stop(self, reason: StopReason = StopReason.USER_REQUESTED, detail: str = "") -> None:
        if self.state.mode in (Mode.STOPPED, Mode.IDLE):
            return
        self._invalidate()
        self.state.mode = Mode.STOPPED
        self.state.stop_reason = reason
        self.state.stop_detail = detail
        self._cursor = None
        logger.info(
            "stopped: %s%s (index=%d)",
            reason.value,
            f" - {detail}" if detail else "",
            self.state.current_index,
        )

    def step_forward(self) -> None:
        self._step(1, Direction.FORWARD, "step forward")

    def step_backward(self) -> None:
        self._step(-1, Direction.REVERSE, "step backward")

    def fast_forward(self) -> None:
        self._step(2, Direction.FORWARD, "fast forward")

    def fast_backward(self) -> None:
        self._step(-2, Direction.REVERSE, "fast backward")

    def reconnect(self) -> None:
        """Re-sample the source clock and refresh the event count."""
        self._spawn(self._reconnect(self._generation))

    def reset(self) -> None:
        self._invalidate()
        self.state.mode = Mode.IDLE
        self.state.current_index = -1
        self.state.direction = Direction.FORWARD
        self.state.stop_reason = None
        self.state.stop_detail = ""
        self._cursor = None
        self._count = None
        self._until_remote = None
        self._contacted = False
        self.reconciler.reset()
        logger.info("reset to idle")

    def close(self) -> None:
        self._invalidate()
        for task in list(self._tasks):
            task.cancel()

    # ------------------------------------------------------------- internals

    def _invalidate(self) -> None:
        self._generation += 1
        self._inflight = None
        self.timers.cancel_all()
        self.scheduler.clear()

    def _begin(self, what: str) -> int:
        self._invalidate()
        self.state.mode = Mode.SEEKING
        self.state.stop_reason = None
        self.state.stop_detail = ""
        logger.info("%s (index=%d, generation %d)", what, self.state.current_index, self._generation)
        return self._generation

    def _stale(self, gen: int) -> bool:
        return gen != self._generation

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _can_step(self, delta: int) -> bool:
        cur = self.state.current_index
        if delta == -1:
            return cur > 0
        if delta == -2:
            return cur > 1
        if delta == 2:
            return self._count is not None and cur + 2 < self._count
        return True

    def _step(self, delta: int, direction: Direction, what: str) -> None:
        if self.state.mode == Mode.IDLE or self._count is None:
            logger.debug("%s ignored: nothing loaded", what)
            return
        if not self._can_step(delta):
            logger.debug("%s ignored at index %d", what, self.state.current_index)
            return
        gen = self._begin(what)
        self._enter(gen, self.state.current_index + delta, direction)

    def _enter(self, gen: int, index: int, direction: Direction) -> None:
        self.state.direction = direction
        self.state.mode = Mode.PLAYING
        self._cursor = index
        logger.info("playing %s from index %d", direction.value, index)
        self._request(gen, index)
        if self.state.mode == Mode.PLAYING:
            self._arm_poll()

    def _arm_poll(self) -> None:
        if self.cfg.poll_interval_ms:
            self.timers.arm(TimerKind.FETCH, self.cfg.poll_interval_ms, self._on_poll)

    def _on_poll(self) -> None:
        if self.state.mode != Mode.PLAYING:
            return
        self._arm_poll()
        if self._cursor is not None:
            self._request(self._generation, self._cursor)

    def _request(self, gen: int, index: int) -> None:
        if index < 0 or (self._count is not None and index >= self._count):
            err = OutOfRange(index, self._count)
            logger.warning("refusing fetch: %s", err)
            self.stop(StopReason.OUT_OF_RANGE, detail=str(err))
            return
        if self._inflight == (gen, index):
            return
        buffered = self.buffer.peek()
        if buffered is not None and buffered.index == index:
            return
        self._inflight = (gen, index)
        logger.info("fetch [%d] (generation %d)", index, gen)
        self._spawn(self._fetch(gen, index))

    async def _fetch(self, gen: int, index: int) -> None:
        try:
            ev = await self.source.fetch(index, until_epoch_ms=self._until_remote)
            if ev.index != index:
                raise MalformedResponse(f"asked for index {index}, got {ev.index}", payload=ev)
        except Exception as e:
            if self._inflight == (gen, index):
                self._inflight = None
            self._fail(gen, e, f"fetch [{index}]")
            return
        if self._inflight == (gen, index):
            self._inflight = None
        if self._stale(gen) or index != self._cursor:
            logger.info("discarding stale response for [%d] (generation %d, current %d)", index, gen, self._generation)
            return
        logger.info("fetched [%d] %s due %s", ev.index, ev.label, fmt_epoch_ms(ev.due_at_epoch_ms))
        self.scheduler.offer(ev)

    async def _resolve_start(self, gen: int, target_local_ms: Optional[int], until_local_ms: Optional[int]) -> None:
        try:
            if not self._contacted:
                await self._contact(gen)
                if self._stale(gen):
                    return
            count = await self.source.count()
            if self._stale(gen):
                return
            self._count = count
            self._until_remote = None if until_local_ms is None else self.reconciler.to_remote(until_local_ms)

            if target_local_ms is None:
                index = 0
            else:
                remote = self.reconciler.to_remote(target_local_ms)
                logger.info(
                    "seek: local %s -> remote %s (offset %+d ms)",
                    fmt_epoch_ms(target_local_ms),
                    fmt_epoch_ms(remote),
                    self.reconciler.offset_ms,
                )
                index = await self.source.find_index_at_or_after(remote)
                if self._stale(gen):
                    return
        except Exception as e:
            self._fail(gen, e, "start")
            return
        self._enter(gen, index, Direction.FORWARD)

    async def _contact(self, gen: int) -> None:
        logger.info("contacting history source")
        await self.source.fetch(0)
        remote = await self.source.remote_now()
        if self._stale(gen):
            return
        self._contacted = True
        if remote is None:
            logger.warning("history source reports no clock; local clock is trusted")
            return
        self.reconciler.sample(remote)

    async def _reconnect(self, gen: int) -> None:
        try:
            remote = await self.source.remote_now()
            if self._stale(gen):
                return
            count = await self.source.count()
        except Exception as e:
            self._fail(gen, e, "reconnect")
            return
        if self._stale(gen):
            logger.info("reconnect superseded (generation %d, current %d)", gen, self._generation)
            return
        self._contacted = True
        if remote is not None:
            self.reconciler.sample(remote)
        self._count = count
        logger.info("reconnected: count=%d", count)

    def _fail(self, gen: int, exc: BaseException, what: str) -> None:
        if self._stale(gen):
            logger.info("%s: ignoring failure from superseded request: %s", what, exc)
            return
        reason = stop_reason_for(exc)
        if isinstance(exc, MalformedResponse):
            logger.error("%s: malformed response: %s", what, exc)
        elif isinstance(exc, (NotFound, OutOfRange)):
            logger.info("%s: %s", what, exc)
        elif isinstance(exc, Unreachable):
            logger.error("%s: %s", what, exc)
        elif isinstance(exc, HistoryError):
            logger.error("%s failed: %s", what, exc)
        else:
            logger.error("%s: unexpected source failure", what, exc_info=exc)
        self.stop(reason, detail=str(exc))

    # ------------------------------------------------ ScheduleListener

    def on_displayed(self, ev: TimelineEvent) -> None:
        self._cursor = ev.index + self.state.direction.step

    def on_finished(self, ev: TimelineEvent, reason: StopReason) -> None:
        self.stop(reason, detail=f"last shown [{ev.index}] {ev.label}")

    def on_due_idle(self) -> None:
        if self.state.mode == Mode.PLAYING and self._cursor is not None:
            self._request(self._generation, self._cursor)

    def on_render_failed(self, ev: TimelineEvent, exc: Exception) -> None:
        self.stop(StopReason.RENDER_FAILED, detail=f"[{ev.index}] {exc!r}")
