from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Callable, Optional

from .clock import fmt_epoch_ms, now_ms
from .engine.scheduler import ReplayConfig
from .engine.transport import TransportController
from .render.base import Renderer
from .sources.base import HistorySource

logger = logging.getLogger("timeline_replay.session")

HELP = "commands: start [ISO time] | stop | f | b | ff | fb | reconnect | reset | status | help | quit"


class QuitSession(Exception):
    pass


def parse_local_time(text: str, *, today: Optional[dt.date] = None) -> int:
    """Local epoch ms from an ISO date-time, or from a bare HH:MM[:SS] meaning today.

    Naive values are taken as local time.
    """
    text = text.strip()
    try:
        t = dt.time.fromisoformat(text)
    except ValueError:
        parsed = dt.datetime.fromisoformat(text)
    else:
        parsed = dt.datetime.combine(today or dt.date.today(), t)
    return int(parsed.timestamp() * 1000)


class ReplaySession:
    """One viewer's replay: a transport controller plus the text command surface."""

    def __init__(
        self,
        source: HistorySource,
        renderer: Renderer,
        cfg: ReplayConfig = ReplayConfig(),
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        local_ms: Callable[[], int] = now_ms,
    ):
        self.source = source
        self.renderer = renderer
        self.transport = TransportController(source, renderer, cfg, loop=loop, local_ms=local_ms)

    @property
    def state(self):
        return self.transport.state

    def status(self) -> str:
        t = self.transport
        cmds = ",".join(k for k, ok in t.available_commands().items() if ok)
        offset = t.reconciler.sample_info.offset_ms if t.reconciler.sampled else None
        return (
            f"{t.state.describe()} count={t.count if t.count is not None else '?'} "
            f"offset={'?' if offset is None else f'{offset:+d}ms'} "
            f"next_in={t.scheduler.remaining_ms if t.scheduler.remaining_ms is not None else '-'}ms "
            f"available=[{cmds}]"
        )

    def handle_command(self, line: str) -> Optional[str]:
        """Run one text command. Returns a reply line, if any; raises QuitSession on quit."""
        parts = line.strip().split(maxsplit=1)
        if not parts:
            return None
        cmd = parts[0].lower()
        arg = parts[1] if len(parts) > 1 else ""
        t = self.transport

        if cmd == "start":
            if not arg:
                t.start()
                return None
            try:
                target = parse_local_time(arg)
            except ValueError:
                return f"bad time {arg!r}; expected ISO-8601 like 2024-05-01T12:30:00 or 12:30"
            logger.info("start at local %s", fmt_epoch_ms(target))
            t.start(target)
            return None
        if cmd == "stop":
            t.stop()
            return None
        if cmd in ("f", "forward"):
            t.step_forward()
            return None
        if cmd in ("b", "back"):
            t.step_backward()
            return None
        if cmd == "ff":
            t.fast_forward()
            return None
        if cmd == "fb":
            t.fast_backward()
            return None
        if cmd == "reconnect":
            t.reconnect()
            return None
        if cmd == "reset":
            t.reset()
            return None
        if cmd == "status":
            return self.status()
        if cmd in ("help", "?"):
            return HELP
        if cmd in ("quit", "exit", "q"):
            raise QuitSession()
        return f"unknown command {cmd!r}; {HELP}"

    def close(self) -> None:
        self.transport.close()
