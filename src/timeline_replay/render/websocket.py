from __future__ import annotations

"""Pushes shown events to a viewer relay over a websocket.

show() only enqueues; run() owns the connection and reconnects with capped backoff.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Optional

import websockets

from ..clock import now_ms
from ..types import ShowRequest

logger = logging.getLogger("timeline_replay.render.ws")


@dataclass(frozen=True)
class WsRendererConfig:
    url: str = "ws://127.0.0.1:8766/viewer"
    ping_interval_sec: float = 20.0
    reconnect_backoff_sec: float = 2.0
    max_reconnect_backoff_sec: float = 30.0
    # frames kept while disconnected; oldest are dropped beyond this
    max_pending: int = 100


def show_frame(req: ShowRequest, ts_ms: Optional[int] = None) -> dict:
    frame = {
        "type": "show",
        "ts_ms": now_ms() if ts_ms is None else ts_ms,
        "index": req.index,
        "label": req.label,
        "target": req.target,
        "displayEpochMs": req.display_epoch_ms,
    }
    if req.action:
        frame["action"] = req.action
    return frame


class WebSocketRenderer:
    def __init__(self, cfg: WsRendererConfig = WsRendererConfig()):
        self.cfg = cfg
        self.queue: asyncio.Queue[dict] = asyncio.Queue()
        self.sent = 0
        self.dropped = 0
        # frame whose send failed; goes out first on the next connection
        self.pending: Optional[dict] = None

    def show(self, req: ShowRequest) -> None:
        while self.queue.qsize() >= self.cfg.max_pending:
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(show_frame(req))

    async def run(self, stop_event: Optional[asyncio.Event] = None) -> None:
        backoff = self.cfg.reconnect_backoff_sec

        while True:
            if stop_event is not None and stop_event.is_set():
                return
            try:
                async with websockets.connect(
                    self.cfg.url,
                    ping_interval=self.cfg.ping_interval_sec,
                    ping_timeout=self.cfg.ping_interval_sec,
                    close_timeout=5,
                ) as ws:
                    logger.info("connected to viewer relay %s", self.cfg.url)
                    backoff = self.cfg.reconnect_backoff_sec
                    await self.pump(ws, stop_event)
                    return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("viewer relay %s: %r; retrying in %.1fs", self.cfg.url, e, backoff)
                await asyncio.sleep(backoff)
                backoff = min(self.cfg.max_reconnect_backoff_sec, backoff * 1.5)

    async def pump(self, ws, stop_event: Optional[asyncio.Event] = None) -> None:
        """Send frames in show order until stop_event is set. A failed send re-raises."""
        while True:
            if stop_event is not None and stop_event.is_set():
                return
            if self.pending is None:
                try:
                    self.pending = await asyncio.wait_for(self.queue.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
            await ws.send(json.dumps(self.pending, separators=(",", ":")))
            self.pending = None
            self.sent += 1
