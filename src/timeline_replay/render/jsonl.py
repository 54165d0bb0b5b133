from __future__ import annotations

from pathlib import Path
from typing import Callable

from ..clock import now_ms
from ..io.recorder import JsonlRecorder
from ..types import ShowRequest


class JsonlRenderer:
    """Appends every shown event to a JSONL file.

    Each line: {"ts_ms":..., "type":"SHOW", "payload": {...}}
    """

    def __init__(self, path: str | Path, *, local_ms: Callable[[], int] = now_ms):
        self.rec = JsonlRecorder(path)
        self._local_ms = local_ms

    def show(self, req: ShowRequest) -> None:
        payload = {
            "index": req.index,
            "label": req.label,
            "target": req.target,
            "displayEpochMs": req.display_epoch_ms,
        }
        if req.action:
            payload["action"] = req.action
        self.rec.append({"ts_ms": self._local_ms(), "type": "SHOW", "payload": payload})


class FanoutRenderer:
    """Shows on several renderers in order. The first failure propagates."""

    def __init__(self, *renderers):
        self.renderers = list(renderers)

    def show(self, req: ShowRequest) -> None:
        for r in self.renderers:
            r.show(req)

    def countdown(self, remaining_ms) -> None:
        for r in self.renderers:
            hook = getattr(r, "countdown", None)
            if callable(hook):
                hook(remaining_ms)
