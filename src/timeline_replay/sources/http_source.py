from __future__ import annotations

"""HTTP history source.

Dependencies stay at stdlib (urllib); the blocking call runs in a worker thread so the
event loop keeps its timers.

Endpoints, relative to base_url:
- GET count                      -> {"count": N}
- GET event?index=N[&untilEpochMs=M] -> {"index", "dueAtEpochMs", "label", "target", "nextDueAtEpochMs"?}
- GET findIndex?atOrAfter=T      -> {"index": i}
- GET time                       -> {"epochMs": ...} or {"now": "<ISO-8601>"}

4xx "no such event" answers (400/404/416) are NotFound; anything else that fails is
Unreachable.
"""

import asyncio
import datetime as dt
import json
import logging
import os
import socket
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from typing import Any, Dict, Optional

from ..errors import MalformedResponse, NotFound, Unreachable
from ..types import TimelineEvent

logger = logging.getLogger("timeline_replay.sources.http")

_NOT_FOUND_STATUSES = (400, 404, 416)


@dataclass(frozen=True)
class HttpSourceConfig:
    base_url: str = "http://127.0.0.1:8765/api/history"
    timeout_sec: float = 5.0

    @classmethod
    def from_env(cls) -> "HttpSourceConfig":
        return cls(
            base_url=os.getenv("TIMELINE_REPLAY_BASE_URL", cls.base_url),
            timeout_sec=float(os.getenv("TIMELINE_REPLAY_TIMEOUT_SEC", str(cls.timeout_sec))),
        )

    def url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = self.base_url.rstrip("/") + "/" + path.lstrip("/")
        if params:
            url += "?" + urllib.parse.urlencode({k: str(v) for k, v in params.items()})
        return url


def _get_json(cfg: HttpSourceConfig, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    url = cfg.url(path, params)
    req = urllib.request.Request(url, method="GET", headers={"Accept": "application/json", "Cache-Control": "no-cache"})
    try:
        with urllib.request.urlopen(req, timeout=cfg.timeout_sec) as resp:
            raw = resp.read().decode("utf-8", errors="replace")
    except urllib.error.HTTPError as e:
        body = e.read().decode("utf-8", errors="replace")
        if e.code in _NOT_FOUND_STATUSES:
            raise NotFound(f"GET {path} -> HTTP {e.code}: {body[:200]}")
        raise Unreachable(f"GET {path} -> HTTP {e.code}: {body[:200]}", status=e.code)
    except (urllib.error.URLError, socket.timeout, TimeoutError, ConnectionError) as e:
        raise Unreachable(f"GET {url}: {e}")

    try:
        obj = json.loads(raw) if raw else {}
    except json.JSONDecodeError as e:
        raise MalformedResponse(f"GET {path}: {e}", payload=raw[:500])
    if not isinstance(obj, dict):
        raise MalformedResponse(f"GET {path}: expected a JSON object", payload=obj)
    return obj


def _int_field(obj: Dict[str, Any], key: str, path: str) -> int:
    v = obj.get(key)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise MalformedResponse(f"GET {path}: missing or non-numeric '{key}'", payload=obj)
    return int(v)


def parse_remote_time(obj: Dict[str, Any]) -> Optional[int]:
    """Epoch ms from a /time answer; accepts {"epochMs": n} or {"now": ISO-8601}."""
    if "epochMs" in obj:
        return _int_field(obj, "epochMs", "time")
    now = obj.get("now")
    if now is None:
        return None
    try:
        parsed = dt.datetime.fromisoformat(str(now))
    except ValueError:
        raise MalformedResponse(f"GET time: unparseable 'now' {now!r}", payload=obj)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return int(parsed.timestamp() * 1000)


class HttpHistorySource:
    def __init__(self, cfg: HttpSourceConfig):
        self.cfg = cfg

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        return await asyncio.to_thread(_get_json, self.cfg, path, params)

    async def count(self) -> int:
        obj = await self._get("count")
        n = _int_field(obj, "count", "count")
        if n < 0:
            raise MalformedResponse(f"GET count: negative count {n}", payload=obj)
        return n

    async def fetch(self, index: int, *, until_epoch_ms: Optional[int] = None) -> TimelineEvent:
        params: Dict[str, Any] = {"index": index}
        if until_epoch_ms is not None:
            params["untilEpochMs"] = until_epoch_ms
        try:
            obj = await self._get("event", params)
        except NotFound as e:
            raise NotFound(str(e), index=index)
        try:
            ev = TimelineEvent.from_wire(obj)
        except (KeyError, TypeError, ValueError) as e:
            raise MalformedResponse(f"GET event?index={index}: {e!r}", payload=obj)
        if ev.index != index:
            raise MalformedResponse(f"GET event?index={index}: answered index {ev.index}", payload=obj)
        return ev

    async def find_index_at_or_after(self, remote_epoch_ms: int) -> int:
        try:
            obj = await self._get("findIndex", {"atOrAfter": remote_epoch_ms})
        except NotFound as e:
            raise NotFound(str(e), epoch_ms=remote_epoch_ms)
        idx = _int_field(obj, "index", "findIndex")
        if idx < 0:
            raise NotFound(f"no event at or after {remote_epoch_ms}", epoch_ms=remote_epoch_ms)
        return idx

    async def remote_now(self) -> Optional[int]:
        try:
            obj = await self._get("time")
        except NotFound:
            logger.warning("history source has no time endpoint at %s", self.cfg.url("time"))
            return None
        return parse_remote_time(obj)
