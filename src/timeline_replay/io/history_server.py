from __future__ import annotations

"""Serves an in-memory history over HTTP.

Endpoints (under base_path):
  count                       -> {"count": N}
  event?index=N[&untilEpochMs=M] -> event wire object
  findIndex?atOrAfter=T       -> {"index": i}
  time                        -> {"epochMs": ..., "now": "<ISO-8601 UTC>"}

Unknown indexes and times past the last event answer 404 with {"error": ...}.
"""

import datetime as dt
import http.server
import json
import logging
import socketserver
import threading
import urllib.parse
from typing import Any, Optional

from ..errors import NotFound
from ..sources.memory import InMemoryHistorySource

logger = logging.getLogger("timeline_replay.history_server")


class ReusableTCPServer(socketserver.ThreadingMixIn, http.server.HTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    source: InMemoryHistorySource
    base_path: str


class HistoryHandler(http.server.BaseHTTPRequestHandler):
    server: ReusableTCPServer

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        parsed = urllib.parse.urlparse(self.path)
        base = self.server.base_path
        if not parsed.path.startswith(base + "/"):
            return self._serve_error(404, f"unknown path {parsed.path}")
        route = parsed.path[len(base) + 1:]
        qs = urllib.parse.parse_qs(parsed.query)
        src = self.server.source

        try:
            if route == "count":
                return self._serve_json({"count": len(src.records)})
            if route == "event":
                index = _int_param(qs, "index")
                until = _int_param(qs, "untilEpochMs", required=False)
                return self._serve_json(src.event_at(index, until).to_wire())
            if route == "findIndex":
                return self._serve_json({"index": src.index_at_or_after(_int_param(qs, "atOrAfter"))})
            if route == "time":
                remote = src.remote_now_ms()
                if remote is None:
                    return self._serve_error(404, "no clock")
                iso = dt.datetime.fromtimestamp(remote / 1000.0, tz=dt.timezone.utc).isoformat(timespec="milliseconds")
                return self._serve_json({"epochMs": remote, "now": iso})
        except NotFound as e:
            return self._serve_error(404, str(e))
        except ValueError as e:
            return self._serve_error(400, str(e))

        self._serve_error(404, f"unknown endpoint {route}")

    def _serve_json(self, obj: Any, status: int = 200):
        b = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(b)))
        self.send_header("Cache-Control", "no-cache")
        self.end_headers()
        self.wfile.write(b)

    def _serve_error(self, status: int, msg: str):
        self._serve_json({"error": msg}, status=status)


def _int_param(qs: dict, name: str, *, required: bool = True) -> Optional[int]:
    vals = qs.get(name)
    if not vals:
        if required:
            raise ValueError(f"missing query parameter {name}")
        return None
    try:
        return int(vals[0])
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {vals[0]!r}")


def make_server(
    source: InMemoryHistorySource,
    host: str = "127.0.0.1",
    port: int = 8765,
    base_path: str = "/api/history",
) -> ReusableTCPServer:
    srv = ReusableTCPServer((host, port), HistoryHandler)
    srv.source = source
    srv.base_path = "/" + base_path.strip("/")
    return srv


def serve_in_thread(srv: ReusableTCPServer) -> threading.Thread:
    t = threading.Thread(target=srv.serve_forever, name="history-server", daemon=True)
    t.start()
    host, port = srv.server_address[:2]
    logger.info("serving %d events on http://%s:%d%s", len(srv.source.records), host, port, srv.base_path)
    return t
