#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

# Allow running as a script without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from timeline_replay.io.history_server import make_server
from timeline_replay.sources.memory import InMemoryHistorySource


def main() -> int:
    ap = argparse.ArgumentParser(description="Serve a JSONL history over HTTP (count / event / findIndex / time)")
    ap.add_argument("--events", required=True, help="Path to JSONL history file")
    ap.add_argument("--host", default=os.getenv("TIMELINE_REPLAY_HOST", "127.0.0.1"))
    ap.add_argument("--port", type=int, default=int(os.getenv("TIMELINE_REPLAY_PORT", "8765")))
    ap.add_argument("--base-path", default="/api/history")
    ap.add_argument("--clock-skew-ms", type=int, default=0, help="Shift the served clock, to exercise reconciliation")
    ap.add_argument("--log-level", default="INFO")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    src = InMemoryHistorySource.from_jsonl(args.events, clock_skew_ms=args.clock_skew_ms)
    if not src.records:
        raise SystemExit(f"No events in {args.events}")

    srv = make_server(src, args.host, args.port, args.base_path)
    print(f"Serving {len(src.records)} events on http://{args.host}:{srv.server_address[1]}{srv.base_path}")
    try:
        srv.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        srv.server_close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
