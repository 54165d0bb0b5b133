#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

# Allow running as a script without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from timeline_replay.engine.scheduler import ReplayConfig
from timeline_replay.render.console import ConsoleRenderer
from timeline_replay.render.jsonl import FanoutRenderer, JsonlRenderer
from timeline_replay.render.websocket import WebSocketRenderer, WsRendererConfig
from timeline_replay.session import HELP, QuitSession, ReplaySession
from timeline_replay.sources.http_source import HttpHistorySource, HttpSourceConfig
from timeline_replay.sources.memory import InMemoryHistorySource


async def main_async(args: argparse.Namespace) -> int:
    if args.events:
        source = InMemoryHistorySource.from_jsonl(args.events)
        print(f"History: {args.events} ({len(source.records)} events)")
    else:
        cfg = HttpSourceConfig.from_env()
        if args.url:
            cfg = HttpSourceConfig(base_url=args.url, timeout_sec=cfg.timeout_sec)
        source = HttpHistorySource(cfg)
        print(f"History: {cfg.base_url}")

    renderers = [ConsoleRenderer(show_countdown=args.countdown)]
    if args.jsonl_out:
        renderers.append(JsonlRenderer(args.jsonl_out))
        print(f"Recording shown events to: {args.jsonl_out}")

    stop_event = asyncio.Event()
    ws_task = None
    if args.ws_url:
        ws = WebSocketRenderer(WsRendererConfig(url=args.ws_url))
        renderers.append(ws)
        ws_task = asyncio.create_task(ws.run(stop_event))

    renderer = renderers[0] if len(renderers) == 1 else FanoutRenderer(*renderers)
    session = ReplaySession(source, renderer, ReplayConfig(poll_interval_ms=args.poll_ms or None))

    print(HELP)
    loop = asyncio.get_running_loop()
    try:
        if args.autostart:
            session.handle_command("start")
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            try:
                reply = session.handle_command(line)
            except QuitSession:
                break
            if reply:
                print(reply)
    finally:
        session.close()
        stop_event.set()
        if ws_task is not None:
            ws_task.cancel()
    print(f"Replay finished: {session.state.describe()}")
    return 0


def main() -> int:
    ap = argparse.ArgumentParser(description="Replay a recorded timeline in real time")
    g = ap.add_mutually_exclusive_group()
    g.add_argument("--events", help="Path to JSONL history file")
    g.add_argument("--url", help="History server base URL (default: $TIMELINE_REPLAY_BASE_URL)")
    ap.add_argument("--poll-ms", type=int, default=int(os.getenv("TIMELINE_REPLAY_POLL_MS", "1000")), help="0 disables polling")
    ap.add_argument("--jsonl-out", default=None, help="Also append shown events to this JSONL file")
    ap.add_argument("--ws-url", default=os.getenv("TIMELINE_REPLAY_WS_URL"), help="Also push shown events to a viewer relay")
    ap.add_argument("--countdown", action="store_true", help="Print the seconds until the next event")
    ap.add_argument("--autostart", action="store_true")
    ap.add_argument("--log-level", default="WARNING")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    try:
        return asyncio.run(main_async(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
