#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Allow running as a script without installing the package
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from timeline_replay.clock import fmt_epoch_ms, now_ms
from timeline_replay.io.recorder import write_history
from timeline_replay.sources.memory import HistoryRecord

# (offset from base in ms, page letter, action)
SAMPLE = [
    (0, "a", "navigate"), (5000, "b", "click"), (10000, "c", "click"), (15000, "d", "backBtn"),
    (20000, "e", "formSubmit"), (25000, "f", "tabClick"), (30000, "g", "linkClick"),
    (35000, "h", "buttonClick"), (45000, "i", "linkClick"), (50000, "j", "formSubmit"),
    (55000, "k", "backBtn"), (60000, "l", "click"), (65000, "m", "navigate"),
    (70000, "a", "linkClick"), (75000, "b", "buttonClick"), (80000, "c", "navigate"),
    (224000, "d", "click"), (240000, "e", "linkClick"), (256000, "f", "formSubmit"),
    (272000, "g", "buttonClick"), (288000, "h", "click"), (305000, "i", "navigate"),
    (322000, "j", "linkClick"), (339000, "k", "formSubmit"), (356000, "l", "click"),
    (373000, "m", "buttonClick"), (390000, "a", "navigate"), (407000, "b", "linkClick"),
    (424000, "c", "click"), (441000, "d", "formSubmit"),
]


def sample_records(base_ms: int, scale: float = 1.0) -> list[HistoryRecord]:
    return [
        HistoryRecord(
            due_at_epoch_ms=base_ms + int(off * scale),
            label=f"URL_{letter.upper()}",
            target=f"/pages/url_{letter}.html",
            action=action,
        )
        for off, letter, action in SAMPLE
    ]


def main() -> int:
    ap = argparse.ArgumentParser(description="Write a sample 30-event history (JSONL) starting near now")
    ap.add_argument("--out", default="state/history/sample.jsonl")
    ap.add_argument("--lead-sec", type=float, default=10.0, help="First event is due this long after now")
    ap.add_argument("--scale", type=float, default=1.0, help="Multiply gaps between events (0.1 = ten times faster)")
    args = ap.parse_args()

    base = now_ms() + int(args.lead_sec * 1000)
    recs = sample_records(base, args.scale)
    n = write_history(args.out, recs)
    print(f"Wrote {n} events to {args.out}")
    print(f"First due {fmt_epoch_ms(recs[0].due_at_epoch_ms)}, last due {fmt_epoch_ms(recs[-1].due_at_epoch_ms)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
