from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable

from ..sources.memory import HistoryRecord


class JsonlRecorder:
    """Append-only JSONL recorder.

    Writes one object per line. Used for history files and for the log of what was shown.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def append(self, obj: Dict[str, Any]) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(obj, ensure_ascii=False))
            f.write("\n")

    def extend(self, objs: Iterable[Dict[str, Any]]) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            for obj in objs:
                f.write(json.dumps(obj, ensure_ascii=False))
                f.write("\n")


def record_to_obj(rec: HistoryRecord) -> Dict[str, Any]:
    obj: Dict[str, Any] = {"dueAtEpochMs": rec.due_at_epoch_ms, "label": rec.label, "target": rec.target}
    if rec.action:
        obj["action"] = rec.action
    return obj


def write_history(path: str | Path, records: Iterable[HistoryRecord]) -> int:
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    n = 0
    with p.open("w", encoding="utf-8") as f:
        for rec in records:
            f.write(json.dumps(record_to_obj(rec), ensure_ascii=False) + "\n")
            n += 1
    return n


def read_history(path: str | Path) -> list[HistoryRecord]:
    """Load a history file. Old-style lines (epochMs/url) are accepted too."""
    p = Path(path)
    out: list[HistoryRecord] = []
    if not p.exists():
        return out
    with p.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            obj = json.loads(line)
            due = obj["dueAtEpochMs"] if "dueAtEpochMs" in obj else obj["epochMs"]
            target = obj["target"] if "target" in obj else obj["url"]
            out.append(
                HistoryRecord(
                    due_at_epoch_ms=int(due),
                    label=str(obj.get("label", "")),
                    target=str(target),
                    action=str(obj.get("action") or ""),
                )
            )
    out.sort(key=lambda r: r.due_at_epoch_ms)
    return out
