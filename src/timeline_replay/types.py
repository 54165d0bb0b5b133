from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Mode(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    SEEKING = "seeking"      # transient, while a start/step is resolving
    STOPPED = "stopped"


class Direction(str, Enum):
    FORWARD = "forward"
    REVERSE = "reverse"

    @property
    def step(self) -> int:
        return 1 if self is Direction.FORWARD else -1


class StopReason(str, Enum):
    END_OF_TIMELINE = "end of timeline"
    START_OF_TIMELINE = "start of timeline"
    USER_REQUESTED = "user requested"
    OUT_OF_RANGE = "out of range"
    NOT_FOUND = "not found"
    UNREACHABLE = "source unreachable"
    MALFORMED_RESPONSE = "malformed response"
    RENDER_FAILED = "renderer failed"

    @property
    def category(self) -> str:
        if self is StopReason.END_OF_TIMELINE:
            return "end"
        if self is StopReason.START_OF_TIMELINE:
            return "start"
        if self is StopReason.USER_REQUESTED:
            return "user"
        return "data error"


@dataclass(frozen=True)
class TimelineEvent:
    index: int
    due_at_epoch_ms: int
    label: str
    target: str
    # None marks the last event of the sequence
    next_due_at_epoch_ms: Optional[int] = None
    action: str = ""

    @property
    def is_last(self) -> bool:
        return self.next_due_at_epoch_ms is None

    def to_wire(self) -> Dict[str, Any]:
        obj: Dict[str, Any] = {
            "index": self.index,
            "dueAtEpochMs": self.due_at_epoch_ms,
            "label": self.label,
            "target": self.target,
        }
        if self.next_due_at_epoch_ms is not None:
            obj["nextDueAtEpochMs"] = self.next_due_at_epoch_ms
        if self.action:
            obj["action"] = self.action
        return obj

    @classmethod
    def from_wire(cls, obj: Dict[str, Any]) -> "TimelineEvent":
        """Build from a JSON object.

        Accepts both the current field names and the older servlet ones
        (id / epochMs / url / nextEpochMs). Raises KeyError, TypeError or
        ValueError on a bad shape; callers translate that to MalformedResponse.
        """
        index = obj["index"] if "index" in obj else obj["id"]
        due = obj["dueAtEpochMs"] if "dueAtEpochMs" in obj else obj["epochMs"]
        target = obj["target"] if "target" in obj else obj["url"]
        nxt = obj.get("nextDueAtEpochMs", obj.get("nextEpochMs"))
        if isinstance(index, bool) or isinstance(due, bool):
            raise TypeError("index/due must be integers")
        ev = cls(
            index=int(index),
            due_at_epoch_ms=int(due),
            label=str(obj.get("label", "")),
            target=str(target),
            next_due_at_epoch_ms=None if nxt is None else int(nxt),
            action=str(obj.get("action") or ""),
        )
        if ev.index < 0:
            raise ValueError(f"negative index: {ev.index}")
        return ev


@dataclass(frozen=True)
class ClockOffset:
    remote_epoch_ms_at_sample: int
    local_epoch_ms_at_sample: int

    @property
    def offset_ms(self) -> int:
        return self.remote_epoch_ms_at_sample - self.local_epoch_ms_at_sample


@dataclass(frozen=True)
class ShowRequest:
    """What the renderer receives for one displayed event."""
    label: str
    target: str
    display_epoch_ms: int
    index: int = -1
    action: str = ""
