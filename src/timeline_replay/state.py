from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .types import Direction, Mode, StopReason, TimelineEvent


@dataclass
class PlaybackState:
    mode: Mode = Mode.IDLE

    # index of the event currently on screen (-1 before the first display)
    current_index: int = -1

    direction: Direction = Direction.FORWARD

    # mirrors the scheduler's buffer for observers
    buffered_event: Optional[TimelineEvent] = None

    # last stop, for status lines and logs
    stop_reason: Optional[StopReason] = None
    stop_detail: str = ""

    @property
    def is_playing(self) -> bool:
        return self.mode == Mode.PLAYING

    def describe(self) -> str:
        parts = [f"mode={self.mode.value}", f"index={self.current_index}", f"direction={self.direction.value}"]
        if self.buffered_event is not None:
            parts.append(f"buffered={self.buffered_event.index}")
        if self.mode == Mode.STOPPED and self.stop_reason is not None:
            reason = self.stop_reason.value
            if self.stop_detail:
                reason += f" ({self.stop_detail})"
            parts.append(f"stopped: {reason}")
        return " ".join(parts)
