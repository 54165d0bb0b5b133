from __future__ import annotations

from typing import Optional

from ..types import TimelineEvent


class EventBuffer:
    """Holds at most one fetched-but-not-yet-shown event.

    Not a queue: display is driven by index, so a newer fetch replaces an older unshown one.
    """

    def __init__(self) -> None:
        self._event: Optional[TimelineEvent] = None

    def put(self, ev: TimelineEvent) -> Optional[TimelineEvent]:
        """Store `ev`; returns whatever it replaced."""
        prev, self._event = self._event, ev
        return prev

    def take(self) -> Optional[TimelineEvent]:
        ev, self._event = self._event, None
        return ev

    def peek(self) -> Optional[TimelineEvent]:
        return self._event

    def clear(self) -> None:
        self._event = None

    def __bool__(self) -> bool:
        return self._event is not None
