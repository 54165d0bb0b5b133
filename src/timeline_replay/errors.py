from __future__ import annotations

"""History source error taxonomy.

NotFound / OutOfRange are expected at timeline edges. Unreachable covers transport
failures; MalformedResponse is an Unreachable for control flow but logged separately.
"""

from typing import Any, Optional


class HistoryError(RuntimeError):
    pass


class NotFound(HistoryError):
    def __init__(self, message: str, *, index: Optional[int] = None, epoch_ms: Optional[int] = None):
        super().__init__(message)
        self.index = index
        self.epoch_ms = epoch_ms


class OutOfRange(HistoryError):
    def __init__(self, index: int, count: Optional[int]):
        bound = "?" if count is None else str(count)
        super().__init__(f"index {index} outside [0, {bound})")
        self.index = index
        self.count = count


class Unreachable(HistoryError):
    def __init__(self, detail: str, *, status: Optional[int] = None):
        super().__init__(f"history source unreachable: {detail}")
        self.detail = detail
        self.status = status


class MalformedResponse(Unreachable):
    def __init__(self, detail: str, payload: Any = None):
        HistoryError.__init__(self, f"malformed history response: {detail}")
        self.detail = detail
        self.status = None
        self.payload = payload
