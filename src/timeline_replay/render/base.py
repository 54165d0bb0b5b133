from __future__ import annotations

from typing import Optional, Protocol, runtime_checkable

from ..types import ShowRequest


@runtime_checkable
class Renderer(Protocol):
    def show(self, req: ShowRequest) -> None:
        ...


def countdown_hook(renderer: Renderer):
    """The renderer's countdown(remaining_ms) method, if it has one."""
    hook = getattr(renderer, "countdown", None)
    return hook if callable(hook) else None


def fmt_countdown(remaining_ms: Optional[int]) -> str:
    if remaining_ms is None:
        return "---"
    return f"{(max(0, remaining_ms) + 999) // 1000}s"
