"""Bottom-row status line."""

from __future__ import annotations

from collections.abc import Iterable

SAVE_CURSOR = "\x1b[s"
RESTORE_CURSOR = "\x1b[u"
CLEAR_LINE = "\x1b[2K"


class StatusRenderer:
    """Draws the session indicator without disturbing the content area.

    The cursor is saved before drawing and restored afterwards, so the
    active session never sees it move.
    """

    def __init__(self, label: str = "multitask", padding: str = " ") -> None:
        self.label = label
        self.padding = padding

    def line(
        self,
        indices: Iterable[int],
        active_index: int | None,
        notice: str | None = None,
    ) -> str:
        """Plain text of the status line, e.g. ``multitask [1] [2*] ``."""
        parts = [f"{self.label}{self.padding}"]
        for index in sorted(indices):
            marker = "*" if index == active_index else ""
            parts.append(f"[{index}{marker}]{self.padding}")
        if notice:
            parts.append(f"| {notice}")
        return "".join(parts)

    def render(
        self,
        indices: Iterable[int],
        active_index: int | None,
        rows: int,
        cols: int,
        notice: str | None = None,
    ) -> bytes:
        """Escape sequence that redraws the status row (row ``rows``)."""
        if rows <= 0 or cols <= 0:
            return b""
        text = self.line(indices, active_index, notice)[:cols]
        sequence = f"{SAVE_CURSOR}\x1b[{rows};1H{CLEAR_LINE}{text}{RESTORE_CURSOR}"
        return sequence.encode("utf-8", errors="replace")
