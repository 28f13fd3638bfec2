"""Split keyboard bytes into pass-through data and commands.

Every command is ``ESC`` followed by exactly one byte. Anything else that
starts with ``ESC`` (arrow keys, function keys, a lone ``ESC``) is passed
through untouched so the child programs keep working.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

ESC = 0x1B


class CommandType(enum.Enum):
    NEW_SESSION = "new_session"
    SWITCH = "switch"
    CLOSE = "close"
    QUIT = "quit"


@dataclass(frozen=True)
class Command:
    """A multiplexer command decoded from an escape sequence."""

    type: CommandType
    index: int | None = None  # Target of SWITCH


@dataclass(frozen=True)
class Forward:
    """Bytes to pass to the active session."""

    data: bytes


RoutedInput = Command | Forward

_LETTER_COMMANDS = {
    ord("n"): CommandType.NEW_SESSION,
    ord("d"): CommandType.CLOSE,
    ord("q"): CommandType.QUIT,
}


def classify(seq: bytes) -> Command | None:
    """Decode a complete escape sequence, or return None if it is not a command."""
    if len(seq) != 2 or seq[0] != ESC:
        return None
    key = seq[1]
    if ord("1") <= key <= ord("9"):
        return Command(CommandType.SWITCH, index=key - ord("0"))
    # ASCII letters: lowercase by setting bit 5
    if ord("A") <= key <= ord("Z") or ord("a") <= key <= ord("z"):
        command_type = _LETTER_COMMANDS.get(key | 0x20)
        if command_type is not None:
            return Command(command_type)
    return None


class InputRouter:
    """Turns raw stdin chunks into ``Forward`` and ``Command`` items.

    When a chunk ends right after an ``ESC`` (or inside a sequence), the
    router reads a little more via ``read_more`` so a command typed as two
    separate keystrokes is still recognized. ``read_more(n, timeout)`` must
    return at most ``n`` bytes, or ``b""`` if nothing arrived in time.

    A sequence that is cut off by the timeout is replayed verbatim.
    """

    def __init__(
        self,
        read_more: Callable[[int, float], bytes] | None = None,
        escape_timeout: float = 0.015,
        max_len: int = 64,
    ) -> None:
        self._read_more = read_more
        self.escape_timeout = escape_timeout
        self.max_len = max_len

    def route(self, data: bytes) -> list[RoutedInput]:
        """Route one chunk read from stdin."""
        items: list[RoutedInput] = []
        buf = bytearray(data)
        pos = 0
        while pos < len(buf):
            if buf[pos] != ESC:
                esc = buf.find(ESC, pos)
                end = len(buf) if esc < 0 else esc
                items.append(Forward(bytes(buf[pos:end])))
                pos = end
                continue

            end = self._sequence_end(buf, pos)
            while end == len(buf) and end - pos < self.max_len:
                more = self._secondary_read(self.max_len - (end - pos))
                if not more:
                    break
                buf.extend(more)
                end = self._sequence_end(buf, pos)

            seq = bytes(buf[pos:end])
            command = classify(seq)
            if command is not None:
                logger.debug("Command %s (index=%s)", command.type.value, command.index)
                items.append(command)
            else:
                items.append(Forward(seq))
            pos = end
        return items

    def _sequence_end(self, buf: bytearray, start: int) -> int:
        # A sequence runs up to the next ESC, capped at max_len bytes
        nxt = buf.find(ESC, start + 1)
        end = len(buf) if nxt < 0 else nxt
        return min(end, start + self.max_len)

    def _secondary_read(self, size: int) -> bytes:
        if self._read_more is None or size <= 0:
            return b""
        try:
            return self._read_more(size, self.escape_timeout)
        except OSError as e:
            logger.debug("Escape sequence read failed: %s", e)
            return b""
