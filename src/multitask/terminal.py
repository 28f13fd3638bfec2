"""Real terminal setup and teardown."""

from __future__ import annotations

import logging
import os
import termios

from multitask.errors import TerminalError
from multitask.fdio import write_all

logger = logging.getLogger(__name__)

# Alternate screen, clear, home, hide cursor
PROLOGUE = b"\x1b[?1049h\x1b[2J\x1b[H\x1b[?25l"
# Show cursor, leave alternate screen
EPILOGUE = b"\x1b[?25h\x1b[?1049l"

DEFAULT_SIZE = (24, 80)
STATUS_ROWS = 1

# termios.tcgetattr() list positions
_IFLAG, _OFLAG, _CFLAG, _LFLAG, _CC = 0, 1, 2, 3, 6


def terminal_size(fd: int) -> tuple[int, int]:
    """Return ``(rows, cols)`` of the terminal on ``fd``, or 24x80 if unknown."""
    try:
        size = os.get_terminal_size(fd)
    except OSError:
        return DEFAULT_SIZE
    if size.lines <= 0 or size.columns <= 0:
        return DEFAULT_SIZE
    return size.lines, size.columns


def session_size(rows: int, cols: int) -> tuple[int, int]:
    """Window size left for sessions once the status row is reserved."""
    if rows > STATUS_ROWS:
        rows -= STATUS_ROWS
    return rows, cols


class RawTerminal:
    """Puts the real terminal into raw mode for the lifetime of a ``with`` block.

    On entry: raw mode, non-blocking stdin, alternate screen, hidden
    cursor. On exit everything is put back, also when the block raises.
    ``restore()`` is idempotent so it can be called early before printing
    an error.
    """

    def __init__(self, stdin_fd: int = 0, stdout_fd: int = 1) -> None:
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self._saved: list | None = None
        self._was_blocking = True

    def __enter__(self) -> RawTerminal:
        self.enter()
        return self

    def __exit__(self, *exc: object) -> None:
        self.restore()

    def enter(self) -> None:
        """Switch to raw mode.

        Raises:
            TerminalError: stdin is not a terminal or its mode could not be
                changed. The terminal is left as it was.
        """
        try:
            saved = termios.tcgetattr(self.stdin_fd)
        except termios.error as e:
            raise TerminalError(f"tcgetattr: {e}") from e

        raw = [list(x) if isinstance(x, list) else x for x in saved]
        raw[_LFLAG] &= ~(termios.ICANON | termios.ECHO | termios.IEXTEN)
        raw[_IFLAG] &= ~(
            termios.IXON | termios.ICRNL | termios.BRKINT | termios.INPCK | termios.ISTRIP
        )
        raw[_OFLAG] &= ~termios.OPOST
        raw[_CFLAG] |= termios.CS8
        raw[_CC][termios.VMIN] = 0
        raw[_CC][termios.VTIME] = 1

        try:
            termios.tcsetattr(self.stdin_fd, termios.TCSANOW, raw)
        except termios.error as e:
            raise TerminalError(f"tcsetattr: {e}") from e
        self._saved = saved

        try:
            self._was_blocking = os.get_blocking(self.stdin_fd)
            os.set_blocking(self.stdin_fd, False)
            write_all(self.stdout_fd, PROLOGUE)
        except OSError as e:
            self.restore()
            raise TerminalError(f"Terminal setup failed: {e}") from e
        logger.debug("Terminal in raw mode")

    def restore(self) -> None:
        """Put the terminal back the way ``enter()`` found it."""
        if self._saved is None:
            return
        saved, self._saved = self._saved, None
        try:
            termios.tcsetattr(self.stdin_fd, termios.TCSANOW, saved)
            os.set_blocking(self.stdin_fd, self._was_blocking)
            write_all(self.stdout_fd, EPILOGUE)
        except (termios.error, OSError) as e:
            logger.warning("Could not fully restore terminal: %s", e)
        logger.debug("Terminal restored")

    @property
    def active(self) -> bool:
        return self._saved is not None

    def size(self) -> tuple[int, int]:
        return terminal_size(self.stdout_fd)
