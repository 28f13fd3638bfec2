"""Exceptions raised by the multiplexer.

Fatal errors (``TerminalError``, ``TargetError``) abort startup. Per-spawn
errors (``SpawnError``, ``SessionLimitError``) are handled inside the loop
and never affect running sessions.
"""

from __future__ import annotations


class MultitaskError(Exception):
    """Base exception for all multiplexer errors."""


class TerminalError(MultitaskError):
    """The real terminal could not be put into raw mode."""


class TargetError(MultitaskError):
    """The target program could not be resolved or is not executable."""


class SpawnError(MultitaskError):
    """A pty could not be allocated or the child could not be started."""


class SessionLimitError(MultitaskError):
    """Every session slot is in use."""

    def __init__(self, max_sessions: int) -> None:
        self.max_sessions = max_sessions
        super().__init__(f"No free session slots available ({max_sessions} in use)")
