"""PTY sessions — child programs attached to their own pseudo-terminals.

Every session runs as a session leader with its pty slave as controlling
terminal. The registry tracks them in a fixed-size table and makes sure
every fd is closed and every child reaped.
"""

from multitask.pty.registry import SessionRegistry
from multitask.pty.session import Session, SessionStatus
from multitask.pty.spawn import get_winsize, set_winsize, spawn

__all__ = [
    "Session",
    "SessionStatus",
    "SessionRegistry",
    "get_winsize",
    "set_winsize",
    "spawn",
]
