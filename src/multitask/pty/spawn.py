"""PTY spawner — start a program as session leader on a fresh pty."""

from __future__ import annotations

import fcntl
import logging
import os
import pty
import struct
import subprocess
import termios

from multitask.errors import SpawnError

logger = logging.getLogger(__name__)

DEFAULT_TERM = "xterm-256color"

_WINSIZE = struct.Struct("HHHH")


def set_winsize(fd: int, rows: int, cols: int) -> None:
    """Set the window size of the terminal behind ``fd``."""
    fcntl.ioctl(fd, termios.TIOCSWINSZ, _WINSIZE.pack(rows, cols, 0, 0))


def get_winsize(fd: int) -> tuple[int, int]:
    """Return ``(rows, cols)`` of the terminal behind ``fd``."""
    packed = fcntl.ioctl(fd, termios.TIOCGWINSZ, b"\0" * _WINSIZE.size)
    rows, cols, _, _ = _WINSIZE.unpack(packed)
    return rows, cols


def _make_controlling_tty() -> None:
    # Runs in the child after setsid() and after the slave was dup'ed to 0-2.
    fcntl.ioctl(0, termios.TIOCSCTTY, 0)


def child_env(term: str = DEFAULT_TERM) -> dict[str, str]:
    """Environment for a child: ours, with TERM defaulted when unset or empty."""
    env = dict(os.environ)
    if not env.get("TERM"):
        env["TERM"] = term
    return env


def spawn(
    target_path: str,
    rows: int,
    cols: int,
    term: str = DEFAULT_TERM,
) -> tuple[int, int, subprocess.Popen]:
    """Spawn ``target_path`` attached to a new pty.

    The child becomes a session leader with the pty slave as its
    controlling terminal and as stdin/stdout/stderr. It inherits no other
    descriptors and is run with no arguments.

    Args:
        target_path: Absolute path of the program to run.
        rows: Initial window height.
        cols: Initial window width.
        term: TERM value used when the environment has none.

    Returns:
        ``(pid, master_fd, process)``. The master fd is non-blocking and
        owned by the caller.

    Raises:
        SpawnError: The pty could not be allocated or the child could not
            be started. Nothing is left open in that case.
    """
    try:
        master_fd, slave_fd = pty.openpty()
    except OSError as e:
        raise SpawnError(f"Could not allocate pty: {e}") from e

    try:
        set_winsize(master_fd, rows, cols)
        proc = subprocess.Popen(
            [target_path],
            stdin=slave_fd,
            stdout=slave_fd,
            stderr=slave_fd,
            start_new_session=True,
            preexec_fn=_make_controlling_tty,
            env=child_env(term),
        )
    except (OSError, subprocess.SubprocessError) as e:
        os.close(master_fd)
        raise SpawnError(f"Could not start {target_path}: {e}") from e
    finally:
        # The parent never talks to the slave side
        os.close(slave_fd)

    os.set_blocking(master_fd, False)
    logger.info(
        "Spawned %s: pid=%d master_fd=%d size=%dx%d",
        target_path,
        proc.pid,
        master_fd,
        cols,
        rows,
    )
    return proc.pid, master_fd, proc
