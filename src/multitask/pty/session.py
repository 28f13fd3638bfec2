"""One child program and the master side of its pty."""

from __future__ import annotations

import enum
import logging
import os
import signal
import subprocess
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)


class SessionStatus(enum.Enum):
    """Lifecycle states for a session."""

    SPAWNING = "spawning"
    RUNNING = "running"
    EXITED = "exited"  # Child exited on its own
    CLOSED = "closed"  # Closed by the user


@dataclass
class Session:
    """A spawned child plus its master fd and display index.

    ``pid`` and ``master_fd`` are only meaningful while the session is in
    use. The master fd is closed exactly once, by ``close_fd()``.
    """

    index: int
    pid: int
    master_fd: int
    proc: subprocess.Popen | None = field(default=None, repr=False)
    status: SessionStatus = SessionStatus.SPAWNING
    exit_code: int | None = None

    @property
    def in_use(self) -> bool:
        return self.status == SessionStatus.RUNNING

    def poll(self) -> int | None:
        """Reap the child without blocking. Returns its exit code, or None."""
        if self.exit_code is not None:
            return self.exit_code
        if self.proc is not None:
            self.exit_code = self.proc.poll()
            return self.exit_code
        try:
            pid, status = os.waitpid(self.pid, os.WNOHANG)
        except ChildProcessError:
            self.exit_code = -1
            return self.exit_code
        if pid == 0:
            return None
        self.exit_code = os.waitstatus_to_exitcode(status)
        return self.exit_code

    def terminate(self, timeout: float = 2.0) -> int | None:
        """Send SIGTERM and wait for the child, escalating to SIGKILL."""
        if self.poll() is not None:
            return self.exit_code
        try:
            os.kill(self.pid, signal.SIGTERM)
        except ProcessLookupError:
            logger.debug("Session %d: pid %d already gone", self.index, self.pid)

        if self.proc is None:
            _, status = os.waitpid(self.pid, 0)
            self.exit_code = os.waitstatus_to_exitcode(status)
            return self.exit_code

        try:
            self.exit_code = self.proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning(
                "Session %d: pid %d ignored SIGTERM, killing", self.index, self.pid
            )
            self.proc.kill()
            self.exit_code = self.proc.wait()
        return self.exit_code

    def close_fd(self) -> None:
        """Close the master fd if it is still open."""
        if self.master_fd < 0:
            return
        try:
            os.close(self.master_fd)
        except OSError as e:
            logger.debug("Session %d: closing fd %d: %s", self.index, self.master_fd, e)
        self.master_fd = -1
