"""Session registry — a fixed-size table of pty sessions."""

from __future__ import annotations

import logging

from multitask.config import MAX_SESSIONS
from multitask.errors import SessionLimitError, SpawnError
from multitask.fdio import write_all
from multitask.pty.session import Session, SessionStatus
from multitask.pty.spawn import DEFAULT_TERM, set_winsize, spawn

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Owns every session and its resources.

    The table has ``max_sessions`` slots. Each in-use session carries a
    display index in ``[1, max_sessions]``; a freed index is handed out
    again by the next spawn, lowest first.

    All sessions are closed by ``close_all()`` (no orphan processes).
    """

    def __init__(
        self,
        max_sessions: int = MAX_SESSIONS,
        term: str = DEFAULT_TERM,
        close_timeout: float = 2.0,
    ) -> None:
        self.max_sessions = max_sessions
        self.term = term
        self.close_timeout = close_timeout
        self._slots: list[Session | None] = [None] * max_sessions
        # Released on EOF but not reaped yet
        self._pending: list[Session] = []

    # -- lookup ------------------------------------------------------------

    def allocate_index(self) -> int | None:
        """Smallest index not used by any in-use session, or None when full."""
        used = set(self.indices())
        for index in range(1, self.max_sessions + 1):
            if index not in used:
                return index
        return None

    def find_free_slot(self) -> int | None:
        """Position of the first unused slot, or None when the table is full."""
        for slot, session in enumerate(self._slots):
            if session is None:
                return slot
        return None

    def find_slot_by_index(self, index: int | None) -> int | None:
        """Slot holding the in-use session with this index, or None."""
        if index is None:
            return None
        for slot, session in enumerate(self._slots):
            if session is not None and session.index == index:
                return slot
        return None

    def get(self, index: int | None) -> Session | None:
        """Get an in-use session by index."""
        slot = self.find_slot_by_index(index)
        return self._slots[slot] if slot is not None else None

    def sessions(self) -> list[Session]:
        """In-use sessions in slot order."""
        return [s for s in self._slots if s is not None]

    def indices(self) -> list[int]:
        """Sorted indices of in-use sessions."""
        return sorted(s.index for s in self.sessions())

    # -- lifecycle ---------------------------------------------------------

    def spawn_session(self, target_path: str, rows: int, cols: int) -> int:
        """Spawn ``target_path`` in a new session and return its index.

        Raises:
            SessionLimitError: No slot or index is free.
            SpawnError: The spawner failed. The table is left unchanged.
        """
        slot = self.find_free_slot()
        index = self.allocate_index()
        if slot is None or index is None:
            raise SessionLimitError(self.max_sessions)
        if rows <= 0 or cols <= 0:
            raise SpawnError("Terminal size unavailable.")

        pid, master_fd, proc = spawn(target_path, rows, cols, term=self.term)
        session = Session(index=index, pid=pid, master_fd=master_fd, proc=proc)
        session.status = SessionStatus.RUNNING
        self._slots[slot] = session
        logger.info("Session %d started in slot %d (pid=%d)", index, slot, pid)
        return index

    def close_session(self, index: int | None) -> bool:
        """Terminate a session, wait for it, close its fd and free the slot.

        Returns False (and does nothing) if no in-use session has ``index``.
        """
        slot = self.find_slot_by_index(index)
        if slot is None:
            return False
        session = self._slots[slot]
        self._slots[slot] = None
        try:
            exit_code = session.terminate(self.close_timeout)
        finally:
            session.close_fd()
            session.status = SessionStatus.CLOSED
        logger.info("Session %d closed (code=%s)", session.index, exit_code)
        return True

    def release(self, index: int | None) -> bool:
        """Free a session whose pty reached end-of-stream.

        The child is reaped if it already exited; otherwise it is kept on a
        pending list for the next ``reap()``. Returns False if ``index`` is
        not in use, which makes repeated calls harmless.
        """
        slot = self.find_slot_by_index(index)
        if slot is None:
            return False
        session = self._slots[slot]
        self._slots[slot] = None
        session.close_fd()
        session.status = SessionStatus.EXITED
        if session.poll() is None:
            self._pending.append(session)
        logger.info("Session %d ended (code=%s)", session.index, session.exit_code)
        return True

    def reap(self) -> list[Session]:
        """Reap exited children without blocking.

        Frees the slot of every in-use session whose child has exited and
        returns those sessions. Also collects children released earlier.
        """
        freed: list[Session] = []
        for slot, session in enumerate(self._slots):
            if session is None or session.poll() is None:
                continue
            self._slots[slot] = None
            session.close_fd()
            session.status = SessionStatus.EXITED
            logger.info("Session %d reaped (code=%s)", session.index, session.exit_code)
            freed.append(session)

        self._pending = [s for s in self._pending if s.poll() is None]
        return freed

    def close_all(self) -> None:
        """Close every session. Called on shutdown."""
        for index in self.indices():
            self.close_session(index)
        for session in self._pending:
            session.terminate(self.close_timeout)
        self._pending.clear()
        logger.info("All sessions cleaned up")

    # -- I/O ---------------------------------------------------------------

    def write(self, index: int | None, data: bytes) -> bool:
        """Write ``data`` to a session's pty. No-op if it is not in use.

        Never waits: whatever the child's input queue cannot take right now
        is dropped, so a child that stopped reading cannot stall the loop.
        """
        session = self.get(index)
        if session is None or not data:
            return False
        try:
            write_all(session.master_fd, data, stall_timeout=0)
        except OSError as e:
            # The read side notices the dead session on the next tick
            logger.debug("Session %d: write failed: %s", session.index, e)
            return False
        return True

    def resize_all(self, rows: int, cols: int) -> None:
        """Apply a new window size to every in-use session."""
        for session in self.sessions():
            try:
                set_winsize(session.master_fd, rows, cols)
            except OSError as e:
                logger.debug("Session %d: resize failed: %s", session.index, e)

    def __len__(self) -> int:
        return len(self.sessions())

    def __contains__(self, index: int) -> bool:
        return self.find_slot_by_index(index) is not None
