"""Core event loop: one terminal, several pty sessions."""

from __future__ import annotations

import enum
import logging
import os
import select
import signal
from dataclasses import dataclass
from typing import Any, Callable

from multitask.config import MultitaskConfig
from multitask.errors import SessionLimitError, SpawnError
from multitask.fdio import read_ready, write_all
from multitask.pty.registry import SessionRegistry
from multitask.router import Command, CommandType, Forward, InputRouter
from multitask.status import StatusRenderer
from multitask.terminal import session_size, terminal_size
from multitask.wire import Wire

logger = logging.getLogger(__name__)


class MuxState(enum.Enum):
    """Lifecycle of the multiplexer."""

    INITIALIZING = "initializing"
    LOOPING = "looping"
    DRAINING = "draining"  # Closing every session
    TERMINATED = "terminated"


@dataclass
class SignalFlags:
    """Set by signal handlers, cleared by the loop. Nothing else touches them."""

    resize_requested: bool = False
    child_exited: bool = False


class Multiplexer:
    """Multiplexes one real terminal between several pty sessions.

    Single-threaded: every tick waits (with a short timeout) for input on
    stdin or output from any session, then handles whatever is ready. The
    session table, the active index and the signal flags are only touched
    from ``tick()``; signal handlers merely set a flag.

    Usage:
        mux = Multiplexer(target_path, config)
        mux.run()  # returns once the user quits or every session is gone
    """

    def __init__(
        self,
        target_path: str,
        config: MultitaskConfig | None = None,
        *,
        stdin_fd: int = 0,
        stdout_fd: int = 1,
        registry: SessionRegistry | None = None,
        wire: Wire | None = None,
        size_provider: Callable[[], tuple[int, int]] | None = None,
    ) -> None:
        self.target_path = target_path
        self.config = config or MultitaskConfig()
        self.stdin_fd = stdin_fd
        self.stdout_fd = stdout_fd
        self.registry = registry or SessionRegistry(
            max_sessions=self.config.max_sessions,
            term=self.config.term,
            close_timeout=self.config.close_timeout,
        )
        self.wire = wire or Wire()
        self.flags = SignalFlags()
        self.router = InputRouter(
            read_more=self._read_stdin_more,
            escape_timeout=self.config.escape_timeout,
            max_len=self.config.escape_max_len,
        )
        self.renderer = StatusRenderer(label=self.config.status_label)
        self._size_provider = size_provider or (lambda: terminal_size(stdout_fd))

        self.rows, self.cols = self._size_provider()
        self.session_rows, self.session_cols = session_size(self.rows, self.cols)
        self.active_index: int | None = None
        # Spawn failure shown on the status line until a slot frees up or a spawn succeeds
        self.notice: str | None = None
        self.state = MuxState.INITIALIZING

    # -- signals -----------------------------------------------------------

    def request_resize(self, signum: int | None = None, frame: Any = None) -> None:
        """SIGWINCH handler."""
        self.flags.resize_requested = True

    def notify_child_exit(self, signum: int | None = None, frame: Any = None) -> None:
        """SIGCHLD handler."""
        self.flags.child_exited = True

    def install_signal_handlers(self) -> dict[int, Any]:
        """Install the SIGWINCH/SIGCHLD handlers, returning the previous ones."""
        return {
            signal.SIGWINCH: signal.signal(signal.SIGWINCH, self.request_resize),
            signal.SIGCHLD: signal.signal(signal.SIGCHLD, self.notify_child_exit),
        }

    @staticmethod
    def restore_signal_handlers(previous: dict[int, Any]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> int:
        """Spawn the first session and enter the loop state.

        Raises:
            SpawnError: The first session could not be started.
        """
        try:
            index = self.registry.spawn_session(
                self.target_path, self.session_rows, self.session_cols
            )
        except SessionLimitError as e:
            raise SpawnError(str(e)) from e
        self._activate_new(index)
        self.state = MuxState.LOOPING
        return index

    def run(self) -> None:
        """Run until quit or until no session is left, then clean up."""
        previous = self.install_signal_handlers()
        try:
            self.start()
            while self.tick():
                pass
        finally:
            self.shutdown()
            self.restore_signal_handlers(previous)

    def shutdown(self) -> None:
        """Close every session and stop. Safe to call more than once."""
        if self.state is MuxState.TERMINATED:
            return
        self.state = MuxState.DRAINING
        logger.info("Shutting down (%d sessions open)", len(self.registry))
        self.registry.close_all()
        self.active_index = None
        self.wire.close()
        self.state = MuxState.TERMINATED

    def stop(self) -> None:
        """Leave the loop at the end of the current tick."""
        if self.state is MuxState.LOOPING:
            self.state = MuxState.DRAINING

    # -- the loop ----------------------------------------------------------

    def tick(self) -> bool:
        """Run one loop iteration. Returns False once the loop should end."""
        if self.state is MuxState.INITIALIZING:
            self.state = MuxState.LOOPING
        if self.state is not MuxState.LOOPING:
            return False

        # 1. Status line
        self._render_status()

        # 2-3. Wait for readiness
        session_fds = {s.master_fd: s.index for s in self.registry.sessions()}
        try:
            ready, _, _ = select.select(
                [self.stdin_fd, *session_fds], [], [], self.config.poll_timeout
            )
        except InterruptedError:
            ready = []
        except (OSError, ValueError) as e:
            logger.error("select failed: %s", e)
            self.stop()
            return False

        # 4. Session output
        for fd in ready:
            if fd in session_fds:
                self._pump_session(session_fds[fd], fd)

        # 5. Keyboard
        if self.stdin_fd in ready:
            self._handle_stdin()

        # 6. Resize
        if self.flags.resize_requested:
            self.flags.resize_requested = False
            self.apply_resize()

        # 7. Reap
        if self.flags.child_exited:
            self.flags.child_exited = False
            self.reap()

        if self.state is not MuxState.LOOPING:
            return False

        # 8. Fallback selection
        if self.active_index is None:
            indices = self.registry.indices()
            if not indices:
                logger.info("No sessions left")
                self.stop()
                return False
            self.active_index = indices[0]
            self.wire.send_switched(self.active_index)
        return True

    def _render_status(self) -> None:
        data = self.renderer.render(
            self.registry.indices(), self.active_index, self.rows, self.cols, self.notice
        )
        if data:
            self._write_stdout(data)

    def _pump_session(self, index: int, fd: int) -> None:
        try:
            data = os.read(fd, self.config.read_size)
        except BlockingIOError:
            return
        except OSError as e:
            # EIO once the slave side is gone
            logger.debug("Session %d: read failed: %s", index, e)
            data = b""
        if data:
            self._write_stdout(data)
        else:
            self._session_ended(index)

    def _session_ended(self, index: int) -> None:
        session = self.registry.get(index)
        if session is None or not self.registry.release(index):
            return
        self.wire.send_exited(index, session.exit_code)
        self.notice = None
        if self.active_index == index:
            self.active_index = None

    def _handle_stdin(self) -> None:
        try:
            data = os.read(self.stdin_fd, self.config.stdin_read_size)
        except BlockingIOError:
            return
        except OSError as e:
            logger.error("stdin read failed: %s", e)
            self.stop()
            return
        if not data:
            logger.info("stdin closed")
            self.stop()
            return

        for item in self.router.route(data):
            if isinstance(item, Forward):
                self.registry.write(self.active_index, item.data)
            elif not self.dispatch(item):
                break

    def _read_stdin_more(self, size: int, timeout: float) -> bytes:
        return read_ready(self.stdin_fd, size, timeout)

    def _write_stdout(self, data: bytes) -> None:
        try:
            write_all(self.stdout_fd, data)
        except OSError as e:
            logger.error("stdout write failed: %s", e)
            self.stop()

    # -- commands ----------------------------------------------------------

    def dispatch(self, command: Command) -> bool:
        """Apply a command. Returns False for QUIT."""
        if command.type is CommandType.NEW_SESSION:
            self.new_session()
        elif command.type is CommandType.SWITCH:
            self.switch_to(command.index)
        elif command.type is CommandType.CLOSE:
            self.close_active()
        elif command.type is CommandType.QUIT:
            logger.info("Quit requested")
            self.stop()
            return False
        return True

    def new_session(self) -> int | None:
        """Spawn a session and make it active. Returns its index, or None on failure."""
        try:
            index = self.registry.spawn_session(
                self.target_path, self.session_rows, self.session_cols
            )
        except (SessionLimitError, SpawnError) as e:
            logger.warning("Spawn failed: %s", e)
            self.notice = str(e)
            self.wire.send_spawn_failed(str(e))
            return None
        self._activate_new(index)
        return index

    def _activate_new(self, index: int) -> None:
        session = self.registry.get(index)
        self.notice = None
        self.active_index = index
        self.wire.send_spawned(index, session.pid if session else -1)

    def switch_to(self, index: int | None) -> bool:
        """Make ``index`` active if such a session exists."""
        if index is None or index not in self.registry:
            return False
        self.active_index = index
        self.wire.send_switched(index)
        return True

    def close_active(self) -> bool:
        """Close the active session. No-op when there is none."""
        index = self.active_index
        if not self.registry.close_session(index):
            return False
        self.active_index = None
        self.notice = None
        self.wire.send_closed(index)
        return True

    def apply_resize(self) -> None:
        """Re-read the terminal size and pass it on to every session."""
        self.rows, self.cols = self._size_provider()
        self.session_rows, self.session_cols = session_size(self.rows, self.cols)
        self.registry.resize_all(self.session_rows, self.session_cols)
        logger.debug("Resized sessions to %dx%d", self.session_cols, self.session_rows)
        self.wire.send_resized(self.session_rows, self.session_cols)

    def reap(self) -> list[int]:
        """Free every session whose child has exited. Returns their indices."""
        freed = []
        for session in self.registry.reap():
            self.wire.send_exited(session.index, session.exit_code)
            self.notice = None
            if self.active_index == session.index:
                self.active_index = None
            freed.append(session.index)
        return freed
