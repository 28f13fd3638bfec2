"""Tests for multitask.pty (spawn, Session, SessionRegistry)."""

from __future__ import annotations

import os
import time

import pytest

from multitask.errors import SessionLimitError, SpawnError
from multitask.pty.registry import SessionRegistry
from multitask.pty.session import SessionStatus
from multitask.pty.spawn import child_env, get_winsize, spawn


def _wait_for_reap(registry: SessionRegistry, timeout: float = 5.0) -> list:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        freed = registry.reap()
        if freed:
            return freed
        time.sleep(0.02)
    return []


# ---------------------------------------------------------------------------
# spawn
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_spawn_sets_window_size(self, cat_path: str) -> None:
        pid, master_fd, proc = spawn(cat_path, 23, 80)
        try:
            assert pid == proc.pid
            assert get_winsize(master_fd) == (23, 80)
            assert os.get_blocking(master_fd) is False
        finally:
            proc.kill()
            proc.wait()
            os.close(master_fd)

    def test_missing_target(self, tmp_path) -> None:
        with pytest.raises(SpawnError):
            spawn(str(tmp_path / "does-not-exist"), 24, 80)

    def test_not_executable(self, tmp_path) -> None:
        path = tmp_path / "plain.txt"
        path.write_text("hello")
        with pytest.raises(SpawnError):
            spawn(str(path), 24, 80)

    def test_child_gets_controlling_tty(self, make_script, read_output) -> None:
        script = make_script("tty.sh", "tty; stty size")
        pid, master_fd, proc = spawn(script, 12, 34)
        try:
            output = read_output(master_fd, lambda out: b"12 34" in out)
            assert b"/dev/pts/" in output
            assert b"12 34" in output
        finally:
            proc.wait(timeout=5)
            os.close(master_fd)


class TestChildEnv:
    def test_term_defaulted_when_unset(self, monkeypatch) -> None:
        monkeypatch.delenv("TERM", raising=False)
        assert child_env("xterm-256color")["TERM"] == "xterm-256color"

    def test_term_defaulted_when_empty(self, monkeypatch) -> None:
        monkeypatch.setenv("TERM", "")
        assert child_env("vt100")["TERM"] == "vt100"

    def test_existing_term_kept(self, monkeypatch) -> None:
        monkeypatch.setenv("TERM", "screen")
        assert child_env("xterm-256color")["TERM"] == "screen"


# ---------------------------------------------------------------------------
# SessionRegistry
# ---------------------------------------------------------------------------


class TestAllocation:
    def test_empty_registry(self, registry: SessionRegistry) -> None:
        assert len(registry) == 0
        assert registry.allocate_index() == 1
        assert registry.find_free_slot() == 0
        assert registry.indices() == []

    def test_first_spawn_gets_index_one(self, registry, cat_path) -> None:
        index = registry.spawn_session(cat_path, 24, 80)
        assert index == 1
        assert 1 in registry
        session = registry.get(1)
        assert session is not None
        assert session.status == SessionStatus.RUNNING
        assert session.in_use

    def test_indices_are_distinct_and_in_range(self, registry, cat_path) -> None:
        for _ in range(4):
            registry.spawn_session(cat_path, 24, 80)
        indices = registry.indices()
        assert indices == [1, 2, 3, 4]
        assert len(set(indices)) == len(indices)

    def test_lowest_free_index_reused(self, registry, cat_path) -> None:
        for _ in range(3):
            registry.spawn_session(cat_path, 24, 80)
        assert registry.close_session(2)
        assert registry.indices() == [1, 3]
        assert registry.spawn_session(cat_path, 24, 80) == 2
        assert registry.indices() == [1, 2, 3]

    def test_find_slot_by_index_missing(self, registry) -> None:
        assert registry.find_slot_by_index(5) is None
        assert registry.find_slot_by_index(None) is None
        assert registry.get(5) is None


class TestLimit:
    def test_spawn_beyond_max_sessions(self, cat_path) -> None:
        registry = SessionRegistry(close_timeout=1.0)
        try:
            for _ in range(9):
                registry.spawn_session(cat_path, 24, 80)
            before = [(s.index, s.pid, s.master_fd) for s in registry.sessions()]
            assert registry.allocate_index() is None
            assert registry.find_free_slot() is None

            with pytest.raises(SessionLimitError):
                registry.spawn_session(cat_path, 24, 80)

            after = [(s.index, s.pid, s.master_fd) for s in registry.sessions()]
            assert after == before
            assert registry.indices() == list(range(1, 10))
        finally:
            registry.close_all()

    def test_spawn_failure_leaves_table_unchanged(self, registry, cat_path, tmp_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        with pytest.raises(SpawnError):
            registry.spawn_session(str(tmp_path / "missing"), 24, 80)
        assert registry.indices() == [1]

    def test_zero_size_rejected(self, registry, cat_path) -> None:
        with pytest.raises(SpawnError):
            registry.spawn_session(cat_path, 0, 80)
        assert len(registry) == 0


class TestClose:
    def test_close_session(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        session = registry.get(1)
        assert registry.close_session(1) is True
        assert 1 not in registry
        assert session.status == SessionStatus.CLOSED
        assert session.master_fd == -1
        assert session.exit_code is not None

    def test_close_missing_index_is_noop(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        assert registry.close_session(7) is False
        assert registry.close_session(None) is False
        assert registry.indices() == [1]

    def test_close_twice(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        assert registry.close_session(1) is True
        assert registry.close_session(1) is False

    def test_close_escalates_to_kill(self, make_script) -> None:
        script = make_script("stubborn.sh", "trap '' TERM\nwhile :; do sleep 1; done")
        registry = SessionRegistry(close_timeout=0.3)
        registry.spawn_session(script, 24, 80)
        # Let the shell install its trap
        time.sleep(0.2)
        assert registry.close_session(1) is True
        assert len(registry) == 0

    def test_close_all(self, cat_path) -> None:
        registry = SessionRegistry(close_timeout=1.0)
        for _ in range(3):
            registry.spawn_session(cat_path, 24, 80)
        registry.close_all()
        assert len(registry) == 0


class TestReap:
    def test_reap_exited_child(self, registry, make_script) -> None:
        script = make_script("quick.sh", "exit 3")
        registry.spawn_session(script, 24, 80)
        freed = _wait_for_reap(registry)
        assert [s.index for s in freed] == [1]
        assert freed[0].exit_code == 3
        assert freed[0].status == SessionStatus.EXITED
        assert len(registry) == 0

    def test_reap_keeps_running_sessions(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        assert registry.reap() == []
        assert registry.indices() == [1]

    def test_release_is_idempotent(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        assert registry.release(1) is True
        assert registry.release(1) is False
        assert len(registry) == 0
        # A released session that was still running is reaped on close_all
        registry.close_all()

    def test_reap_after_release_is_noop(self, registry, make_script) -> None:
        script = make_script("quick.sh", "exit 0")
        registry.spawn_session(script, 24, 80)
        time.sleep(0.2)
        assert registry.release(1) is True
        assert registry.reap() == []


class TestIO:
    def test_echo_round_trip(self, registry, cat_path, read_output) -> None:
        registry.spawn_session(cat_path, 24, 80)
        session = registry.get(1)
        assert registry.write(1, b"ping-123\n") is True

        # The pty echoes the line, then cat prints it again
        output = read_output(session.master_fd, lambda out: out.count(b"ping-123") >= 2)
        assert output.count(b"ping-123") >= 2

    def test_ordered_output(self, registry, cat_path, read_output) -> None:
        registry.spawn_session(cat_path, 24, 80)
        session = registry.get(1)
        registry.write(1, b"first\n")
        registry.write(1, b"second\n")
        output = read_output(session.master_fd, lambda out: out.count(b"second") >= 2)
        assert output.index(b"first") < output.index(b"second")

    def test_write_to_missing_session(self, registry) -> None:
        assert registry.write(3, b"data") is False

    def test_resize_all(self, registry, cat_path) -> None:
        registry.spawn_session(cat_path, 24, 80)
        registry.spawn_session(cat_path, 24, 80)
        registry.resize_all(40, 120)
        for session in registry.sessions():
            assert get_winsize(session.master_fd) == (40, 120)
