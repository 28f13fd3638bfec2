"""Shared test fixtures."""

from __future__ import annotations

import os
import select
import shutil
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

import pytest

from multitask.pty.registry import SessionRegistry


@pytest.fixture
def cat_path() -> str:
    """An echoing program: ``cat`` copies its pty input back out."""
    path = shutil.which("cat")
    if path is None:
        pytest.skip("cat not available")
    return os.path.realpath(path)


@pytest.fixture
def make_script(tmp_path: Path) -> Callable[[str, str], str]:
    """Write an executable /bin/sh script and return its path."""

    def _make(name: str, body: str) -> str:
        path = tmp_path / name
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(0o755)
        return str(path)

    return _make


@pytest.fixture
def registry():
    reg = SessionRegistry(close_timeout=1.0)
    yield reg
    reg.close_all()


@dataclass
class FakeTerminal:
    """A pipe for the keyboard and a regular file for the screen."""

    stdin_fd: int
    keyboard_fd: int
    stdout_fd: int
    screen_path: Path

    def type(self, data: bytes) -> None:
        os.write(self.keyboard_fd, data)

    def screen(self) -> bytes:
        return self.screen_path.read_bytes()


@pytest.fixture
def fake_terminal(tmp_path: Path):
    stdin_fd, keyboard_fd = os.pipe()
    os.set_blocking(stdin_fd, False)
    screen_path = tmp_path / "screen.out"
    stdout_fd = os.open(screen_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC)
    term = FakeTerminal(stdin_fd, keyboard_fd, stdout_fd, screen_path)
    yield term
    for fd in (stdin_fd, keyboard_fd, stdout_fd):
        try:
            os.close(fd)
        except OSError:
            pass


def read_until(fd: int, done: Callable[[bytes], bool], timeout: float = 5.0) -> bytes:
    """Read from a non-blocking fd until ``done(output)`` or the timeout."""
    output = b""
    deadline = time.monotonic() + timeout
    while not done(output):
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            break
        ready, _, _ = select.select([fd], [], [], min(remaining, 0.1))
        if not ready:
            continue
        try:
            chunk = os.read(fd, 4096)
        except BlockingIOError:
            continue
        except OSError:
            break
        if not chunk:
            break
        output += chunk
    return output


@pytest.fixture
def read_output() -> Callable[..., bytes]:
    return read_until
