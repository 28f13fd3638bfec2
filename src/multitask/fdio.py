"""Small helpers for raw, possibly non-blocking file descriptors."""

from __future__ import annotations

import logging
import os
import select

logger = logging.getLogger(__name__)

WRITE_STALL_TIMEOUT = 1.0


def write_all(fd: int, data: bytes, stall_timeout: float = WRITE_STALL_TIMEOUT) -> int:
    """Write every byte of ``data`` to ``fd``.

    Works on non-blocking descriptors: when the fd is full we wait for it
    to become writable again. If it stays full for ``stall_timeout``
    seconds the rest is dropped; with ``stall_timeout=0`` it is dropped
    right away.

    Returns:
        Number of bytes written.
    """
    view = memoryview(data)
    written = 0
    while written < len(view):
        try:
            written += os.write(fd, view[written:])
        except BlockingIOError:
            _, ready, _ = select.select([], [fd], [], stall_timeout)
            if not ready:
                logger.warning(
                    "fd %d stalled, dropping %d bytes", fd, len(view) - written
                )
                break
    return written


def read_ready(fd: int, size: int, timeout: float) -> bytes:
    """Read up to ``size`` bytes if ``fd`` becomes readable within ``timeout``.

    Returns ``b""`` when nothing arrived in time.
    """
    ready, _, _ = select.select([fd], [], [], timeout)
    if not ready:
        return b""
    try:
        return os.read(fd, size)
    except BlockingIOError:
        return b""
