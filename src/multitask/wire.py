"""Wire — lifecycle events from the multiplexer to whoever listens.

The loop publishes every session change here. Subscribers drain their
queue whenever they like; nothing on the wire ever blocks the loop.
"""

from __future__ import annotations

import enum
from collections import deque
from dataclasses import dataclass, field
from typing import Any


class EventType(enum.Enum):
    SESSION_SPAWNED = "session_spawned"
    SESSION_SWITCHED = "session_switched"
    SESSION_CLOSED = "session_closed"
    SESSION_EXITED = "session_exited"
    SPAWN_FAILED = "spawn_failed"
    RESIZED = "resized"
    SHUTDOWN = "shutdown"


@dataclass
class WireEvent:
    """An event on the wire."""

    type: EventType
    data: dict[str, Any] = field(default_factory=dict)


class Wire:
    """Synchronous message bus: multiplexer -> subscribers.

    Single-producer, multi-consumer broadcast. Each subscriber gets its
    own queue; ``None`` marks the end of the stream.
    """

    def __init__(self) -> None:
        self._subscribers: list[deque[WireEvent | None]] = []
        self._closed: bool = False

    def send(self, event: WireEvent) -> None:
        """Send an event to all subscribers.

        Silently drops events after ``close()`` has been called.
        """
        if self._closed:
            return
        for q in self._subscribers:
            q.append(event)

    def send_spawned(self, index: int, pid: int) -> None:
        self.send(
            WireEvent(type=EventType.SESSION_SPAWNED, data={"index": index, "pid": pid})
        )

    def send_switched(self, index: int) -> None:
        self.send(WireEvent(type=EventType.SESSION_SWITCHED, data={"index": index}))

    def send_closed(self, index: int) -> None:
        self.send(WireEvent(type=EventType.SESSION_CLOSED, data={"index": index}))

    def send_exited(self, index: int, exit_code: int | None) -> None:
        self.send(
            WireEvent(
                type=EventType.SESSION_EXITED,
                data={"index": index, "exit_code": exit_code},
            )
        )

    def send_spawn_failed(self, error: str) -> None:
        self.send(WireEvent(type=EventType.SPAWN_FAILED, data={"error": error}))

    def send_resized(self, rows: int, cols: int) -> None:
        self.send(WireEvent(type=EventType.RESIZED, data={"rows": rows, "cols": cols}))

    def subscribe(self) -> deque[WireEvent | None]:
        """Subscribe to events. Returns a queue to read from."""
        q: deque[WireEvent | None] = deque()
        self._subscribers.append(q)
        return q

    def unsubscribe(self, q: deque[WireEvent | None]) -> None:
        """Unsubscribe from events."""
        # By identity: deques compare equal by content
        self._subscribers = [s for s in self._subscribers if s is not q]

    def close(self) -> None:
        """Send SHUTDOWN and then the end-of-stream marker to every subscriber."""
        if self._closed:
            return
        self.send(WireEvent(type=EventType.SHUTDOWN))
        self._closed = True
        for q in self._subscribers:
            q.append(None)
