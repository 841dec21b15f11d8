"""Fan-in channel between worker relays and the dispatcher."""

from __future__ import annotations

import queue
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from testforge.engine.protocol import Event


class EventBus:
    """Unbounded FIFO shared by every relay of one run.

    Any number of relay threads call ``put``; exactly one consumer, the
    dispatcher, calls ``get``. ``put`` never blocks. ``get`` blocks while
    the bus is empty. One bus belongs to one ``ParallelRunner.run()`` call.
    """

    def __init__(self) -> None:
        self._queue: queue.SimpleQueue[Event] = queue.SimpleQueue()

    def put(self, event: Event) -> None:
        """Enqueue an event without blocking."""
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> Event:
        """Dequeue the oldest event.

        Args:
            timeout: Seconds to wait; None waits forever.

        Raises:
            queue.Empty: If ``timeout`` elapsed with nothing to read.
        """
        return self._queue.get(timeout=timeout)

    def drain(self) -> list[Event]:
        """Remove and return every event currently queued."""
        events: list[Event] = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except queue.Empty:
                return events

    def __len__(self) -> int:
        return self._queue.qsize()
