"""Tests for the event bus."""

from __future__ import annotations

import queue
import threading

import pytest

from testforge.engine.bus import EventBus
from testforge.engine.protocol import GroupFinished, WorkerExit


class TestEventBus:
    def test_fifo_order(self):
        bus = EventBus()
        events = [GroupFinished(worker_id=1), WorkerExit(worker_id=1), WorkerExit(worker_id=2)]
        for event in events:
            bus.put(event)

        assert [bus.get() for _ in events] == events

    def test_get_times_out_when_empty(self):
        with pytest.raises(queue.Empty):
            EventBus().get(timeout=0.01)

    def test_drain_empties_the_bus(self):
        bus = EventBus()
        bus.put(WorkerExit(worker_id=1))
        bus.put(WorkerExit(worker_id=2))

        assert len(bus) == 2
        assert bus.drain() == [WorkerExit(worker_id=1), WorkerExit(worker_id=2)]
        assert len(bus) == 0

    def test_many_producers_lose_nothing(self):
        bus = EventBus()

        def produce(worker_id: int) -> None:
            for _ in range(200):
                bus.put(GroupFinished(worker_id=worker_id))
            bus.put(WorkerExit(worker_id=worker_id))

        threads = [threading.Thread(target=produce, args=(worker_id,)) for worker_id in range(1, 5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        events = bus.drain()
        assert len(events) == 4 * 201
        for worker_id in range(1, 5):
            own = [event for event in events if event.worker_id == worker_id]
            # exit is the last event a producer enqueued
            assert own[-1] == WorkerExit(worker_id=worker_id)
