"""The single consumer of the event bus.

The dispatcher is the only code that touches the reporter or the
aggregate counters, so none of it needs locking.
"""

from __future__ import annotations

from enum import Enum, auto
from typing import TYPE_CHECKING

from testforge._internal.logging import get_logger
from testforge.engine.protocol import (
    CloseEvent,
    ExampleFailed,
    ExamplePassed,
    ExamplePending,
    GroupFinished,
    GroupStarted,
    LoadSummaryEvent,
    SeedEvent,
    UnknownEvent,
    WorkerExit,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from testforge.engine.bus import EventBus
    from testforge.engine.protocol import Event
    from testforge.reporting.reporter import Reporter

logger = get_logger("engine.dispatcher")


class DispatchOutcome(Enum):
    """Why the consume loop stopped."""

    COMPLETED = auto()
    FAIL_FAST = auto()
    INTERRUPTED = auto()


class Dispatcher:
    """Translates bus events into reporter calls.

    Attributes:
        worker_count: Number of ``WorkerExit`` events that end the loop.
        fail_fast: Stop after this many failed examples; None disables.
        failure_count: Failed examples seen so far.
        exited_count: Workers whose exit has been processed.
    """

    def __init__(
        self,
        bus: EventBus,
        reporter: Reporter,
        worker_count: int,
        *,
        fail_fast: int | None = None,
        cancel_workers: Callable[[], None] | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            bus: Event bus to consume; this dispatcher must be its only reader.
            reporter: Sink for every translated event.
            worker_count: Number of workers that were launched.
            fail_fast: Optional failure threshold (>= 1).
            cancel_workers: Called to kill every worker on fail-fast or
                interrupt.
        """
        self._bus = bus
        self._reporter = reporter
        self.worker_count = worker_count
        self.fail_fast = fail_fast
        self._cancel_workers = cancel_workers

        self.failure_count = 0
        self.exited_count = 0
        self._load_count = 0

    def run(self) -> DispatchOutcome:
        """Consume events until every worker exited or fail-fast triggers.

        A ``KeyboardInterrupt`` received while waiting ends the loop
        cleanly; the workers are cancelled so the caller can still join
        their relays.
        """
        if self.exited_count >= self.worker_count:
            return DispatchOutcome.COMPLETED

        try:
            while True:
                event = self._bus.get()
                if self._handle(event):
                    return DispatchOutcome.COMPLETED
                if self._fail_fast_met():
                    logger.info("Fail-fast threshold of %d reached, stopping workers", self.fail_fast)
                    self._cancel()
                    return DispatchOutcome.FAIL_FAST
        except KeyboardInterrupt:
            logger.warning("Interrupted, stopping workers")
            self._cancel()
            return DispatchOutcome.INTERRUPTED

    def _handle(self, event: Event) -> bool:
        """Apply one event. Return True when the last worker has exited."""
        reporter = self._reporter

        if isinstance(event, ExamplePassed):
            reporter.example_passed(event.example)
        elif isinstance(event, ExamplePending):
            reporter.example_pending(event.example)
        elif isinstance(event, ExampleFailed):
            reporter.example_failed(event.example)
            self.failure_count += 1
        elif isinstance(event, GroupStarted):
            reporter.group_started(event.group)
        elif isinstance(event, GroupFinished):
            reporter.group_finished()
        elif isinstance(event, LoadSummaryEvent):
            # Workers report partial load summaries in no particular order;
            # only a strictly higher count is more complete.
            if event.summary.count > self._load_count:
                self._load_count = event.summary.count
                reporter.load_time = event.summary.load_time
        elif isinstance(event, (SeedEvent, CloseEvent)):
            pass
        elif isinstance(event, WorkerExit):
            self.exited_count += 1
            logger.debug("Worker %d exited (%d/%d)", event.worker_id, self.exited_count, self.worker_count)
            return self.exited_count >= self.worker_count
        elif isinstance(event, UnknownEvent):
            logger.warning(
                "Unhandled event %r from worker %d: %r",
                event.type_name,
                event.worker_id,
                event.payload,
            )
        else:
            logger.warning("Unhandled event object: %r", event)
        return False

    def _fail_fast_met(self) -> bool:
        return self.fail_fast is not None and self.failure_count >= self.fail_fast

    def _cancel(self) -> None:
        if self._cancel_workers is not None:
            self._cancel_workers()
