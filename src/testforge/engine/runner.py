"""Top-level parallel test run orchestrator."""

from __future__ import annotations

import sys
from enum import Enum, auto
from typing import IO, TYPE_CHECKING

from testforge._internal.config import TestForgeConfig
from testforge._internal.logging import get_logger
from testforge.engine.bus import EventBus
from testforge.engine.dispatcher import DispatchOutcome, Dispatcher
from testforge.engine.launcher import WorkerHandle, WorkerSpec, launch_worker
from testforge.partition.partitioner import determine_worker_count, partition
from testforge.partition.runtime_log import compact_runtime_log

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from testforge._internal.types import Group
    from testforge.reporting.reporter import Reporter

logger = get_logger("engine.runner")

_JOIN_TIMEOUT = 5.0


class RunnerState(Enum):
    """Lifecycle of one run.

    PLANNING -> LAUNCHING -> AGGREGATING -> FINALIZING -> DONE
    """

    PLANNING = auto()
    LAUNCHING = auto()
    AGGREGATING = auto()
    FINALIZING = auto()
    DONE = auto()


class ParallelRunner:
    """Runs a test suite across worker processes and merges the results.

    Partitions the tests, starts one worker per group, consumes every
    worker's events on the calling thread and hands them to the reporter.
    Has no timeouts: a worker that hangs keeps the run waiting.

    Attributes:
        state: Current lifecycle state.
        worker_count: Workers planned for the run (after ``run()`` starts).
        outcome: Why aggregation ended (after ``run()``).
    """

    def __init__(
        self,
        reporter: Reporter,
        tests: Sequence[str],
        *,
        config: TestForgeConfig | None = None,
        workers: int | None = None,
        tags: Sequence[str] = (),
        fail_fast: int | None = None,
        seed: int | None = None,
        verbose: bool = False,
        stdout: IO[bytes] | None = None,
        stderr: IO[bytes] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            reporter: Sink for merged results.
            tests: Test ids to run.
            config: Base configuration; ``load_config()`` values usually.
            workers: Maximum worker processes; overrides ``config.workers``.
            tags: Tag filters forwarded to every worker.
            fail_fast: Stop everything after this many failed examples.
            seed: Pin the execution-order seed of every worker.
            verbose: Print each worker's environment and command line.
            stdout: Destination for worker output and the plan line.
            stderr: Destination for worker stderr.
        """
        self._config = config or TestForgeConfig()
        self._reporter = reporter
        self._tests = list(tests)
        self._requested_workers = workers if workers is not None else self._config.workers
        self._tags = tuple(tags)
        self._fail_fast = fail_fast
        self._seed = seed
        self._verbose = verbose
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._stderr = stderr if stderr is not None else sys.stderr.buffer

        self.state = RunnerState.PLANNING
        self.worker_count = 0
        self.outcome: DispatchOutcome | None = None
        self._workers: list[WorkerHandle] = []

    @property
    def runtime_log(self) -> Path:
        return self._config.runtime_log

    @property
    def workers(self) -> list[WorkerHandle]:
        """Handles of the launched workers, in worker id order."""
        return list(self._workers)

    def run(self) -> bool:
        """Execute the suite.

        Returns:
            True if the reporter recorded no failed examples.

        Raises:
            SpawnError: If any worker process cannot be started.
            PartitionError: If the tests cannot be planned.
        """
        groups = self._plan()

        self.state = RunnerState.LAUNCHING
        bus = EventBus()
        self._launch(groups, bus)

        self.state = RunnerState.AGGREGATING
        dispatcher = Dispatcher(
            bus,
            self._reporter,
            self.worker_count,
            fail_fast=self._fail_fast,
            cancel_workers=self.cancel,
        )
        self.outcome = dispatcher.run()
        logger.debug(
            "Aggregation ended: outcome=%s, failures=%d, exited=%d/%d",
            self.outcome.name,
            dispatcher.failure_count,
            dispatcher.exited_count,
            self.worker_count,
        )

        self.state = RunnerState.FINALIZING
        self._reporter.finish()
        self._join()
        self._compact_runtime_log()

        self.state = RunnerState.DONE
        return not self._reporter.failed_examples

    def cancel(self) -> None:
        """Kill every worker that is still running."""
        for handle in self._workers:
            handle.cancel()

    def _plan(self) -> list[Group]:
        self.worker_count = determine_worker_count(self._requested_workers, len(self._tests))
        groups = partition(self._tests, self.worker_count, self.runtime_log)
        self._report_plan(groups)
        return groups

    def _report_plan(self, groups: list[Group]) -> None:
        num_groups = len(groups)
        num_tests = sum(len(group) for group in groups)
        per_group = num_tests // num_groups if num_groups else 0
        line = f"{num_groups} processes for {num_tests} tests, ~ {per_group} tests per process\n"
        self._stdout.write(line.encode())
        self._stdout.flush()

    def _launch(self, groups: list[Group], bus: EventBus) -> None:
        # Workers run in their own sessions and never see the terminal's
        # SIGINT, so an interrupt here must kill the ones already started.
        try:
            for worker_id, group in enumerate(groups, start=1):
                spec = WorkerSpec(
                    worker_id=worker_id,
                    group=group,
                    worker_command=self._config.worker_command,
                    runtime_log=self.runtime_log,
                    tags=self._tags,
                    seed=self._seed,
                )
                handle = launch_worker(
                    spec,
                    bus,
                    stdout_sink=self._stdout,
                    stderr_sink=self._stderr,
                    verbose=self._verbose,
                )
                self._workers.append(handle)
        except BaseException:
            logger.error("Launch aborted after %d workers, stopping the run", len(self._workers))
            self.cancel()
            self._join()
            raise
        logger.debug("Launched %d workers", len(self._workers))

    def _join(self) -> None:
        for handle in self._workers:
            if not handle.join(timeout=_JOIN_TIMEOUT):
                logger.warning("Relays of worker %d are still running", handle.worker_id)
            code = handle.wait(timeout=_JOIN_TIMEOUT)
            if code not in (None, 0) and not handle.cancelled:
                logger.debug("Worker %d exited with code %d", handle.worker_id, code)

    def _compact_runtime_log(self) -> None:
        try:
            compact_runtime_log(self.runtime_log)
        except OSError:
            logger.warning("Could not compact runtime log %s", self.runtime_log, exc_info=True)
