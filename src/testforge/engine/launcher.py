"""Start one worker process per group."""

from __future__ import annotations

import os
import random
import shlex
import signal
import subprocess
import sys
import threading
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import IO, TYPE_CHECKING

import testforge
from testforge._internal.errors import SpawnError
from testforge._internal.logging import get_logger
from testforge.engine.protocol import WorkerExit
from testforge.engine.relay import start_relays

if TYPE_CHECKING:
    from testforge._internal.types import Group
    from testforge.engine.bus import EventBus

logger = get_logger("engine.launcher")

WORKER_ID_ENV = "TESTFORGE_WORKER_ID"
OUTPUT_ID_ENV = "TESTFORGE_OUTPUT_ID"

PLUGIN_MODULE = "testforge.worker.plugin"

_SEED_RANGE = 2**16


def new_token() -> str:
    """Return a fresh 128-bit correlation token."""
    return uuid.uuid4().hex


def _support_path() -> str:
    # directory holding the testforge package, so workers can import the plugin
    return str(Path(testforge.__file__).resolve().parent.parent)


@dataclass(frozen=True)
class WorkerSpec:
    """Everything needed to start one worker.

    Attributes:
        worker_id: Stable 1-based worker number.
        group: Test ids the worker runs, in order.
        worker_command: Executable and leading arguments.
        runtime_log: Shared runtime log every worker appends to.
        tags: Tag filters, each passed as ``--tag=<tag>``.
        seed: Execution-order seed; random when None.
        token: Correlation token separating events from text.
    """

    worker_id: int
    group: Group
    worker_command: tuple[str, ...]
    runtime_log: Path
    tags: tuple[str, ...] = ()
    seed: int | None = None
    token: str = field(default_factory=new_token)

    def environment(self) -> dict[str, str]:
        """Variables that distinguish this worker from its siblings."""
        python_path = os.environ.get("PYTHONPATH", "")
        support = _support_path()
        return {
            WORKER_ID_ENV: str(self.worker_id),
            OUTPUT_ID_ENV: self.token,
            "PYTHONPATH": f"{support}{os.pathsep}{python_path}" if python_path else support,
        }

    def command(self, seed: int) -> list[str]:
        """Full argv for the worker process."""
        return [
            *self.worker_command,
            *(f"--tag={tag}" for tag in self.tags),
            "--seed",
            str(seed),
            "-p",
            PLUGIN_MODULE,
            "--runtime-log",
            str(self.runtime_log),
            "--testforge-events",
            *self.group,
        ]


@dataclass
class WorkerHandle:
    """A launched worker: its process and its relay threads.

    ``process`` is None for a worker that was given an empty group; such a
    worker has no threads and has already reported its exit.
    """

    spec: WorkerSpec
    process: subprocess.Popen[bytes] | None = None
    threads: list[threading.Thread] = field(default_factory=list)
    cancelled: bool = False

    @property
    def worker_id(self) -> int:
        return self.spec.worker_id

    def cancel(self) -> None:
        """Kill the worker and everything it spawned.

        Output still in flight is lost. Relays see EOF and finish on their
        own, so the threads stay joinable.
        """
        self.cancelled = True
        process = self.process
        if process is None or process.poll() is not None:
            return
        logger.debug("Killing worker %d (pid=%d)", self.worker_id, process.pid)
        try:
            if sys.platform == "win32":
                process.kill()
            else:
                os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the relay threads; return False if any is still alive."""
        for thread in self.threads:
            thread.join(timeout=timeout)
        return not any(thread.is_alive() for thread in self.threads)

    def wait(self, timeout: float | None = None) -> int | None:
        """Reap the process and return its exit code (None if no process)."""
        if self.process is None:
            return None
        try:
            return self.process.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            logger.warning("Worker %d did not exit in time", self.worker_id)
            return None


def launch_worker(
    spec: WorkerSpec,
    bus: EventBus,
    *,
    stdout_sink: IO[bytes],
    stderr_sink: IO[bytes],
    verbose: bool = False,
) -> WorkerHandle:
    """Start the worker for one group and its relays.

    An empty group starts nothing: a lone ``WorkerExit`` is enqueued so the
    dispatcher's exit count still reaches the worker count.

    Args:
        spec: What to run.
        bus: Event bus the stdout relay feeds.
        stdout_sink: Where human-readable worker output goes.
        stderr_sink: Where worker stderr, and the verbose command line, go.
        verbose: Print the worker's environment and argv before starting it.

    Returns:
        Handle for the started worker.

    Raises:
        SpawnError: If the process cannot be started.
    """
    if not spec.group:
        logger.debug("Worker %d has no tests, not starting a process", spec.worker_id)
        bus.put(WorkerExit(worker_id=spec.worker_id))
        return WorkerHandle(spec=spec)

    seed = spec.seed if spec.seed is not None else random.randrange(_SEED_RANGE)
    extra_env = spec.environment()
    command = spec.command(seed)

    if verbose:
        env_str = " ".join(f"{key}={value}" for key, value in extra_env.items())
        stderr_sink.write(f"Process {spec.worker_id}: {env_str} {shlex.join(command)}\n".encode())
        stderr_sink.flush()

    try:
        process = subprocess.Popen(
            command,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env={**os.environ, **extra_env},
            start_new_session=sys.platform != "win32",
        )
    except OSError as exc:
        raise SpawnError(spec.worker_id, command, exc) from exc

    logger.debug("Started worker %d: pid=%d, tests=%d", spec.worker_id, process.pid, len(spec.group))

    assert process.stdout is not None
    assert process.stderr is not None
    threads = start_relays(
        spec.worker_id,
        spec.token,
        process.stdout,
        process.stderr,
        bus,
        stdout_sink=stdout_sink,
        stderr_sink=stderr_sink,
    )
    return WorkerHandle(spec=spec, process=process, threads=threads)
