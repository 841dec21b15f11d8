"""Configuration loading for TestForge."""

from __future__ import annotations

import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

from testforge._internal.errors import ConfigError

DEFAULT_RUNTIME_LOG = Path(".testforge") / "runtime.log"


def _default_worker_command() -> tuple[str, ...]:
    return (sys.executable, "-m", "pytest", "-p", "no:terminal")


@dataclass(frozen=True)
class TestForgeConfig:
    """Global TestForge configuration.

    Attributes:
        workers: Upper bound on worker processes. None means CPU count.
        runtime_log: Shared file where workers record per-file run times.
        worker_command: Executable and leading arguments of every worker.
    """

    __test__ = False  # not a pytest test class

    workers: int | None = None
    runtime_log: Path = DEFAULT_RUNTIME_LOG
    worker_command: tuple[str, ...] = field(default_factory=_default_worker_command)


def load_config() -> TestForgeConfig:
    """Load configuration from environment variables with defaults.

    Environment variables:
        TESTFORGE_WORKERS: Maximum worker processes (default: CPU count).
        TESTFORGE_RUNTIME_LOG: Runtime log path (default: .testforge/runtime.log).
        TESTFORGE_WORKER_COMMAND: Worker command line, shell-quoted
            (default: ``<python> -m pytest -p no:terminal``).

    Returns:
        Populated TestForgeConfig instance.

    Raises:
        ConfigError: If an environment variable has an invalid value.
    """
    workers_str = os.environ.get("TESTFORGE_WORKERS", "")
    workers: int | None = None
    if workers_str:
        try:
            workers = int(workers_str)
        except ValueError:
            msg = f"TESTFORGE_WORKERS must be an integer, got: {workers_str!r}"
            raise ConfigError(msg) from None

        if workers < 1:
            msg = f"TESTFORGE_WORKERS must be >= 1, got: {workers}"
            raise ConfigError(msg)

    command_str = os.environ.get("TESTFORGE_WORKER_COMMAND", "")
    if command_str:
        try:
            worker_command = tuple(shlex.split(command_str))
        except ValueError as exc:
            msg = f"TESTFORGE_WORKER_COMMAND is not valid shell syntax: {exc}"
            raise ConfigError(msg) from None
        if not worker_command:
            msg = "TESTFORGE_WORKER_COMMAND must not be blank"
            raise ConfigError(msg)
    else:
        worker_command = _default_worker_command()

    runtime_log_str = os.environ.get("TESTFORGE_RUNTIME_LOG", "")
    runtime_log = Path(runtime_log_str) if runtime_log_str else DEFAULT_RUNTIME_LOG

    return TestForgeConfig(
        workers=workers,
        runtime_log=runtime_log,
        worker_command=worker_command,
    )
