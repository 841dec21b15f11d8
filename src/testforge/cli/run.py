"""The ``testforge run`` command: partition, run in parallel and report."""

from __future__ import annotations

import logging
import time
from dataclasses import replace
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape

from testforge._internal.config import load_config
from testforge._internal.errors import TestForgeError
from testforge._internal.logging import setup_logging
from testforge.engine.dispatcher import DispatchOutcome
from testforge.engine.runner import ParallelRunner
from testforge.partition.discovery import discover_tests
from testforge.reporting.reporter import ConsoleReporter

console = Console(stderr=True)

EXIT_TESTS_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def _default_paths() -> list[Path]:
    return [Path("tests")] if Path("tests").is_dir() else [Path()]


def run_cmd(
    paths: list[Path] | None = typer.Argument(
        None,
        help="Test files, directories or node ids. Defaults to ./tests or the current directory.",
    ),
    workers: int | None = typer.Option(
        None,
        "--workers",
        "-n",
        help="Maximum worker processes (default: $TESTFORGE_WORKERS or CPU count).",
        min=1,
    ),
    tags: list[str] | None = typer.Option(
        None,
        "--tag",
        "-t",
        help="Only run tests with this marker; prefix with ~ to exclude. Repeatable.",
    ),
    fail_fast: int | None = typer.Option(
        None,
        "--fail-fast",
        help="Stop all workers after this many failures.",
        min=1,
    ),
    formats: list[str] | None = typer.Option(
        None,
        "--format",
        "-f",
        help="Formatter as name[:path]: progress or documentation. Repeatable.",
    ),
    runtime_log: Path | None = typer.Option(
        None,
        "--runtime-log",
        help="Runtime log used to balance groups (default: $TESTFORGE_RUNTIME_LOG).",
    ),
    seed: int | None = typer.Option(
        None,
        "--seed",
        help="Pin the test order seed of every worker.",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Print worker command lines and enable DEBUG logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Emit log records as JSON lines.",
    ),
) -> None:
    """Run tests in parallel and report the merged results."""
    start_time = time.monotonic()
    setup_logging(level=logging.DEBUG if verbose else logging.WARNING, json_format=json_logs)

    try:
        config = load_config()
        if runtime_log is not None:
            config = replace(config, runtime_log=runtime_log)
        tests = discover_tests(paths or _default_paths())
        reporter = ConsoleReporter.from_config(formats or [], start_time)
        test_runner = ParallelRunner(
            reporter,
            tests,
            config=config,
            workers=workers,
            tags=tags or [],
            fail_fast=fail_fast,
            seed=seed,
            verbose=verbose,
        )
        passed = test_runner.run()
    except TestForgeError as exc:
        console.print(f"[red]Error:[/red] {escape(str(exc))}", soft_wrap=True)
        raise typer.Exit(code=EXIT_USAGE) from exc

    if test_runner.outcome is DispatchOutcome.FAIL_FAST:
        console.print(f"[yellow]Stopped early after {fail_fast} failure(s).[/yellow]")
    elif test_runner.outcome is DispatchOutcome.INTERRUPTED:
        console.print("[yellow]Interrupted; results are incomplete.[/yellow]")
        raise typer.Exit(code=EXIT_INTERRUPTED)

    if not passed:
        raise typer.Exit(code=EXIT_TESTS_FAILED)
