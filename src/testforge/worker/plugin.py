"""pytest plugin loaded into every worker with ``-p testforge.worker.plugin``.

Adds the options the runner passes to a worker:

``--testforge-events``
    Write structured events to stdout, each prefixed with the token from
    ``TESTFORGE_OUTPUT_ID``.
``--runtime-log PATH``
    Append ``<file>:<seconds>`` for every test file that ran.
``--seed N``
    Shuffle the order of test modules; tests inside a module keep their
    order.
``--tag NAME`` / ``--tag ~NAME``
    Keep tests carrying any of the named markers / drop tests carrying a
    negated one.
"""

from __future__ import annotations

import os
import random
import sys
import time
from collections import defaultdict
from pathlib import Path
from typing import TYPE_CHECKING, Any, TextIO

import pytest

from testforge.engine.protocol import encode_event
from testforge.partition.discovery import file_part
from testforge.partition.runtime_log import append_runtimes, runtime_key

if TYPE_CHECKING:
    from collections.abc import Sequence

OUTPUT_ID_ENV = "TESTFORGE_OUTPUT_ID"
WORKER_ID_ENV = "TESTFORGE_WORKER_ID"


def pytest_addoption(parser: pytest.Parser) -> None:
    group = parser.getgroup("testforge", "testforge worker")
    group.addoption(
        "--testforge-events",
        action="store_true",
        default=False,
        help="Emit token-delimited JSON events on stdout (token from $TESTFORGE_OUTPUT_ID).",
    )
    group.addoption(
        "--runtime-log",
        default=None,
        metavar="PATH",
        help="Append per-file run times to PATH.",
    )
    group.addoption(
        "--seed",
        type=int,
        default=None,
        help="Shuffle test module order with this seed.",
    )
    group.addoption(
        "--tag",
        action="append",
        default=[],
        metavar="NAME",
        help="Only run tests marked NAME; ~NAME excludes. Repeatable.",
    )


def pytest_configure(config: pytest.Config) -> None:
    if config.getoption("testforge_events"):
        token = os.environ.get(OUTPUT_ID_ENV, "")
        if not token:
            msg = f"--testforge-events needs ${OUTPUT_ID_ENV} to be set"
            raise pytest.UsageError(msg)
        config.pluginmanager.register(EventWriter(token, sys.stdout, config.getoption("seed")), "testforge-events")

    runtime_log = config.getoption("runtime_log")
    if runtime_log:
        config.pluginmanager.register(RuntimeLogger(Path(runtime_log), config.rootpath), "testforge-runtime-log")


def select_by_tags(items: Sequence[pytest.Item], tags: Sequence[str]) -> tuple[list[pytest.Item], list[pytest.Item]]:
    """Split items into (selected, deselected) according to ``--tag`` values."""
    include = [tag for tag in tags if not tag.startswith("~")]
    exclude = [tag[1:] for tag in tags if tag.startswith("~")]

    selected: list[pytest.Item] = []
    deselected: list[pytest.Item] = []
    for item in items:
        names = {marker.name for marker in item.iter_markers()}
        keep = (not include or any(tag in names for tag in include)) and not any(tag in names for tag in exclude)
        (selected if keep else deselected).append(item)
    return selected, deselected


def shuffle_by_module(items: Sequence[pytest.Item], seed: int) -> list[pytest.Item]:
    """Reorder modules with ``seed``, keeping each module's items together and in order."""
    modules: dict[str, list[pytest.Item]] = {}
    for item in items:
        modules.setdefault(file_part(item.nodeid), []).append(item)
    order = list(modules)
    random.Random(seed).shuffle(order)
    return [item for name in order for item in modules[name]]


@pytest.hookimpl(trylast=True)
def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    tags = config.getoption("tag")
    if tags:
        selected, deselected = select_by_tags(items, tags)
        if deselected:
            config.hook.pytest_deselected(items=deselected)
            items[:] = selected

    seed = config.getoption("seed")
    if seed is not None:
        items[:] = shuffle_by_module(items, seed)


def _description(nodeid: str) -> tuple[str, str]:
    parts = nodeid.split("::")
    names = parts[1:] or parts
    return names[-1], " ".join(names)


def _failure_detail(report: pytest.TestReport | pytest.CollectReport) -> dict[str, Any]:
    longrepr = report.longrepr
    crash = getattr(longrepr, "reprcrash", None)
    message = crash.message if crash is not None else report.longreprtext
    class_name, sep, _ = message.partition(":")
    if not sep or " " in class_name.strip():
        class_name = "Error"

    backtrace: list[str] = []
    traceback = getattr(longrepr, "reprtraceback", None)
    for entry in getattr(traceback, "reprentries", []) or []:
        location = getattr(entry, "reprfileloc", None)
        if location is not None:
            backtrace.append(f"{location.path}:{location.lineno}")
    if not backtrace and crash is not None:
        backtrace.append(f"{crash.path}:{crash.lineno}")

    return {"class_name": class_name.strip(), "message": message, "backtrace": backtrace}


def _skip_reason(report: pytest.TestReport) -> str:
    if hasattr(report, "wasxfail"):
        return f"xfail: {report.wasxfail}" if report.wasxfail else "xfail"
    longrepr = report.longrepr
    if isinstance(longrepr, tuple) and len(longrepr) == 3:
        reason = str(longrepr[2])
        return reason.removeprefix("Skipped: ")
    return ""


class EventWriter:
    """Writes token-prefixed events to the worker's stdout.

    A module is reported as one group: ``group_started`` before its first
    test, ``group_finished`` once a different module (or the end of the
    session) follows.
    """

    def __init__(self, token: str, stream: TextIO, seed: int | None = None) -> None:
        self._token = token
        self._stream = stream
        self._seed = seed
        self._session_start = time.monotonic()
        self._current_group: str | None = None
        self._reports: dict[str, list[pytest.TestReport]] = defaultdict(list)
        self._locations: dict[str, str] = {}
        self._load_count = 0

    def emit(self, type_name: str, **payload: Any) -> None:
        self._stream.write(f"{self._token}{encode_event(type_name, **payload)}\n")
        self._stream.flush()

    def pytest_sessionstart(self) -> None:
        self._session_start = time.monotonic()
        if self._seed is not None:
            self.emit("seed", seed=self._seed)

    def pytest_collectreport(self, report: pytest.CollectReport) -> None:
        if not report.failed:
            return
        # a module that cannot be imported must still fail the run
        self.emit(
            "example_failed",
            example={
                "id": report.nodeid,
                "description": "collection error",
                "full_description": f"{report.nodeid} collection error",
                "location": file_part(report.nodeid),
                "status": "failed",
                "run_time": 0.0,
                "exception": _failure_detail(report),
            },
        )

    def pytest_collection_finish(self, session: pytest.Session) -> None:
        self._load_count += len(session.items)
        self.emit(
            "load_summary",
            summary={"load_time": time.monotonic() - self._session_start, "count": self._load_count},
        )

    def pytest_runtest_logstart(self, nodeid: str, location: tuple[str, int | None, str]) -> None:
        module = file_part(nodeid)
        if module != self._current_group:
            self._finish_group()
            self._current_group = module
            self.emit("group_started", group={"id": module, "description": module, "location": location[0]})
        line = location[1] + 1 if location[1] is not None else 0
        self._locations[nodeid] = f"{location[0]}:{line}"

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        self._reports[report.nodeid].append(report)

    def pytest_runtest_logfinish(self, nodeid: str) -> None:
        reports = self._reports.pop(nodeid, [])
        description, full_description = _description(nodeid)
        example: dict[str, Any] = {
            "id": nodeid,
            "description": description,
            "full_description": full_description,
            "location": self._locations.pop(nodeid, ""),
            "run_time": sum(report.duration for report in reports),
        }

        failed = next((report for report in reports if report.failed), None)
        skipped = next((report for report in reports if report.skipped), None)
        if failed is not None:
            self.emit("example_failed", example={**example, "status": "failed", "exception": _failure_detail(failed)})
        elif skipped is not None:
            self.emit(
                "example_pending",
                example={**example, "status": "pending", "pending_message": _skip_reason(skipped)},
            )
        else:
            self.emit("example_passed", example={**example, "status": "passed"})

    def pytest_sessionfinish(self) -> None:
        self._finish_group()
        self.emit("close")

    def _finish_group(self) -> None:
        if self._current_group is not None:
            self.emit("group_finished")
            self._current_group = None


class RuntimeLogger:
    """Sums test durations per file and appends them at session end.

    Files are keyed relative to the working directory rather than to the
    pytest rootdir, matching how the runner looks them up.
    """

    def __init__(self, path: Path, rootpath: Path) -> None:
        self._path = path
        self._rootpath = rootpath
        self._durations: dict[str, float] = defaultdict(float)

    def pytest_runtest_logreport(self, report: pytest.TestReport) -> None:
        self._durations[runtime_key(self._rootpath / file_part(report.nodeid))] += report.duration

    def pytest_sessionfinish(self) -> None:
        append_runtimes(self._path, sorted(self._durations.items()))
