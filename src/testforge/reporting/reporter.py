"""Reporter interface consumed by the dispatcher, and the console reporter."""

from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from testforge._internal.errors import ConfigError
from testforge.reporting.formatters import FORMATTERS
from testforge.reporting.models import RunTotals

if TYPE_CHECKING:
    from collections.abc import Sequence

    from testforge.reporting.formatters import BaseFormatter
    from testforge.reporting.models import ExampleSummary, GroupMetadata


class Reporter(Protocol):
    """What the dispatcher needs from a reporter.

    ``load_time`` is assigned directly; ``failed_examples`` decides the
    overall verdict after ``finish()``.
    """

    load_time: float

    @property
    def failed_examples(self) -> Sequence[ExampleSummary]: ...

    def example_passed(self, example: ExampleSummary) -> None: ...

    def example_pending(self, example: ExampleSummary) -> None: ...

    def example_failed(self, example: ExampleSummary) -> None: ...

    def group_started(self, group: GroupMetadata) -> None: ...

    def group_finished(self) -> None: ...

    def finish(self) -> None: ...


def parse_formatter_spec(spec: str) -> tuple[str, str | None]:
    """Split ``name[:path]`` into the formatter name and optional output path.

    Raises:
        ConfigError: If the name is not a known formatter.
    """
    name, _, path = spec.partition(":")
    if name not in FORMATTERS:
        choices = ", ".join(sorted(FORMATTERS))
        msg = f"Unknown formatter {name!r}. Choose from: {choices}"
        raise ConfigError(msg)
    return name, (path or None)


class ConsoleReporter:
    """Fans every notification out to a list of formatters.

    Keeps the passed/pending/failed examples so the final summary can be
    rendered once all workers are done.
    """

    def __init__(self, formatters: list[BaseFormatter], start_time: float | None = None) -> None:
        self.formatters = formatters
        self.start_time = time.monotonic() if start_time is None else start_time
        self.load_time = 0.0
        self.totals = RunTotals()
        self._finished = False

    @classmethod
    def from_config(
        cls,
        formatter_specs: Sequence[str],
        start_time: float | None = None,
        *,
        color: bool | None = None,
    ) -> ConsoleReporter:
        """Build a reporter from ``name[:path]`` specs.

        No specs means a single ``progress`` formatter on stdout. A path of
        ``-`` also means stdout.
        """
        formatters: list[BaseFormatter] = []
        for spec in formatter_specs or ["progress"]:
            name, path = parse_formatter_spec(spec)
            formatter_cls = FORMATTERS[name]
            if path is None or path == "-":
                formatters.append(formatter_cls(color=color))
            else:
                target = Path(path)
                target.parent.mkdir(parents=True, exist_ok=True)
                handle = target.open("w", encoding="utf-8")
                formatters.append(formatter_cls(handle, color=False, close_output=True))
        return cls(formatters, start_time)

    @property
    def failed_examples(self) -> list[ExampleSummary]:
        return self.totals.failed

    def example_passed(self, example: ExampleSummary) -> None:
        self.totals.passed.append(example)
        for formatter in self.formatters:
            formatter.example_passed(example)

    def example_pending(self, example: ExampleSummary) -> None:
        self.totals.pending.append(example)
        for formatter in self.formatters:
            formatter.example_pending(example)

    def example_failed(self, example: ExampleSummary) -> None:
        self.totals.failed.append(example)
        for formatter in self.formatters:
            formatter.example_failed(example)

    def group_started(self, group: GroupMetadata) -> None:
        for formatter in self.formatters:
            formatter.group_started(group)

    def group_finished(self) -> None:
        for formatter in self.formatters:
            formatter.group_finished()

    def finish(self) -> None:
        """Render pending, failures and the summary, then close outputs."""
        if self._finished:
            return
        self._finished = True
        duration = time.monotonic() - self.start_time
        for formatter in self.formatters:
            formatter.start_dump()
            formatter.dump_pending(self.totals.pending)
            formatter.dump_failures(self.totals.failed)
            formatter.dump_summary(duration, self.load_time, self.totals)
            formatter.close()
