"""Rich-based output formatters for the console reporter."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rich.console import Console
from rich.markup import escape

if TYPE_CHECKING:
    from typing import TextIO

    from testforge.reporting.models import ExampleSummary, GroupMetadata, RunTotals


def _pluralize(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _format_seconds(seconds: float) -> str:
    if seconds < 60:
        value = f"{seconds:.5f}".rstrip("0").rstrip(".") or "0"
        return "1 second" if value == "1" else f"{value} seconds"
    minutes, rest = divmod(seconds, 60)
    return f"{int(minutes)} minute{'s' if minutes >= 2 else ''} {rest:.2f} seconds"


class BaseFormatter:
    """No-op formatter; subclasses override the notifications they need.

    Attributes:
        console: Rich console the formatter renders to.
    """

    name = "base"

    def __init__(
        self,
        output: TextIO | None = None,
        *,
        color: bool | None = None,
        close_output: bool = False,
    ) -> None:
        self._output = output
        self._close_output = close_output
        self.console = Console(
            file=output,
            highlight=False,
            emoji=False,
            soft_wrap=True,
            no_color=color is False,
            force_terminal=color if color else None,
        )

    def group_started(self, group: GroupMetadata) -> None:
        pass

    def group_finished(self) -> None:
        pass

    def example_passed(self, example: ExampleSummary) -> None:
        pass

    def example_pending(self, example: ExampleSummary) -> None:
        pass

    def example_failed(self, example: ExampleSummary) -> None:
        pass

    def start_dump(self) -> None:
        pass

    def dump_pending(self, pending: list[ExampleSummary]) -> None:
        if not pending:
            return
        self.console.print("\nPending: (Failures listed here are expected and do not affect your suite's status)")
        for index, example in enumerate(pending, start=1):
            self.console.print(f"\n  {index}) {escape(example.full_description)}", style="yellow")
            reason = example.pending_message or "No reason given"
            self.console.print(f"     # {escape(reason)}", style="cyan")
            if example.location:
                self.console.print(f"     # {escape(example.location)}", style="cyan")

    def dump_failures(self, failed: list[ExampleSummary]) -> None:
        if not failed:
            return
        self.console.print("\nFailures:")
        for index, example in enumerate(failed, start=1):
            self.console.print(f"\n  {index}) {escape(example.full_description)}")
            detail = example.exception
            if detail is None:
                continue
            self.console.print(f"     Failure/Error: {escape(detail.exception_class)}", style="red")
            for line in detail.message.splitlines() or [""]:
                self.console.print(f"       {escape(line)}", style="red")
            for line in detail.backtrace:
                self.console.print(f"     # {escape(line)}", style="cyan")

    def dump_summary(self, duration: float, load_time: float, totals: RunTotals) -> None:
        self.console.print(
            f"\nFinished in {_format_seconds(duration)} "
            f"(files took {_format_seconds(load_time)} to load)"
        )
        failed = len(totals.failed)
        line = f"{_pluralize(totals.example_count, 'example')}, {_pluralize(failed, 'failure')}"
        if totals.pending:
            line += f", {len(totals.pending)} pending"
        style = "red" if failed else ("yellow" if totals.pending else "green")
        self.console.print(line, style=style)

        if totals.failed:
            self.console.print("\nFailed examples:\n")
            for example in totals.failed:
                self.console.print(
                    f"[red]pytest {escape(example.id)}[/red] [cyan]# {escape(example.full_description)}[/cyan]"
                )

    def close(self) -> None:
        """Flush the output; close it only if this formatter was handed ownership."""
        if self._output is None:
            return
        self._output.flush()
        if self._close_output:
            self._output.close()


class ProgressFormatter(BaseFormatter):
    """One character per example: ``.`` passed, ``*`` pending, ``F`` failed."""

    name = "progress"

    def example_passed(self, example: ExampleSummary) -> None:
        self.console.print(".", style="green", end="")

    def example_pending(self, example: ExampleSummary) -> None:
        self.console.print("*", style="yellow", end="")

    def example_failed(self, example: ExampleSummary) -> None:
        self.console.print("F", style="red", end="")

    def start_dump(self) -> None:
        self.console.print()


class DocumentationFormatter(BaseFormatter):
    """Nested group and example descriptions.

    Groups from different workers interleave, so nesting reflects arrival
    order rather than the source tree.
    """

    name = "documentation"

    def __init__(
        self,
        output: TextIO | None = None,
        *,
        color: bool | None = None,
        close_output: bool = False,
    ) -> None:
        super().__init__(output, color=color, close_output=close_output)
        self._depth = 0
        self._failure_index = 0

    def _indent(self) -> str:
        return "  " * self._depth

    def group_started(self, group: GroupMetadata) -> None:
        if self._depth == 0:
            self.console.print()
        self.console.print(f"{self._indent()}{escape(group.description)}")
        self._depth += 1

    def group_finished(self) -> None:
        self._depth = max(self._depth - 1, 0)

    def example_passed(self, example: ExampleSummary) -> None:
        self.console.print(f"{self._indent()}{escape(example.description)}", style="green")

    def example_pending(self, example: ExampleSummary) -> None:
        reason = example.pending_message or "No reason given"
        self.console.print(
            f"{self._indent()}{escape(example.description)} (PENDING: {escape(reason)})",
            style="yellow",
        )

    def example_failed(self, example: ExampleSummary) -> None:
        self._failure_index += 1
        self.console.print(
            f"{self._indent()}{escape(example.description)} (FAILED - {self._failure_index})",
            style="red",
        )


FORMATTERS: dict[str, type[BaseFormatter]] = {
    ProgressFormatter.name: ProgressFormatter,
    DocumentationFormatter.name: DocumentationFormatter,
}
