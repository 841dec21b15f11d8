"""Main Typer application and entry point for the ``testforge`` CLI."""

from __future__ import annotations

import typer

from testforge import __version__
from testforge.cli.run import run_cmd

app = typer.Typer(
    name="testforge",
    help="Run a pytest suite across parallel worker processes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

app.command("run", help="Run tests in parallel and report the merged results.")(run_cmd)


def _version_callback(value: bool) -> None:
    """Print version and exit.

    Args:
        value: True if --version was passed.
    """
    if value:
        typer.echo(f"testforge {__version__}")
        raise typer.Exit


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """TestForge: run a pytest suite across parallel worker processes."""
