"""The shared runtime log.

Workers append one ``<test file>:<seconds>`` line per file they finish.
Several workers write at once, so every write holds an exclusive lock on
the file. The newest line for a file wins when reading.
"""

from __future__ import annotations

import contextlib
import os
import sys
import tempfile
from pathlib import Path
from typing import IO, TYPE_CHECKING

from testforge._internal.errors import PartitionError
from testforge._internal.logging import get_logger

if sys.platform != "win32":
    import fcntl

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from testforge._internal.types import RuntimeTable

logger = get_logger("partition.runtime_log")


@contextlib.contextmanager
def _locked(handle: IO[str]) -> Iterator[None]:
    if sys.platform == "win32":
        yield
        return
    fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
    try:
        yield
    finally:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def runtime_key(path: str | Path) -> str:
    """Key a test file is recorded under: its path relative to the working directory.

    The runner and its workers share a working directory, so both sides
    agree on the key however the file was named on the command line.
    """
    absolute = Path(os.path.abspath(path))
    try:
        return absolute.relative_to(Path.cwd()).as_posix()
    except ValueError:
        return absolute.as_posix()


def parse_runtime_lines(lines: Iterable[str]) -> RuntimeTable:
    """Parse runtime log lines; malformed lines are skipped."""
    runtimes: RuntimeTable = {}
    for number, raw in enumerate(lines, start=1):
        line = raw.strip()
        if not line:
            continue
        test_id, sep, seconds = line.rpartition(":")
        try:
            value = float(seconds)
        except ValueError:
            value = -1.0
        if not sep or not test_id or value < 0:
            logger.debug("Skipping malformed runtime log line %d: %r", number, line)
            continue
        runtimes[test_id] = value
    return runtimes


def read_runtime_log(path: Path) -> RuntimeTable:
    """Load recorded run times; an absent log yields an empty table.

    Raises:
        PartitionError: If the log exists but cannot be read.
    """
    try:
        with path.open(encoding="utf-8") as handle:
            return parse_runtime_lines(handle)
    except FileNotFoundError:
        return {}
    except OSError as exc:
        msg = f"Cannot read runtime log {path}: {exc}"
        raise PartitionError(msg) from exc


def append_runtimes(path: Path, runtimes: Iterable[tuple[str, float]]) -> None:
    """Append run times under an exclusive lock."""
    lines = "".join(f"{test_id}:{seconds:.6f}\n" for test_id, seconds in runtimes)
    if not lines:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle, _locked(handle):
        handle.write(lines)
        handle.flush()


def compact_runtime_log(path: Path) -> int:
    """Rewrite the log keeping only the newest line per test file.

    Returns:
        Number of entries left in the log.
    """
    if not path.exists():
        return 0
    with path.open("r+", encoding="utf-8") as handle, _locked(handle):
        runtimes = parse_runtime_lines(handle)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.")
        with os.fdopen(fd, "w", encoding="utf-8") as tmp:
            for test_id, seconds in sorted(runtimes.items()):
                tmp.write(f"{test_id}:{seconds:.6f}\n")
        os.replace(tmp_name, path)
    return len(runtimes)
