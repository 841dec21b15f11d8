"""Expand user-supplied paths into test ids."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from testforge._internal.errors import PartitionError

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

TEST_FILE_PATTERNS = ("test_*.py", "*_test.py")

_SKIP_DIRS = frozenset({"__pycache__", "node_modules", "venv", "build", "dist"})


def file_part(test_id: str) -> str:
    """Return the file portion of a pytest node id (``a.py::T::t`` -> ``a.py``)."""
    return test_id.split("::", 1)[0]


def _is_skipped(path: Path, root: Path) -> bool:
    for part in path.relative_to(root).parts[:-1]:
        if part.startswith(".") or part in _SKIP_DIRS:
            return True
    return False


def _iter_directory(root: Path) -> Iterator[Path]:
    found: set[Path] = set()
    for pattern in TEST_FILE_PATTERNS:
        for path in root.rglob(pattern):
            if path.is_file() and not _is_skipped(path, root):
                found.add(path)
    yield from sorted(found)


def discover_tests(paths: Iterable[str | Path]) -> list[str]:
    """Turn files, directories and node ids into an ordered list of test ids.

    Directories are searched recursively for ``test_*.py`` and
    ``*_test.py``; hidden and build directories are skipped. Files and
    node ids (``path::name``) are kept as given. Duplicates are dropped,
    first occurrence wins.

    Args:
        paths: What the user asked to run.

    Returns:
        Test ids in a stable order.

    Raises:
        PartitionError: If a path does not exist.
    """
    tests: list[str] = []
    seen: set[str] = set()

    def _add(test_id: str) -> None:
        if test_id not in seen:
            seen.add(test_id)
            tests.append(test_id)

    for raw in paths:
        raw_str = str(raw)
        path = Path(file_part(raw_str))
        if not path.exists():
            msg = f"Test path not found: {path}"
            raise PartitionError(msg)
        if "::" in raw_str or path.is_file():
            _add(raw_str)
            continue
        for found in _iter_directory(path):
            _add(found.as_posix())

    return tests
