"""Split test ids into balanced groups, one per worker."""

from __future__ import annotations

import heapq
import os
from pathlib import Path
from typing import TYPE_CHECKING

from testforge._internal.errors import PartitionError
from testforge._internal.logging import get_logger
from testforge.partition.discovery import file_part
from testforge.partition.runtime_log import read_runtime_log, runtime_key

if TYPE_CHECKING:
    from collections.abc import Sequence

    from testforge._internal.types import Group, RuntimeTable

logger = get_logger("partition.partitioner")


def default_worker_count() -> int:
    """Worker count when nothing was requested: one per CPU."""
    return os.cpu_count() or 1


def determine_worker_count(requested: int | None, total_tests: int) -> int:
    """Never start more workers than there are tests.

    Args:
        requested: Upper bound asked for; None means one per CPU.
        total_tests: Number of test ids to distribute.

    Returns:
        ``min(requested, total_tests)``; 0 when there are no tests.

    Raises:
        PartitionError: If ``requested`` is below 1.
    """
    if requested is None:
        requested = default_worker_count()
    if requested < 1:
        msg = f"Worker count must be >= 1, got: {requested}"
        raise PartitionError(msg)
    return max(min(requested, total_tests), 0)


def _file_size(test_id: str) -> float:
    try:
        return float(Path(file_part(test_id)).stat().st_size)
    except OSError:
        return 0.0


def tests_with_size(tests: Sequence[str], runtime_log: Path | None) -> RuntimeTable:
    """Estimate the cost of each test id.

    Recorded run times are used when the runtime log has any; ids missing
    from the log get the mean recorded time. Without any recorded times
    the cost is the test file's size in bytes.
    """
    recorded = read_runtime_log(runtime_log) if runtime_log is not None else {}
    known: RuntimeTable = {}
    for test_id in tests:
        seconds = recorded.get(test_id, recorded.get(runtime_key(file_part(test_id))))
        if seconds is not None:
            known[test_id] = seconds

    if not known:
        logger.debug("No recorded runtimes, grouping %d tests by file size", len(tests))
        return {test_id: _file_size(test_id) for test_id in tests}

    fallback = sum(known.values()) / len(known)
    logger.debug(
        "Runtimes known for %d/%d tests, %.3fs assumed for the rest",
        len(known),
        len(tests),
        fallback,
    )
    return {test_id: known.get(test_id, fallback) for test_id in tests}


def partition(
    tests: Sequence[str],
    worker_count: int,
    runtime_log: Path | None = None,
) -> list[Group]:
    """Distribute ``tests`` into exactly ``worker_count`` groups.

    Largest estimated cost first, each test goes to the group with the
    smallest running total; ties go to the group with fewer tests, then
    to the lowest index. Identical inputs and runtime data always give
    identical groups.

    Args:
        tests: Test ids; every one lands in exactly one group.
        worker_count: Number of groups to produce.
        runtime_log: Runtime log used to estimate costs.

    Returns:
        ``worker_count`` groups; an empty list when ``worker_count`` is 0.

    Raises:
        PartitionError: If tests are given but ``worker_count`` is 0, or
            ``worker_count`` is negative.
    """
    if worker_count < 0 or (worker_count == 0 and tests):
        msg = f"Cannot split {len(tests)} tests into {worker_count} groups"
        raise PartitionError(msg)
    if worker_count == 0:
        return []

    sizes = tests_with_size(list(dict.fromkeys(tests)), runtime_log)
    ordered = sorted(sizes, key=lambda test_id: (-sizes[test_id], test_id))

    groups: list[list[str]] = [[] for _ in range(worker_count)]
    # (total cost, tests assigned, group index): zero-cost tests still spread
    totals = [(0.0, 0, index) for index in range(worker_count)]
    heapq.heapify(totals)
    for test_id in ordered:
        total, count, index = heapq.heappop(totals)
        groups[index].append(test_id)
        heapq.heappush(totals, (total + sizes[test_id], count + 1, index))

    return [tuple(group) for group in groups]
