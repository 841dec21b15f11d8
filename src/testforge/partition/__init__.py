"""Test discovery and balanced grouping.

Groups are balanced by recorded run time when the runtime log has data,
and by file size otherwise.
"""

from __future__ import annotations

from testforge.partition.discovery import discover_tests
from testforge.partition.partitioner import determine_worker_count, partition, tests_with_size
from testforge.partition.runtime_log import append_runtimes, compact_runtime_log, read_runtime_log

__all__ = [
    "append_runtimes",
    "compact_runtime_log",
    "determine_worker_count",
    "discover_tests",
    "partition",
    "read_runtime_log",
    "tests_with_size",
]
