"""TestForge: run a pytest suite across parallel worker processes."""

from __future__ import annotations

from testforge.engine.runner import ParallelRunner, RunnerState
from testforge.partition.discovery import discover_tests
from testforge.partition.partitioner import determine_worker_count
from testforge.reporting.models import ExampleSummary, FailureDetail, GroupMetadata, LoadSummary
from testforge.reporting.reporter import ConsoleReporter, Reporter

__version__ = "0.1.0"

__all__ = [
    "ConsoleReporter",
    "ExampleSummary",
    "FailureDetail",
    "GroupMetadata",
    "LoadSummary",
    "ParallelRunner",
    "Reporter",
    "RunnerState",
    "determine_worker_count",
    "discover_tests",
]
