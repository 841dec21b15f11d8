"""Integration tests running real pytest workers with the worker plugin."""

from __future__ import annotations

import io
from typing import TYPE_CHECKING

import pytest

from testforge.engine.runner import ParallelRunner
from testforge.partition.discovery import discover_tests
from testforge.partition import partitioner as partitioner_mod
from testforge.partition.runtime_log import read_runtime_log
from testforge.reporting.formatters import DocumentationFormatter
from testforge.reporting.reporter import ConsoleReporter

if TYPE_CHECKING:
    from pathlib import Path

    from testforge._internal.config import TestForgeConfig

pytestmark = pytest.mark.timeout(120)


@pytest.fixture
def in_tmp(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.chdir(tmp_path)
    return tmp_path


def _run(config: TestForgeConfig, paths: list[str], **kwargs) -> tuple[bool, ConsoleReporter, str]:
    output = io.StringIO()
    reporter = ConsoleReporter([DocumentationFormatter(output, color=False)])
    runner = ParallelRunner(
        reporter,
        discover_tests(paths),
        config=config,
        stdout=io.BytesIO(),
        stderr=io.BytesIO(),
        **kwargs,
    )
    return runner.run(), reporter, output.getvalue()


def _names(examples) -> list[str]:
    return sorted(example.description for example in examples)


@pytest.mark.usefixtures("in_tmp")
def test_suite_results_are_merged(real_worker_config: TestForgeConfig, sample_suite: Path):
    passed, reporter, output = _run(real_worker_config, ["suite"], workers=2, seed=3)

    assert passed is False
    assert _names(reporter.totals.passed) == ["test_ok", "test_one", "test_slow", "test_two"]
    assert _names(reporter.totals.pending) == ["test_skipped"]
    assert reporter.totals.pending[0].pending_message == "not today"

    (failed,) = reporter.failed_examples
    assert failed.id.endswith("test_gamma.py::test_broken")
    assert failed.exception is not None
    assert failed.exception.exception_class == "AssertionError"
    assert "numbers disagree" in failed.exception.message
    assert failed.exception.backtrace

    assert "test_broken (FAILED - 1)" in output
    assert "6 examples, 1 failure, 1 pending" in output


def test_runtime_log_is_recorded(real_worker_config: TestForgeConfig, sample_suite: Path, in_tmp: Path):
    _run(real_worker_config, ["suite"], workers=3)

    recorded = read_runtime_log(real_worker_config.runtime_log)
    assert set(recorded) == {"suite/test_alpha.py", "suite/test_beta.py", "suite/test_gamma.py"}

    tests = discover_tests(["suite"])
    sizes = partitioner_mod.tests_with_size(tests, real_worker_config.runtime_log)
    assert sizes == {test_id: recorded[test_id] for test_id in tests}


@pytest.mark.usefixtures("in_tmp")
def test_tag_selects_marked_tests(real_worker_config: TestForgeConfig, sample_suite: Path):
    passed, reporter, _ = _run(real_worker_config, ["suite"], workers=2, tags=["slow"])

    assert passed is True
    assert _names(reporter.totals.passed) == ["test_slow"]
    assert reporter.totals.example_count == 1


@pytest.mark.usefixtures("in_tmp")
def test_negated_tag_excludes(real_worker_config: TestForgeConfig, sample_suite: Path):
    _, reporter, _ = _run(real_worker_config, ["suite"], workers=2, tags=["~slow"])

    assert "test_slow" not in _names(reporter.totals.passed)
    assert reporter.totals.example_count == 5


@pytest.mark.usefixtures("in_tmp")
def test_fail_fast_with_real_workers(real_worker_config: TestForgeConfig, sample_suite: Path):
    passed, reporter, _ = _run(real_worker_config, ["suite"], workers=1, fail_fast=1)

    assert passed is False
    assert len(reporter.failed_examples) == 1


def test_collection_error_fails_the_run(real_worker_config: TestForgeConfig, in_tmp: Path):
    suite = in_tmp / "broken"
    suite.mkdir()
    (suite / "test_syntax.py").write_text("def test_x(:\n    pass\n")
    (suite / "test_fine.py").write_text("def test_fine():\n    pass\n")

    passed, reporter, _ = _run(real_worker_config, ["broken"], workers=2)

    assert passed is False
    (failed,) = reporter.failed_examples
    assert failed.description == "collection error"
    assert _names(reporter.totals.passed) == ["test_fine"]
