"""Shared test fixtures for the TestForge test suite."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from testforge._internal.config import TestForgeConfig

if TYPE_CHECKING:
    from collections.abc import Iterator

FAKE_WORKER = Path(__file__).parent / "fakes" / "fake_worker.py"

collect_ignore = ["fakes"]


# =============================================================================
# Pytest configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-apply markers based on test directory structure."""
    for item in items:
        test_path = str(item.fspath)
        if "/unit/" in test_path:
            item.add_marker(pytest.mark.unit)
        elif "/integration/" in test_path:
            item.add_marker(pytest.mark.integration)
        elif "/e2e/" in test_path:
            item.add_marker(pytest.mark.e2e)


# =============================================================================
# Logging
# =============================================================================


@pytest.fixture(autouse=True)
def _reset_testforge_logger() -> Iterator[None]:
    """Undo ``setup_logging`` between tests so ``caplog`` sees records."""
    logger = logging.getLogger("testforge")
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# =============================================================================
# Worker fixtures
# =============================================================================


@pytest.fixture
def fake_worker_config(tmp_path: Path) -> TestForgeConfig:
    """Configuration whose workers run the scripted fake worker."""
    return TestForgeConfig(
        runtime_log=tmp_path / "runtime.log",
        worker_command=(sys.executable, str(FAKE_WORKER)),
    )


@pytest.fixture
def real_worker_config(tmp_path: Path) -> TestForgeConfig:
    """Configuration whose workers run real pytest with the worker plugin."""
    return TestForgeConfig(
        runtime_log=tmp_path / "runtime.log",
        worker_command=(sys.executable, "-m", "pytest", "-p", "no:terminal", "-p", "no:cacheprovider"),
    )


@pytest.fixture
def sample_suite(tmp_path: Path) -> Path:
    """A small pytest suite: two passing modules and one with a failure."""
    suite = tmp_path / "suite"
    suite.mkdir()
    (suite / "test_alpha.py").write_text(
        "def test_one():\n    assert True\n\n\ndef test_two():\n    assert 1 + 1 == 2\n"
    )
    (suite / "test_beta.py").write_text(
        "import pytest\n\n\n"
        "@pytest.mark.slow\n"
        "def test_slow():\n    assert True\n\n\n"
        "@pytest.mark.skip(reason='not today')\n"
        "def test_skipped():\n    assert False\n"
    )
    (suite / "test_gamma.py").write_text(
        "def test_ok():\n    assert True\n\n\ndef test_broken():\n    assert 1 == 2, 'numbers disagree'\n"
    )
    return suite
