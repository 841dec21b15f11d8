"""Tests for turning user paths into test ids."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from testforge._internal.errors import PartitionError
from testforge.partition.discovery import discover_tests, file_part

if TYPE_CHECKING:
    from pathlib import Path


@pytest.fixture
def tree(tmp_path: Path) -> Path:
    for relative in [
        "tests/test_a.py",
        "tests/b_test.py",
        "tests/helpers.py",
        "tests/sub/test_c.py",
        "tests/.hidden/test_hidden.py",
        "tests/__pycache__/test_cached.py",
        "tests/build/test_built.py",
    ]:
        path = tmp_path / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("def test_x():\n    pass\n")
    return tmp_path


def test_file_part():
    assert file_part("tests/test_a.py::TestX::test_y") == "tests/test_a.py"
    assert file_part("tests/test_a.py") == "tests/test_a.py"


def test_directory_is_expanded_sorted(tree: Path):
    tests = discover_tests([tree / "tests"])

    root = (tree / "tests").as_posix()
    assert tests == [
        f"{root}/b_test.py",
        f"{root}/sub/test_c.py",
        f"{root}/test_a.py",
    ]


def test_files_and_node_ids_kept_as_given(tree: Path):
    node_id = f"{tree / 'tests' / 'test_a.py'}::test_x"
    helper = str(tree / "tests" / "helpers.py")

    assert discover_tests([node_id, helper]) == [node_id, helper]


def test_duplicates_dropped_first_wins(tree: Path):
    test_file = (tree / "tests" / "test_a.py").as_posix()

    tests = discover_tests([test_file, tree / "tests"])

    assert tests[0] == test_file
    assert tests.count(test_file) == 1
    assert len(tests) == 3


def test_missing_path_raises(tmp_path: Path):
    with pytest.raises(PartitionError, match="Test path not found"):
        discover_tests([tmp_path / "absent"])


def test_missing_node_id_file_raises(tmp_path: Path):
    with pytest.raises(PartitionError):
        discover_tests([f"{tmp_path}/absent.py::test_x"])
