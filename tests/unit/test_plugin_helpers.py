"""Tests for the worker plugin's selection and ordering helpers."""

from __future__ import annotations

import io
import json
from dataclasses import dataclass, field

from testforge.worker.plugin import EventWriter, _description, select_by_tags, shuffle_by_module


@dataclass
class _Marker:
    name: str


@dataclass
class _Item:
    nodeid: str
    markers: list[str] = field(default_factory=list)

    def iter_markers(self):
        return iter(_Marker(name) for name in self.markers)


ITEMS = [
    _Item("a.py::test_1", ["slow"]),
    _Item("a.py::test_2"),
    _Item("b.py::test_3", ["db"]),
    _Item("b.py::test_4", ["slow", "db"]),
    _Item("c.py::test_5"),
]


def _ids(items) -> list[str]:
    return [item.nodeid for item in items]


class TestSelectByTags:
    def test_positive_tag_keeps_marked(self):
        selected, deselected = select_by_tags(ITEMS, ["slow"])

        assert _ids(selected) == ["a.py::test_1", "b.py::test_4"]
        assert len(deselected) == 3

    def test_negated_tag_drops_marked(self):
        selected, _ = select_by_tags(ITEMS, ["~db"])

        assert _ids(selected) == ["a.py::test_1", "a.py::test_2", "c.py::test_5"]

    def test_positive_and_negated(self):
        selected, _ = select_by_tags(ITEMS, ["slow", "~db"])

        assert _ids(selected) == ["a.py::test_1"]

    def test_any_positive_tag_matches(self):
        selected, _ = select_by_tags(ITEMS, ["slow", "db"])

        assert _ids(selected) == ["a.py::test_1", "b.py::test_3", "b.py::test_4"]


class TestShuffleByModule:
    def test_modules_stay_together_in_order(self):
        shuffled = _ids(shuffle_by_module(ITEMS, 42))

        assert sorted(shuffled) == sorted(_ids(ITEMS))
        assert shuffled.index("a.py::test_2") == shuffled.index("a.py::test_1") + 1
        assert shuffled.index("b.py::test_4") == shuffled.index("b.py::test_3") + 1

    def test_same_seed_same_order(self):
        assert _ids(shuffle_by_module(ITEMS, 7)) == _ids(shuffle_by_module(ITEMS, 7))


def test_description():
    assert _description("t.py::TestX::test_y") == ("test_y", "TestX test_y")
    assert _description("t.py") == ("t.py", "t.py")


def test_event_writer_prefixes_token():
    stream = io.StringIO()
    writer = EventWriter("TOKEN", stream, seed=9)

    writer.pytest_sessionstart()
    writer.pytest_sessionfinish()

    lines = stream.getvalue().splitlines()
    assert all(line.startswith("TOKEN{") for line in lines)
    assert [json.loads(line.removeprefix("TOKEN")) for line in lines] == [
        {"type": "seed", "seed": 9},
        {"type": "close"},
    ]
