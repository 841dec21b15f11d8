"""Example and group records reconstructed from worker events.

Workers serialize these as JSON; the runner rebuilds them with strict
``from_obj`` constructors so a malformed payload is rejected at the
parse boundary instead of surfacing later inside a formatter.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Literal

ExampleStatus = Literal["passed", "pending", "failed"]

_STATUSES: frozenset[str] = frozenset({"passed", "pending", "failed"})


def _require(obj: dict[str, Any], key: str, kind: type | tuple[type, ...]) -> Any:
    if key not in obj:
        msg = f"missing field {key!r}"
        raise ValueError(msg)
    value = obj[key]
    # bool is an int subclass; never accept it where a number is expected
    if isinstance(value, bool) and bool not in (kind if isinstance(kind, tuple) else (kind,)):
        msg = f"field {key!r} has wrong type bool"
        raise ValueError(msg)
    if not isinstance(value, kind):
        msg = f"field {key!r} has wrong type {type(value).__name__}"
        raise ValueError(msg)
    return value


def _optional(obj: dict[str, Any], key: str, kind: type | tuple[type, ...], default: Any) -> Any:
    if obj.get(key) is None:
        return default
    return _require(obj, key, kind)


def _as_seconds(value: int | float, key: str) -> float:
    # JSON integers are unbounded and json.loads accepts NaN and Infinity
    try:
        seconds = float(value)
    except OverflowError:
        msg = f"field {key!r} is out of range"
        raise ValueError(msg) from None
    if not math.isfinite(seconds):
        msg = f"field {key!r} must be a finite number"
        raise ValueError(msg)
    return seconds


def _require_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        msg = f"{what} must be an object, got {type(value).__name__}"
        raise ValueError(msg)
    return value


@dataclass(frozen=True)
class FailureDetail:
    """Why an example failed.

    Attributes:
        exception_class: Qualified name of the raised exception type.
        message: Exception message (possibly multi-line).
        backtrace: Location lines, innermost last.
    """

    exception_class: str
    message: str
    backtrace: tuple[str, ...] = ()

    @classmethod
    def from_obj(cls, obj: Any) -> FailureDetail:
        data = _require_mapping(obj, "exception")
        backtrace = _optional(data, "backtrace", list, [])
        if not all(isinstance(line, str) for line in backtrace):
            msg = "field 'backtrace' must contain only strings"
            raise ValueError(msg)
        return cls(
            exception_class=_optional(data, "class_name", str, "Exception"),
            message=_optional(data, "message", str, ""),
            backtrace=tuple(backtrace),
        )


@dataclass(frozen=True)
class ExampleSummary:
    """A single test as reported by a worker.

    Stands in for the framework's own test object: formatters only need
    the identity, the description, the outcome and, for failures, the
    exception.

    Attributes:
        id: Framework node id, e.g. ``tests/test_api.py::test_get``.
        description: Short name of the test.
        full_description: Description including enclosing groups.
        location: ``path:line`` of the test definition.
        status: Outcome reported by the worker.
        run_time: Seconds spent in setup, call and teardown.
        pending_message: Skip/xfail reason for pending examples.
        exception: Failure detail; set only for failed examples.
        worker_id: Worker that ran the example.
    """

    id: str
    description: str
    full_description: str
    location: str
    status: ExampleStatus
    run_time: float = 0.0
    pending_message: str | None = None
    exception: FailureDetail | None = None
    worker_id: int = 0

    @classmethod
    def from_obj(cls, obj: Any, *, worker_id: int = 0) -> ExampleSummary:
        """Rebuild an example from its decoded JSON payload.

        Raises:
            ValueError: If a required field is missing or has the wrong type.
        """
        data = _require_mapping(obj, "example")
        status = _require(data, "status", str)
        if status not in _STATUSES:
            msg = f"unknown example status {status!r}"
            raise ValueError(msg)

        raw_exception = data.get("exception")
        exception = FailureDetail.from_obj(raw_exception) if raw_exception is not None else None

        description = _require(data, "description", str)
        return cls(
            id=_require(data, "id", str),
            description=description,
            full_description=_optional(data, "full_description", str, description),
            location=_optional(data, "location", str, ""),
            status=status,
            run_time=_as_seconds(_optional(data, "run_time", (int, float), 0.0), "run_time"),
            pending_message=_optional(data, "pending_message", str, None),
            exception=exception,
            worker_id=worker_id,
        )


@dataclass(frozen=True)
class GroupMetadata:
    """A group of examples (one test module) as announced by a worker."""

    id: str
    description: str
    location: str = ""
    worker_id: int = 0

    @classmethod
    def from_obj(cls, obj: Any, *, worker_id: int = 0) -> GroupMetadata:
        data = _require_mapping(obj, "group")
        description = _require(data, "description", str)
        return cls(
            id=_optional(data, "id", str, description),
            description=description,
            location=_optional(data, "location", str, ""),
            worker_id=worker_id,
        )


@dataclass(frozen=True)
class LoadSummary:
    """Partial load statistics from one worker.

    Attributes:
        load_time: Seconds the worker spent collecting tests.
        count: Monotonic counter; larger means more complete.
    """

    load_time: float
    count: int = 0

    @classmethod
    def from_obj(cls, obj: Any) -> LoadSummary:
        data = _require_mapping(obj, "summary")
        return cls(
            load_time=_as_seconds(_require(data, "load_time", (int, float)), "load_time"),
            count=_optional(data, "count", int, 0),
        )


@dataclass
class RunTotals:
    """Counts accumulated by a reporter over one run."""

    passed: list[ExampleSummary] = field(default_factory=list)
    pending: list[ExampleSummary] = field(default_factory=list)
    failed: list[ExampleSummary] = field(default_factory=list)

    @property
    def example_count(self) -> int:
        return len(self.passed) + len(self.pending) + len(self.failed)
