"""Event types exchanged between worker relays and the dispatcher.

A worker writes ordinary text and structured events to the same stdout.
Each structured event sits on the tail of a line, after the worker's
correlation token::

    some free-form output<TOKEN>{"type": "example_passed", "example": {...}}

Everything before the token is human output; everything after it is one
JSON object. The token never appears inside the JSON.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar

from testforge._internal.errors import ProtocolError
from testforge.reporting.models import ExampleSummary, GroupMetadata, LoadSummary


@dataclass(frozen=True)
class ExamplePassed:
    kind: ClassVar[str] = "example_passed"
    worker_id: int
    example: ExampleSummary


@dataclass(frozen=True)
class ExamplePending:
    kind: ClassVar[str] = "example_pending"
    worker_id: int
    example: ExampleSummary


@dataclass(frozen=True)
class ExampleFailed:
    kind: ClassVar[str] = "example_failed"
    worker_id: int
    example: ExampleSummary


@dataclass(frozen=True)
class GroupStarted:
    kind: ClassVar[str] = "group_started"
    worker_id: int
    group: GroupMetadata


@dataclass(frozen=True)
class GroupFinished:
    kind: ClassVar[str] = "group_finished"
    worker_id: int


@dataclass(frozen=True)
class LoadSummaryEvent:
    kind: ClassVar[str] = "load_summary"
    worker_id: int
    summary: LoadSummary


@dataclass(frozen=True)
class SeedEvent:
    kind: ClassVar[str] = "seed"
    worker_id: int
    seed: int | None = None


@dataclass(frozen=True)
class CloseEvent:
    kind: ClassVar[str] = "close"
    worker_id: int


@dataclass(frozen=True)
class WorkerExit:
    """Synthesized by the runner, never sent by a worker.

    Exactly one per worker, always the last event for that worker.
    """

    kind: ClassVar[str] = "exit"
    worker_id: int


@dataclass(frozen=True)
class UnknownEvent:
    """A well-formed event whose ``type`` this runner does not handle."""

    kind: ClassVar[str] = "unknown"
    worker_id: int
    type_name: str
    payload: dict[str, Any]


Event = (
    ExamplePassed
    | ExamplePending
    | ExampleFailed
    | GroupStarted
    | GroupFinished
    | LoadSummaryEvent
    | SeedEvent
    | CloseEvent
    | WorkerExit
    | UnknownEvent
)


def _example(cls: type, payload: dict[str, Any], worker_id: int) -> Event:
    example = ExampleSummary.from_obj(payload.get("example"), worker_id=worker_id)
    return cls(worker_id=worker_id, example=example)


def _build(type_name: str, payload: dict[str, Any], worker_id: int) -> Event:
    if type_name == "example_passed":
        return _example(ExamplePassed, payload, worker_id)
    if type_name == "example_pending":
        return _example(ExamplePending, payload, worker_id)
    if type_name == "example_failed":
        return _example(ExampleFailed, payload, worker_id)
    if type_name == "group_started":
        group = GroupMetadata.from_obj(payload.get("group"), worker_id=worker_id)
        return GroupStarted(worker_id=worker_id, group=group)
    if type_name == "group_finished":
        return GroupFinished(worker_id=worker_id)
    if type_name == "load_summary":
        return LoadSummaryEvent(worker_id=worker_id, summary=LoadSummary.from_obj(payload.get("summary")))
    if type_name == "seed":
        seed = payload.get("seed")
        if seed is not None and (isinstance(seed, bool) or not isinstance(seed, int)):
            msg = f"field 'seed' has wrong type {type(seed).__name__}"
            raise ValueError(msg)
        return SeedEvent(worker_id=worker_id, seed=seed)
    if type_name == "close":
        return CloseEvent(worker_id=worker_id)
    # "exit" is reserved for the runner; a worker sending it is just unknown
    return UnknownEvent(worker_id=worker_id, type_name=type_name, payload=payload)


def decode_event(fragment: bytes, worker_id: int) -> Event:
    """Decode the part of a line that follows the correlation token.

    Args:
        fragment: Raw bytes after the token, trailing newline included.
        worker_id: Worker the line came from; attached to the event.

    Returns:
        The typed event. Unrecognized ``type`` values yield ``UnknownEvent``.

    Raises:
        ProtocolError: If the fragment is not a JSON object with a string
            ``type`` or its payload does not match the event schema.
    """
    try:
        payload = json.loads(fragment)
    except (ValueError, RecursionError) as exc:
        # ValueError covers bad JSON, bad UTF-8 and integers past the digit
        # limit; RecursionError covers nesting deeper than the parser follows
        msg = f"worker {worker_id} sent undecodable event: {exc!r}"
        raise ProtocolError(msg, fragment) from exc

    if not isinstance(payload, dict):
        msg = f"worker {worker_id} sent a {type(payload).__name__} instead of an event object"
        raise ProtocolError(msg, fragment)

    type_name = payload.get("type")
    if not isinstance(type_name, str):
        msg = f"worker {worker_id} sent an event without a string 'type'"
        raise ProtocolError(msg, fragment)

    try:
        return _build(type_name, payload, worker_id)
    except ValueError as exc:
        msg = f"worker {worker_id} sent invalid {type_name!r} event: {exc}"
        raise ProtocolError(msg, fragment) from exc


def encode_event(type_name: str, **payload: Any) -> str:
    """Serialize one event object; the counterpart of ``decode_event``."""
    return json.dumps({"type": type_name, **payload}, separators=(",", ":"))
