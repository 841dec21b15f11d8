"""Per-worker stream relays.

Each running worker gets two daemon threads:

- the **stdout relay** splits every line on the worker's correlation
  token, forwards the human part to the runner's stdout and turns the
  structured part into an event on the bus;
- the **stderr relay** copies raw chunks to the runner's stderr.

Malformed structured fragments are logged and dropped; the relay keeps
reading. The stdout relay always finishes by enqueuing ``WorkerExit``.
"""

from __future__ import annotations

import threading
from typing import IO, TYPE_CHECKING

from testforge._internal.errors import ProtocolError
from testforge._internal.logging import get_logger
from testforge.engine.protocol import WorkerExit, decode_event

if TYPE_CHECKING:
    from testforge.engine.bus import EventBus

logger = get_logger("engine.relay")

_CHUNK_SIZE = 4096


def demultiplex_line(
    line: bytes,
    token: bytes,
    worker_id: int,
    bus: EventBus,
    sink: IO[bytes],
) -> None:
    """Route one worker stdout line.

    The text before the first occurrence of ``token`` is written to
    ``sink`` unchanged (no newline is added or removed). If the token is
    present, the remainder is decoded and enqueued.

    Args:
        line: Raw line as read, trailing newline included when present.
        token: Worker correlation token.
        worker_id: Worker the line came from.
        bus: Destination for decoded events.
        sink: Destination for human-readable output.
    """
    prefix, found, rest = line.partition(token)
    if prefix:
        sink.write(prefix)
        sink.flush()
    if not found:
        return

    try:
        event = decode_event(rest, worker_id)
    except ProtocolError as exc:
        logger.warning("Dropping malformed event: %s (%r)", exc, exc.fragment[:200], extra={"worker_id": worker_id})
        return
    bus.put(event)


def relay_stdout(
    stream: IO[bytes],
    token: bytes,
    worker_id: int,
    bus: EventBus,
    sink: IO[bytes],
) -> None:
    """Read ``stream`` line by line until EOF, then enqueue ``WorkerExit``.

    ``WorkerExit`` is enqueued exactly once, even when reading fails
    because the worker was killed underneath us.
    """
    try:
        for line in iter(stream.readline, b""):
            demultiplex_line(line, token, worker_id, bus, sink)
    except (OSError, ValueError):
        # ValueError: stream closed by a cancel while we were reading
        logger.debug("stdout of worker %d closed mid-read", worker_id, exc_info=True)
    finally:
        bus.put(WorkerExit(worker_id=worker_id))


def copy_stream(src: IO[bytes], dst: IO[bytes], worker_id: int = 0) -> None:
    """Copy raw chunks from ``src`` to ``dst`` until EOF.

    Chunks are forwarded as soon as they arrive, without waiting for a
    full line. EOF is the normal way out.
    """
    try:
        while True:
            chunk = _read_chunk(src)
            if not chunk:
                break
            dst.write(chunk)
            dst.flush()
    except (OSError, ValueError):
        logger.debug("stderr of worker %d closed mid-read", worker_id, exc_info=True)


def _read_chunk(src: IO[bytes]) -> bytes:
    read1 = getattr(src, "read1", None)
    if read1 is not None:
        return read1(_CHUNK_SIZE)
    return src.read(_CHUNK_SIZE)


def start_relays(
    worker_id: int,
    token: str,
    stdout: IO[bytes],
    stderr: IO[bytes],
    bus: EventBus,
    *,
    stdout_sink: IO[bytes],
    stderr_sink: IO[bytes],
) -> list[threading.Thread]:
    """Start the stdout and stderr relay threads for one worker.

    Returns:
        The two started threads, stdout relay first.
    """
    threads = [
        threading.Thread(
            target=relay_stdout,
            args=(stdout, token.encode(), worker_id, bus, stdout_sink),
            name=f"testforge-relay-{worker_id}-stdout",
            daemon=True,
        ),
        threading.Thread(
            target=copy_stream,
            args=(stderr, stderr_sink, worker_id),
            name=f"testforge-relay-{worker_id}-stderr",
            daemon=True,
        ),
    ]
    for thread in threads:
        thread.start()
    return threads
