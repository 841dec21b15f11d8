"""Custom exception hierarchy for TestForge."""

from __future__ import annotations


class TestForgeError(Exception):
    """Base exception for all TestForge errors.

    All custom exceptions in TestForge inherit from this class, making it
    easy to catch any TestForge-specific error with a single except clause.
    """

    __test__ = False  # not a pytest test class


class ConfigError(TestForgeError):
    """Raised when configuration is invalid or missing.

    Examples:
        - An environment variable has an invalid value.
        - A CLI option is out of its acceptable range.
    """


class PartitionError(TestForgeError):
    """Raised when the test set cannot be planned.

    Examples:
        - A requested test path does not exist.
        - The runtime log is unreadable.
    """


class EngineError(TestForgeError):
    """Raised when the worker engine cannot run."""


class SpawnError(EngineError):
    """Raised when a worker process cannot be started.

    Fatal for the whole run: the runner never continues with fewer
    workers than it planned.
    """

    def __init__(self, worker_id: int, command: list[str], cause: OSError) -> None:
        self.worker_id = worker_id
        self.command = command
        self.cause = cause
        super().__init__(f"Could not start worker {worker_id} ({command[0]!r}): {cause}")


class ProtocolError(TestForgeError):
    """Raised when a token-delimited fragment is not a valid event.

    Attributes:
        fragment: The raw bytes that followed the correlation token.
    """

    def __init__(self, message: str, fragment: bytes) -> None:
        self.fragment = fragment
        super().__init__(message)
