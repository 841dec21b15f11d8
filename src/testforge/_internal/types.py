"""Shared type aliases for TestForge."""

from __future__ import annotations

# Ordered test ids handed to one worker.
Group = tuple[str, ...]

# Test id -> estimated cost (seconds from the runtime log, or bytes).
RuntimeTable = dict[str, float]
