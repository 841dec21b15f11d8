"""Tests for worker command building and process launch."""

from __future__ import annotations

import io
import os
import sys
from pathlib import Path

import pytest

import testforge
from testforge._internal.errors import SpawnError
from testforge.engine.bus import EventBus
from testforge.engine.launcher import (
    OUTPUT_ID_ENV,
    PLUGIN_MODULE,
    WORKER_ID_ENV,
    WorkerHandle,
    WorkerSpec,
    launch_worker,
    new_token,
)
from testforge.engine.protocol import WorkerExit


def _spec(**overrides) -> WorkerSpec:
    values = {
        "worker_id": 2,
        "group": ("tests/test_a.py", "tests/test_b.py"),
        "worker_command": ("python", "-m", "pytest"),
        "runtime_log": Path("logs/runtime.log"),
        "token": "abc123",
    }
    values.update(overrides)
    return WorkerSpec(**values)


class TestWorkerSpec:
    def test_command_layout(self):
        spec = _spec(tags=("slow", "~db"))

        assert spec.command(77) == [
            "python",
            "-m",
            "pytest",
            "--tag=slow",
            "--tag=~db",
            "--seed",
            "77",
            "-p",
            PLUGIN_MODULE,
            "--runtime-log",
            str(Path("logs/runtime.log")),
            "--testforge-events",
            "tests/test_a.py",
            "tests/test_b.py",
        ]

    def test_environment(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.delenv("PYTHONPATH", raising=False)

        env = _spec().environment()

        support = str(Path(testforge.__file__).resolve().parent.parent)
        assert env == {WORKER_ID_ENV: "2", OUTPUT_ID_ENV: "abc123", "PYTHONPATH": support}

    def test_environment_keeps_existing_pythonpath(self, monkeypatch: pytest.MonkeyPatch):
        monkeypatch.setenv("PYTHONPATH", "/opt/extra")

        python_path = _spec().environment()["PYTHONPATH"]

        assert python_path.endswith(f"{os.pathsep}/opt/extra")

    def test_tokens_are_unique(self):
        tokens = {new_token() for _ in range(100)}

        assert len(tokens) == 100
        assert all(len(token) == 32 for token in tokens)
        assert WorkerSpec(1, ("a",), ("x",), Path("r")).token != WorkerSpec(1, ("a",), ("x",), Path("r")).token


class TestLaunchWorker:
    def test_empty_group_only_enqueues_exit(self):
        bus = EventBus()

        handle = launch_worker(_spec(group=()), bus, stdout_sink=io.BytesIO(), stderr_sink=io.BytesIO())

        assert handle.process is None
        assert handle.threads == []
        assert bus.drain() == [WorkerExit(worker_id=2)]
        assert handle.join(timeout=0.1)
        assert handle.wait() is None

    def test_missing_executable_raises_spawn_error(self, tmp_path: Path):
        spec = _spec(worker_command=(str(tmp_path / "no-such-binary"),))

        with pytest.raises(SpawnError) as excinfo:
            launch_worker(spec, EventBus(), stdout_sink=io.BytesIO(), stderr_sink=io.BytesIO())

        assert excinfo.value.worker_id == 2
        assert "no-such-binary" in str(excinfo.value)

    @pytest.mark.timeout(30)
    def test_verbose_prints_env_and_command(self, tmp_path: Path):
        script = tmp_path / "quiet.py"
        script.write_text("")
        stderr = io.BytesIO()
        bus = EventBus()

        handle = launch_worker(
            _spec(worker_command=(sys.executable, str(script)), seed=5),
            bus,
            stdout_sink=io.BytesIO(),
            stderr_sink=stderr,
            verbose=True,
        )
        handle.wait(timeout=20)
        assert handle.join(timeout=20)

        line = stderr.getvalue().decode().splitlines()[0]
        assert line.startswith(f"Process 2: {WORKER_ID_ENV}=2 {OUTPUT_ID_ENV}=abc123 ")
        assert "--seed 5" in line
        assert line.endswith("--testforge-events tests/test_a.py tests/test_b.py")
        assert bus.drain() == [WorkerExit(worker_id=2)]

    @pytest.mark.timeout(30)
    def test_worker_sees_its_environment(self, tmp_path: Path):
        script = tmp_path / "echo_env.py"
        script.write_text(
            "import os, sys\n"
            # stderr is copied verbatim; stdout would be split at the token
            f"sys.stderr.write(os.environ['{WORKER_ID_ENV}'] + ':' + os.environ['{OUTPUT_ID_ENV}'] + '\\n')\n"
        )
        stderr = io.BytesIO()

        handle = launch_worker(
            _spec(worker_command=(sys.executable, str(script))),
            EventBus(),
            stdout_sink=io.BytesIO(),
            stderr_sink=stderr,
        )
        assert handle.wait(timeout=20) == 0
        assert handle.join(timeout=20)

        assert stderr.getvalue() == b"2:abc123\n"

    @pytest.mark.timeout(30)
    def test_cancel_kills_a_running_worker(self, tmp_path: Path):
        script = tmp_path / "sleepy.py"
        script.write_text("import time\ntime.sleep(120)\n")
        bus = EventBus()

        handle = launch_worker(
            _spec(worker_command=(sys.executable, str(script))),
            bus,
            stdout_sink=io.BytesIO(),
            stderr_sink=io.BytesIO(),
        )
        handle.cancel()

        assert handle.cancelled
        assert handle.wait(timeout=20) is not None
        assert handle.join(timeout=20)
        assert bus.drain() == [WorkerExit(worker_id=2)]


def test_cancel_without_process_is_a_noop():
    handle = WorkerHandle(spec=_spec(group=()))

    handle.cancel()

    assert handle.cancelled
