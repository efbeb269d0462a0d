"""Shared test fixtures."""

from __future__ import annotations

import itertools
import stat
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

import pytest

from procbatch.errors import LaunchError
from procbatch.scheduler.admission import expected_outputs
from procbatch.scheduler.launcher import LaunchedWorker
from procbatch.scheduler.models import RunConfig, WorkerProcess, WorkItem


@dataclass(slots=True)
class _FakeProcess:
    create_time: float
    polls_left: int


class FakeProcessTable:
    """In-memory process table where each worker lives for a fixed number of polls.

    Every ``count_workers`` call is one poll: it ages all workers by one tick
    before counting, which stands in for wall-clock time passing.
    """

    def __init__(self) -> None:
        self.processes: dict[int, _FakeProcess] = {}
        self.killed: list[int] = []
        self.max_active_seen = 0
        self.count_calls = 0
        self._lock = threading.Lock()

    def add(self, pid: int, *, create_time: float = 0.0, polls: int = 2) -> None:
        with self._lock:
            self.processes[pid] = _FakeProcess(create_time=create_time, polls_left=polls)
            self.max_active_seen = max(self.max_active_seen, len(self.processes))

    def list_workers(self, signature: str) -> list[WorkerProcess]:
        with self._lock:
            return [
                WorkerProcess(pid=pid, name=signature, create_time=proc.create_time)
                for pid, proc in self.processes.items()
            ]

    def count_workers(self, signature: str) -> int:
        with self._lock:
            self.count_calls += 1
            for pid, proc in list(self.processes.items()):
                proc.polls_left -= 1
                if proc.polls_left <= 0:
                    del self.processes[pid]
            return len(self.processes)

    def kill(self, pid: int) -> bool:
        with self._lock:
            if self.processes.pop(pid, None) is None:
                return False
            self.killed.append(pid)
            return True


class FakeLauncher:
    """Registers a fake worker in the table instead of spawning a process."""

    def __init__(
        self,
        table: FakeProcessTable,
        *,
        polls: int = 2,
        fail_for: set[str] | None = None,
        produce_outputs_for: RunConfig | None = None,
    ) -> None:
        self.table = table
        self.polls = polls
        self.fail_for = fail_for or set()
        self.produce_outputs_for = produce_outputs_for
        self.launched: list[tuple[int, WorkItem]] = []
        self._pids = itertools.count(1001)

    def launch(self, item: WorkItem, *, sequence_number: int, total: int) -> LaunchedWorker:
        if item.base_name in self.fail_for:
            raise LaunchError(f"Failed to start worker for {item.source_path}: boom")
        pid = next(self._pids)
        self.table.add(pid, polls=self.polls)
        self.launched.append((sequence_number, item))
        if self.produce_outputs_for is not None:
            for path in expected_outputs(item, self.produce_outputs_for):
                path.parent.mkdir(parents=True, exist_ok=True)
                path.write_text("done", "utf-8")
        return LaunchedWorker(
            pid=pid,
            log_path=Path(f"/tmp/{item.base_name}.log"),
            started_at=datetime(2026, 3, 1, 12, 0, sequence_number).astimezone(),
        )


@pytest.fixture()
def make_config(tmp_path: Path) -> Callable[..., RunConfig]:
    def _make(**overrides: object) -> RunConfig:
        values: dict[str, object] = {
            "max_parallel": 2,
            "niceness": 0,
            "force_reprocess": False,
            "skip_secondary_output": False,
            "max_duration_seconds": 900,
            "poll_interval_jobs": 0.001,
            "poll_interval_watch": 0.001,
            "workspace_name": "survey",
            "config_name": "default",
            "config_path": tmp_path / "configs" / "default",
            "worker_binary": tmp_path / "bin" / "reduce",
            "worker_signature": "reduce",
            "output_dir": tmp_path / "outputs",
            "log_dir": tmp_path / "logs",
        }
        values.update(overrides)
        return RunConfig(**values)  # type: ignore[arg-type]

    return _make


@pytest.fixture()
def make_items(tmp_path: Path) -> Callable[[int], list[WorkItem]]:
    def _make(count: int) -> list[WorkItem]:
        inputs = tmp_path / "inputs"
        inputs.mkdir(parents=True, exist_ok=True)
        items = []
        for index in range(1, count + 1):
            path = inputs / f"frame{index:02d}.fits"
            path.write_bytes(b"raw")
            items.append(WorkItem.from_path(path))
        return items

    return _make


def _write_workspace(
    home: Path,
    *,
    workspace: str = "survey",
    config: str = "default",
    inputs: int = 3,
    create_config_dir: bool = True,
) -> Path:
    """Create the on-disk workspace layout and return the inputs directory."""

    home.mkdir(parents=True, exist_ok=True)
    (home / "current_workspace").write_text(f"{workspace}\n", "utf-8")
    ws_dir = home / "workspaces" / workspace
    ws_dir.mkdir(parents=True, exist_ok=True)
    (ws_dir / "current_config").write_text(f"{config}\n", "utf-8")
    if create_config_dir:
        (ws_dir / "configs" / config).mkdir(parents=True, exist_ok=True)
    inputs_dir = ws_dir / "inputs"
    inputs_dir.mkdir(parents=True, exist_ok=True)
    for index in range(1, inputs + 1):
        (inputs_dir / f"frame{index:02d}.fits").write_bytes(b"raw")
    return inputs_dir


def _write_worker_script(path: Path, body: str = "sleep 0.2\n") -> Path:
    """Write an executable shell worker; its path shows up in the process command line."""

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!/bin/sh\necho \"worker args: $*\"\n{body}", "utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


def read_pid_file(path: Path, timeout: float = 5.0) -> int:
    """Wait for a worker script to record a pid in ``path`` and return it."""

    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists() and path.read_text("utf-8").strip():
            return int(path.read_text("utf-8"))
        time.sleep(0.02)
    raise AssertionError(f"no pid written to {path}")


@pytest.fixture()
def procbatch_env(tmp_path: Path, monkeypatch) -> Path:
    """Point procbatch at a temporary home with fast poll intervals."""

    home = tmp_path / "home"
    monkeypatch.setenv("PROCBATCH_HOME", str(home))
    monkeypatch.setenv("XDG_RUNTIME_DIR", str(tmp_path / "runtime"))
    monkeypatch.setenv("PROCBATCH_POLL_JOBS_SECONDS", "0.05")
    monkeypatch.setenv("PROCBATCH_POLL_WATCH_SECONDS", "0.05")
    for name in ("PROCBATCH_MAX_PARALLEL", "PROCBATCH_NICE", "PROCBATCH_INPUT_GLOB"):
        monkeypatch.delenv(name, raising=False)
    return home


@pytest.fixture()
def write_workspace() -> Callable[..., Path]:
    return _write_workspace


@pytest.fixture()
def write_worker_script() -> Callable[..., Path]:
    return _write_worker_script
