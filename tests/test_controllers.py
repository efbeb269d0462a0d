from __future__ import annotations

import os
import signal

import allure
from conftest import read_pid_file

from procbatch.controllers import BatchCliController, BatchRunCommand
from procbatch.scheduler.instance_lock import InstanceLock
from procbatch.scheduler.process_table import pid_alive

pytestmark = [
    allure.epic("Batch Scheduling"),
    allure.feature("Shutdown"),
]

_HANGING_WORKER = 'sleep 30 &\necho $! > "$6.pid"\nwait\n'


def test_sigterm_kills_every_spawned_worker_and_releases_lock(
    procbatch_env,
    monkeypatch,
    tmp_path,
    write_workspace,
    write_worker_script,
) -> None:
    inputs_dir = write_workspace(procbatch_env, inputs=3)
    worker = write_worker_script(tmp_path / "bin" / "reduce", _HANGING_WORKER)
    monkeypatch.setenv("PROCBATCH_WORKER", str(worker))
    original_sigterm = signal.getsignal(signal.SIGTERM)
    progress: list[str] = []
    workers: list[int] = []

    def _on_progress(msg: str) -> None:
        progress.append(msg)
        if msg.startswith("dispatched 2/3 "):
            workers.extend(
                read_pid_file(inputs_dir / f"frame{index:02d}.fits.pid") for index in (1, 2)
            )
            os.kill(os.getpid(), signal.SIGTERM)

    result = BatchCliController().run(BatchRunCommand(jobs=2), on_progress=_on_progress)

    summary = result.summary
    assert summary is not None
    assert summary.interrupted is True
    assert summary.dispatched == 2
    assert result.lines[0].startswith("Batch finished (interrupted): total=3 dispatched=2")
    assert not any(msg.startswith("dispatched 3/3") for msg in progress)

    wrappers = [record.pid for record in summary.jobs]
    assert len(workers) == 2
    assert not any(pid_alive(pid) for pid in wrappers + workers)
    assert signal.getsignal(signal.SIGTERM) == original_sigterm
    with InstanceLock() as lock:
        assert lock.held


def test_stop_before_dispatch_skips_completion_wait(
    procbatch_env,
    monkeypatch,
    tmp_path,
    write_workspace,
    write_worker_script,
) -> None:
    write_workspace(procbatch_env, inputs=2)
    worker = write_worker_script(tmp_path / "bin" / "reduce", _HANGING_WORKER)
    monkeypatch.setenv("PROCBATCH_WORKER", str(worker))

    def _on_progress(msg: str) -> None:
        if msg.startswith("Batch "):
            os.kill(os.getpid(), signal.SIGINT)

    result = BatchCliController().run(BatchRunCommand(jobs=1), on_progress=_on_progress)

    assert result.summary is not None
    assert result.summary.interrupted is True
    assert result.summary.dispatched == 0
