"""Subprocess launcher for the external processing worker."""

from __future__ import annotations

import logging
import os
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol, TextIO

from procbatch.errors import LaunchError
from procbatch.scheduler.models import RunConfig, WorkItem

logger = logging.getLogger(__name__)

QUIET_FLAG = "-q"


@dataclass(slots=True)
class LaunchedWorker:
    """Handle of a freshly spawned worker."""

    pid: int
    log_path: Path
    started_at: datetime
    process: subprocess.Popen[bytes] | None = None
    process_group: int | None = None


class Launcher(Protocol):
    """Starts one worker for one work item without waiting for it."""

    def launch(self, item: WorkItem, *, sequence_number: int, total: int) -> LaunchedWorker:
        """Spawn the worker and return its handle."""


def build_worker_args(item: WorkItem, config: RunConfig) -> list[str]:
    return [
        str(config.worker_binary),
        *config.pass_through_flags(),
        QUIET_FLAG,
        "-w",
        config.workspace_name,
        "-c",
        config.config_name,
        str(item.source_path),
    ]


def job_log_path(log_dir: Path, item: WorkItem, started_at: datetime) -> Path:
    return log_dir / f"{started_at.strftime('%Y%m%d-%H%M%S')}_{item.base_name}.log"


class SubprocessLauncher:
    """Launch workers with ``subprocess.Popen``, output appended to a per-job log.

    Each worker leads its own session, so the worker and everything it forks
    share one process group that can be killed as a unit.
    """

    def __init__(self, config: RunConfig, *, batch_id: str) -> None:
        self.config = config
        self.batch_id = batch_id

    def launch(self, item: WorkItem, *, sequence_number: int, total: int) -> LaunchedWorker:
        started_at = datetime.now().astimezone()
        log_path = job_log_path(self.config.log_dir, item, started_at)
        run_args = build_worker_args(item, self.config)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            with log_path.open("a", encoding="utf-8") as log_handle:
                log_handle.write(
                    f"# procbatch batch {self.batch_id} job {sequence_number}/{total} "
                    f"{item.source_path}\n",
                )
                log_handle.flush()
                try:
                    process = _spawn(run_args, log_handle, niceness=self.config.niceness)
                except subprocess.SubprocessError as error:
                    logger.warning(
                        "Unable to set niceness %s for %s: %s; using default priority",
                        self.config.niceness,
                        item.source_path,
                        error,
                    )
                    process = _spawn(run_args, log_handle, niceness=0)
        except OSError as error:
            raise LaunchError(f"Failed to start worker for {item.source_path}: {error}") from error

        return LaunchedWorker(
            pid=process.pid,
            log_path=log_path,
            started_at=started_at,
            process=process,
            process_group=process.pid,
        )


def _spawn(run_args: list[str], log_handle: TextIO, *, niceness: int) -> subprocess.Popen[bytes]:
    return subprocess.Popen(  # noqa: S603
        run_args,
        stdin=subprocess.DEVNULL,
        stdout=log_handle,
        stderr=subprocess.STDOUT,
        start_new_session=True,
        preexec_fn=_priority_setter(niceness),  # noqa: PLW1509
    )


def _priority_setter(niceness: int) -> Callable[[], None] | None:
    # Runs in the child before exec, so processes the worker forks inherit it.
    if niceness == 0:
        return None

    def _set_priority() -> None:
        os.setpriority(os.PRIO_PROCESS, 0, niceness)

    return _set_priority
