"""Dispatch loop and completion monitor.

Slots are accounted by polling the process table: the worker may run behind
wrapper layers, so the authoritative answer to "how many are running" lives
outside this process. Admission and launch run strictly in sequence.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from procbatch.errors import LaunchError
from procbatch.scheduler.admission import should_process
from procbatch.scheduler.launcher import LaunchedWorker, Launcher
from procbatch.scheduler.master_log import MasterLog
from procbatch.scheduler.models import JobRecord, RunConfig, RunSummary, WorkItem
from procbatch.scheduler.process_table import (
    ProcessTable,
    kill_process_group,
    process_group_alive,
)

logger = logging.getLogger(__name__)


class Dispatcher:
    """Launch one worker per admitted item while keeping at most ``max_parallel`` alive."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        config: RunConfig,
        process_table: ProcessTable,
        launcher: Launcher,
        master_log: MasterLog,
        admit: Callable[[WorkItem, RunConfig], bool] = should_process,
        on_progress: Callable[[str], None] | None = None,
        stop_event: threading.Event | None = None,
    ) -> None:
        self.config = config
        self.process_table = process_table
        self.launcher = launcher
        self.master_log = master_log
        self._admit = admit
        self._on_progress = on_progress or (lambda _msg: None)
        self._stop = stop_event or threading.Event()
        self._spawned: list[LaunchedWorker] = []
        self._process_groups: list[int] = []
        self._next_sequence = 1

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def request_stop(self) -> None:
        self._stop.set()

    def run(self, items: Sequence[WorkItem]) -> RunSummary:
        """Dispatch every item, then wait until no worker is left running."""

        summary = self.dispatch(items)
        if not self.config.dry_run and not self.stop_requested:
            self.wait_for_completion()
        summary.interrupted = self.stop_requested
        return summary

    def dispatch(self, items: Sequence[WorkItem]) -> RunSummary:
        total = len(items)
        summary = RunSummary(total=total, master_log_path=self.master_log.path)
        for item in items:
            if self.stop_requested:
                break

            if not self._admit(item, self.config):
                summary.skipped += 1
                self._emit(f"skipped {item.source_path} (outputs already present)")
                continue

            if self.config.dry_run:
                summary.dispatched += 1
                self._emit(f"would dispatch {item.source_path}")
                continue

            if not self._wait_for_slot():
                break

            record = self._launch(item, total=total)
            if record is None:
                summary.launch_failed += 1
                continue

            summary.dispatched += 1
            summary.jobs.append(record)
            self.master_log.append(record, total=total)
            self._emit(
                f"dispatched {record.sequence_number}/{total} pid={record.pid} "
                f"{item.source_path}",
            )
        return summary

    def wait_for_completion(self) -> None:
        """Block until the process table reports no running worker."""

        while not self.stop_requested:
            active = self.active_count()
            if active == 0:
                return
            self._emit(f"waiting for {active} running job(s)")
            if self._stop.wait(self.config.poll_interval_watch):
                return

    def active_count(self) -> int:
        """Running workers as seen by the process table and by our own handles.

        The larger of the two is used: a worker started through a wrapper may
        not carry the signature yet right after launch.
        """

        own = self._reap()
        return max(self.process_table.count_workers(self.config.worker_signature), own)

    def kill_spawned(self) -> int:
        """Force-kill every process this dispatcher started, descendants included.

        Groups are tracked past the exit of the direct child, so a worker left
        behind by a wrapper that already returned is still found.
        """

        killed = 0
        for pgid in self._process_groups:
            killed += kill_process_group(pgid)
        self._process_groups = []
        self._reap()
        if killed:
            logger.warning("Killed %d spawned process(es) on shutdown", killed)
        return killed

    def _wait_for_slot(self) -> bool:
        while not self.stop_requested:
            if self.active_count() < self.config.max_parallel:
                return True
            if self._stop.wait(self.config.poll_interval_jobs):
                return False
        return False

    def _launch(self, item: WorkItem, *, total: int) -> JobRecord | None:
        sequence_number = self._next_sequence
        try:
            launched = self.launcher.launch(item, sequence_number=sequence_number, total=total)
        except LaunchError as error:
            logger.error("%s", error)
            self._on_progress(f"launch failed: {error}")
            return None

        self._next_sequence += 1
        self._spawned.append(launched)
        if launched.process_group is not None:
            self._process_groups.append(launched.process_group)
        return JobRecord(
            sequence_number=sequence_number,
            item=item,
            pid=launched.pid,
            started_at=launched.started_at,
            log_path=launched.log_path,
        )

    def _reap(self) -> int:
        # poll() also collects the exit status so finished children do not linger as zombies.
        self._spawned = [
            launched
            for launched in self._spawned
            if launched.process is not None and launched.process.poll() is None
        ]
        self._process_groups = [pgid for pgid in self._process_groups if process_group_alive(pgid)]
        return len(self._spawned)

    def _emit(self, msg: str) -> None:
        logger.info(msg)
        self._on_progress(msg)
