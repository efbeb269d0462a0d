"""Background watchdog that kills workers running past the duration limit.

The worker binary occasionally hangs forever on some inputs. The watchdog is
a blunt safety net: it does not try to find out which input caused the hang,
it only frees the slot so the batch can finish.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable

from procbatch.scheduler.process_table import ProcessTable

logger = logging.getLogger(__name__)


class Watchdog:
    """Periodically scan the process table and SIGKILL overdue workers."""

    def __init__(  # noqa: PLR0913
        self,
        *,
        process_table: ProcessTable,
        signature: str,
        max_duration_seconds: int,
        poll_interval_seconds: float,
        clock: Callable[[], float] = time.time,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self.process_table = process_table
        self.signature = signature
        self.max_duration_seconds = max_duration_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.killed_total = 0
        self._clock = clock
        self._on_progress = on_progress or (lambda _msg: None)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()

    def scan_once(self) -> int:
        """Run one scan cycle and return how many workers were killed."""

        now = self._clock()
        killed = 0
        for worker in self.process_table.list_workers(self.signature):
            elapsed = worker.elapsed_seconds(now)
            if elapsed <= self.max_duration_seconds:
                continue
            if not self.process_table.kill(worker.pid):
                continue
            killed += 1
            self._emit(
                f"watchdog: killed pid={worker.pid} elapsed={int(elapsed)}s "
                f"(limit {self.max_duration_seconds}s)",
            )
        if killed:
            with self._lock:
                self.killed_total += killed
            logger.info("Watchdog cycle killed %d worker(s)", killed)
        return killed

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._loop,
            daemon=True,
            name="procbatch-watchdog",
        )
        self._thread.start()
        logger.info("Watchdog started (limit %ss)", self.max_duration_seconds)

    def stop(self) -> None:
        if self._thread is None:
            return
        self._stop.set()
        self._thread.join(timeout=max(5.0, self.poll_interval_seconds))
        self._thread = None
        logger.info("Watchdog stopped")

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.scan_once()
            except Exception:  # noqa: BLE001
                logger.exception("Watchdog scan failed")
            self._stop.wait(self.poll_interval_seconds)

    def _emit(self, msg: str) -> None:
        logger.info(msg)
        self._on_progress(msg)
