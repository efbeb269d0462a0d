"""Per-user single-instance guard backed by an OS-level file lock."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from types import TracebackType

from filelock import FileLock, Timeout

from procbatch.errors import AlreadyRunningError
from procbatch.scheduler.process_table import pid_alive

LOCK_FILE_NAME = "procbatch.lock"
PID_FILE_NAME = "procbatch.pid"


def user_state_dir() -> Path:
    """Per-user directory for the lock, independent of ``PROCBATCH_HOME``.

    ``$XDG_RUNTIME_DIR/procbatch`` when the session provides one, otherwise
    ``<tmp>/procbatch-<uid>``.
    """

    runtime_dir = os.getenv("XDG_RUNTIME_DIR", "").strip()
    if runtime_dir:
        return Path(runtime_dir) / "procbatch"
    return Path(tempfile.gettempdir()) / f"procbatch-{os.getuid()}"


class InstanceLock:
    """Exclusive lock held for the whole orchestrator run.

    The kernel drops the lock when the owner dies, so a crashed run never
    blocks the next one. The pid file only serves error reporting.
    """

    def __init__(self, state_dir: Path | None = None) -> None:
        self.state_dir = state_dir if state_dir is not None else user_state_dir()
        self.lock_path = self.state_dir / LOCK_FILE_NAME
        self.pid_path = self.state_dir / PID_FILE_NAME
        self._lock: FileLock | None = None

    def acquire(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        lock = FileLock(str(self.lock_path), timeout=0)
        try:
            lock.acquire()
        except Timeout as error:
            raise AlreadyRunningError(str(self.lock_path), self._live_owner_pid()) from error
        self._lock = lock
        self.pid_path.write_text(f"{os.getpid()}\n", "utf-8")

    def release(self) -> None:
        if self._lock is None:
            return
        try:
            if self._owner_pid() == os.getpid():
                self.pid_path.unlink(missing_ok=True)
        finally:
            self._lock.release()
            self._lock = None

    @property
    def held(self) -> bool:
        return self._lock is not None and self._lock.is_locked

    def __enter__(self) -> InstanceLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _owner_pid(self) -> int | None:
        try:
            return int(self.pid_path.read_text("utf-8").strip())
        except (OSError, ValueError):
            return None

    def _live_owner_pid(self) -> int | None:
        pid = self._owner_pid()
        if pid is None or not pid_alive(pid):
            return None
        return pid
