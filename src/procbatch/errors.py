"""Error types raised by procbatch."""

from __future__ import annotations


class ProcbatchError(RuntimeError):
    """Base error for orchestrator failures."""


class PreconditionError(ProcbatchError):
    """Startup check failed; the run must not start."""


class WorkerNotFoundError(PreconditionError):
    """Worker binary is not on the execution path."""

    def __init__(self, binary: str) -> None:
        super().__init__(f"Worker binary not found on PATH: {binary}")
        self.binary = binary


class AlreadyRunningError(PreconditionError):
    """Another orchestrator instance holds the per-user lock."""

    def __init__(self, lock_path: str, owner_pid: int | None) -> None:
        owner = f" (pid {owner_pid})" if owner_pid is not None else ""
        super().__init__(f"Another procbatch instance is already running{owner}: {lock_path}")
        self.lock_path = lock_path
        self.owner_pid = owner_pid


class WorkspaceNotResolvedError(PreconditionError):
    """Active workspace or configuration name is missing."""


class ConfigDirectoryMissingError(PreconditionError):
    """Configuration directory of the active configuration does not exist."""

    def __init__(self, path: str) -> None:
        super().__init__(f"Configuration directory does not exist: {path}")
        self.path = path


class LaunchError(ProcbatchError):
    """One worker could not be started."""
