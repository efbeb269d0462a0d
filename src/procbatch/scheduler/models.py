"""Data model shared by the scheduler components."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path


@dataclass(frozen=True, slots=True)
class WorkItem:
    """One input file submitted for processing."""

    source_path: Path

    @classmethod
    def from_path(cls, path: Path) -> WorkItem:
        return cls(source_path=path.expanduser().resolve())

    @property
    def base_name(self) -> str:
        return self.source_path.stem

    @property
    def extension(self) -> str:
        return self.source_path.suffix


@dataclass(frozen=True, slots=True)
class RunConfig:
    """Immutable parameters of one orchestrator run.

    Built once at startup from CLI options, environment and workspace state;
    never re-read while the run is in progress.
    """

    max_parallel: int
    niceness: int
    force_reprocess: bool
    skip_secondary_output: bool
    max_duration_seconds: int
    poll_interval_jobs: float
    poll_interval_watch: float
    workspace_name: str
    config_name: str
    config_path: Path
    worker_binary: Path
    worker_signature: str
    output_dir: Path
    log_dir: Path
    dry_run: bool = False

    def validate(self) -> None:
        if self.max_parallel <= 0:
            raise ValueError(f"max_parallel must be > 0, got {self.max_parallel}.")
        if self.max_duration_seconds <= 0:
            raise ValueError(
                f"max_duration_seconds must be > 0, got {self.max_duration_seconds}.",
            )
        if self.poll_interval_jobs <= 0 or self.poll_interval_watch <= 0:
            raise ValueError("Poll intervals must be > 0.")

    def pass_through_flags(self) -> list[str]:
        """Run flags forwarded to every worker invocation."""

        return ["-s"] if self.skip_secondary_output else []


@dataclass(frozen=True, slots=True)
class JobRecord:
    """Bookkeeping entry for one dispatched worker."""

    sequence_number: int
    item: WorkItem
    pid: int
    started_at: datetime
    log_path: Path


@dataclass(frozen=True, slots=True)
class WorkerProcess:
    """Worker process observed in the process table."""

    pid: int
    name: str
    create_time: float

    def elapsed_seconds(self, now: float) -> float:
        return max(0.0, now - self.create_time)


@dataclass(slots=True)
class RunSummary:
    """Aggregate counters for CLI reporting."""

    total: int = 0
    dispatched: int = 0
    skipped: int = 0
    launch_failed: int = 0
    killed: int = 0
    interrupted: bool = False
    master_log_path: Path | None = None
    jobs: list[JobRecord] = field(default_factory=list)
