"""Runtime configuration for the batch orchestrator."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

LOW_CPU_NICENESS = 10


@dataclass(slots=True)
class WorkerSettings:
    """External worker binary settings."""

    binary: str = "reduce"
    input_glob: str = "*.fits"


@dataclass(slots=True)
class SchedulerSettings:
    """Dispatch, watchdog and completion-wait settings.

    ``max_parallel`` and ``niceness`` are ``None`` when not set in the
    environment; the effective values are then derived from the CPU count.
    """

    max_parallel: int | None = None
    niceness: int | None = None
    max_duration_seconds: int = 900
    poll_interval_jobs: float = 10.0
    poll_interval_watch: float = 60.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    home: Path = field(default_factory=lambda: Path.home() / ".procbatch")
    worker: WorkerSettings = field(default_factory=WorkerSettings)
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, home: Path | None = None) -> Settings:
        """Load settings from ``PROCBATCH_*`` environment variables."""

        home_raw = os.getenv("PROCBATCH_HOME", "").strip()
        return cls(
            home=home or (Path(home_raw).expanduser() if home_raw else Path.home() / ".procbatch"),
            worker=WorkerSettings(
                binary=os.getenv("PROCBATCH_WORKER", "reduce").strip() or "reduce",
                input_glob=os.getenv("PROCBATCH_INPUT_GLOB", "*.fits").strip() or "*.fits",
            ),
            scheduler=SchedulerSettings(
                max_parallel=_env_optional_int("PROCBATCH_MAX_PARALLEL"),
                niceness=_env_optional_int("PROCBATCH_NICE"),
                max_duration_seconds=int(os.getenv("PROCBATCH_MAX_DURATION_SECONDS", "900")),
                poll_interval_jobs=float(os.getenv("PROCBATCH_POLL_JOBS_SECONDS", "10")),
                poll_interval_watch=float(os.getenv("PROCBATCH_POLL_WATCH_SECONDS", "60")),
            ),
            log_level=os.getenv("PROCBATCH_LOG_LEVEL", "WARNING").strip().upper() or "WARNING",
        )

    def validate(self) -> None:
        """Raise configuration error on values the scheduler cannot work with."""

        if self.scheduler.max_parallel is not None and self.scheduler.max_parallel <= 0:
            raise ValueError("PROCBATCH_MAX_PARALLEL must be > 0.")
        if self.scheduler.max_duration_seconds <= 0:
            raise ValueError("PROCBATCH_MAX_DURATION_SECONDS must be > 0.")
        if self.scheduler.poll_interval_jobs <= 0:
            raise ValueError("PROCBATCH_POLL_JOBS_SECONDS must be > 0.")
        if self.scheduler.poll_interval_watch <= 0:
            raise ValueError("PROCBATCH_POLL_WATCH_SECONDS must be > 0.")


def default_parallelism(cpu_count: int | None = None) -> tuple[int, int]:
    """Return ``(max_parallel, niceness)`` derived from the logical CPU count.

    One core is left free on machines with more than two CPUs. Smaller
    machines use every core but run the workers with a lower priority.
    """

    cpus = cpu_count if cpu_count is not None else (os.cpu_count() or 1)
    cpus = max(1, cpus)
    if cpus > 2:
        return cpus - 1, 0
    return cpus, LOW_CPU_NICENESS


def resolve_parallelism(
    *,
    jobs_override: int | None,
    nice_override: int | None,
    settings: SchedulerSettings,
    cpu_count: int | None = None,
) -> tuple[int, int]:
    """Apply CLI override > environment > computed default for both values."""

    default_jobs, default_nice = default_parallelism(cpu_count)
    if jobs_override is not None:
        jobs = jobs_override
    elif settings.max_parallel is not None:
        jobs = settings.max_parallel
    else:
        jobs = default_jobs

    if nice_override is not None:
        niceness = nice_override
    elif settings.niceness is not None:
        niceness = settings.niceness
    else:
        niceness = default_nice
    return jobs, niceness


def _env_optional_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error
