"""Controller for the batch run CLI command."""

from __future__ import annotations

import logging
import shutil
import signal
import threading
from collections.abc import Callable, Iterator
from contextlib import ExitStack, contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from uuid import uuid4

from procbatch.config import Settings, resolve_parallelism
from procbatch.errors import WorkerNotFoundError
from procbatch.scheduler import (
    Dispatcher,
    InstanceLock,
    Launcher,
    MasterLog,
    ProcessTable,
    PsutilProcessTable,
    RunConfig,
    RunSummary,
    SubprocessLauncher,
    Watchdog,
)
from procbatch.workspace import WorkspaceLayout, enumerate_inputs

logger = logging.getLogger(__name__)

REJECTED_OPTIONS = {
    "-w": "workspace override is not supported yet; using the active workspace",
    "-c": "configuration override is not supported yet; using the active configuration",
    "-q": "quiet mode is always forced for workers",
    "-o": "option is not supported by the batch runner",
    "-i": "option is not supported by the batch runner",
    "-a": "option is not supported by the batch runner",
}


@dataclass(slots=True)
class BatchRunCommand:
    """CLI input for one batch run."""

    skip_secondary_output: bool = False
    force_reprocess: bool = False
    jobs: int | None = None
    niceness: int | None = None
    dry_run: bool = False
    rejected_options: tuple[str, ...] = ()
    unknown_options: tuple[str, ...] = ()
    home: Path | None = None


@dataclass(slots=True)
class BatchRunResult:
    """Run report to render in CLI."""

    lines: list[str]
    summary: RunSummary | None = None


class BatchCliController:
    """Checks preconditions, wires the scheduler components and runs a batch."""

    def __init__(
        self,
        *,
        process_table: ProcessTable | None = None,
        launcher_factory: Callable[[RunConfig, str], Launcher] | None = None,
        cpu_count: int | None = None,
        install_signal_handlers: bool = True,
    ) -> None:
        self._process_table = process_table
        self._launcher_factory = launcher_factory or (
            lambda config, batch_id: SubprocessLauncher(config, batch_id=batch_id)
        )
        self._cpu_count = cpu_count
        self._install_signal_handlers = install_signal_handlers

    def option_warnings(self, command: BatchRunCommand) -> list[str]:
        warnings = [
            f"Warning: ignoring {option}: {REJECTED_OPTIONS.get(option, 'unsupported option')}"
            for option in command.rejected_options
        ]
        warnings.extend(
            f"Warning: skipping unrecognized option {option!r}"
            for option in command.unknown_options
        )
        return warnings

    def build_config(self, command: BatchRunCommand, settings: Settings) -> RunConfig:
        """Resolve the immutable run configuration; raises on failed preconditions."""

        settings.validate()
        worker_path = shutil.which(settings.worker.binary)
        if worker_path is None:
            raise WorkerNotFoundError(settings.worker.binary)

        resolved = WorkspaceLayout(settings.home).resolve()
        max_parallel, niceness = resolve_parallelism(
            jobs_override=command.jobs,
            nice_override=command.niceness,
            settings=settings.scheduler,
            cpu_count=self._cpu_count,
        )
        config = RunConfig(
            max_parallel=max_parallel,
            niceness=niceness,
            force_reprocess=command.force_reprocess,
            skip_secondary_output=command.skip_secondary_output,
            max_duration_seconds=settings.scheduler.max_duration_seconds,
            poll_interval_jobs=settings.scheduler.poll_interval_jobs,
            poll_interval_watch=settings.scheduler.poll_interval_watch,
            workspace_name=resolved.workspace_name,
            config_name=resolved.config_name,
            config_path=resolved.config_path,
            worker_binary=Path(worker_path),
            worker_signature=Path(worker_path).name,
            output_dir=resolved.output_dir,
            log_dir=resolved.log_dir,
            dry_run=command.dry_run,
        )
        config.validate()
        return config

    def run(
        self,
        command: BatchRunCommand,
        *,
        on_progress: Callable[[str], None] | None = None,
    ) -> BatchRunResult:
        settings = Settings.from_env(home=command.home)
        progress = on_progress or (lambda _msg: None)
        layout = WorkspaceLayout(settings.home)
        config = self.build_config(command, settings)

        with ExitStack() as stack:
            stack.enter_context(InstanceLock())
            items = enumerate_inputs(
                layout.inputs_dir(config.workspace_name),
                settings.worker.input_glob,
            )

            batch_id = uuid4().hex[:8]
            started = datetime.now().astimezone()
            process_table = self._process_table or PsutilProcessTable()
            master_log = MasterLog(
                config.log_dir / f"master_{started.strftime('%Y%m%d-%H%M%S')}.log",
            )
            dispatcher = Dispatcher(
                config=config,
                process_table=process_table,
                launcher=self._launcher_factory(config, batch_id),
                master_log=master_log,
                on_progress=progress,
            )
            watchdog = Watchdog(
                process_table=process_table,
                signature=config.worker_signature,
                max_duration_seconds=config.max_duration_seconds,
                poll_interval_seconds=config.poll_interval_jobs,
                on_progress=progress,
            )

            stack.callback(dispatcher.kill_spawned)
            stack.callback(watchdog.stop)
            if self._install_signal_handlers:
                stack.enter_context(_signal_handlers(dispatcher.request_stop))
            progress(
                f"Batch {batch_id}: workspace={config.workspace_name} "
                f"config={config.config_name} inputs={len(items)} "
                f"max_parallel={config.max_parallel} niceness={config.niceness}",
            )

            if not config.dry_run:
                watchdog.start()
            summary = dispatcher.run(items)

        summary.killed = watchdog.killed_total
        return BatchRunResult(
            lines=_render_summary(summary, dry_run=config.dry_run),
            summary=summary,
        )


def _render_summary(summary: RunSummary, *, dry_run: bool) -> list[str]:
    verb = "would dispatch" if dry_run else "dispatched"
    lines = [
        "Batch finished"
        + (" (interrupted)" if summary.interrupted else "")
        + f": total={summary.total} {verb}={summary.dispatched} skipped={summary.skipped} "
        f"launch_failed={summary.launch_failed} killed={summary.killed}",
    ]
    if summary.dispatched and not dry_run and summary.master_log_path is not None:
        lines.append(f"Master log: {summary.master_log_path}")
    return lines


@contextmanager
def _signal_handlers(request_stop: Callable[[], None]) -> Iterator[None]:
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    original_sigint = signal.getsignal(signal.SIGINT)
    original_sigterm = signal.getsignal(signal.SIGTERM)

    def _handler(signum: int, _: object | None) -> None:
        try:
            name = signal.Signals(signum).name
        except ValueError:
            name = str(signum)
        logger.warning("Received %s, stopping and killing running workers", name)
        request_stop()

    signal.signal(signal.SIGINT, _handler)
    signal.signal(signal.SIGTERM, _handler)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, original_sigint)
        signal.signal(signal.SIGTERM, original_sigterm)
