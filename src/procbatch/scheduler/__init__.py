"""Scheduling, admission and watchdog engine."""

from procbatch.scheduler.admission import expected_outputs, outputs_complete, should_process
from procbatch.scheduler.dispatcher import Dispatcher
from procbatch.scheduler.instance_lock import InstanceLock
from procbatch.scheduler.launcher import LaunchedWorker, Launcher, SubprocessLauncher
from procbatch.scheduler.master_log import MasterLog
from procbatch.scheduler.models import JobRecord, RunConfig, RunSummary, WorkerProcess, WorkItem
from procbatch.scheduler.process_table import ProcessTable, PsutilProcessTable
from procbatch.scheduler.watchdog import Watchdog

__all__ = [
    "Dispatcher",
    "InstanceLock",
    "JobRecord",
    "LaunchedWorker",
    "Launcher",
    "MasterLog",
    "ProcessTable",
    "PsutilProcessTable",
    "RunConfig",
    "RunSummary",
    "SubprocessLauncher",
    "Watchdog",
    "WorkItem",
    "WorkerProcess",
    "expected_outputs",
    "outputs_complete",
    "should_process",
]
