"""Process-table view used for slot accounting and the watchdog."""

from __future__ import annotations

import logging
import os
import signal
from pathlib import PurePath
from typing import Protocol

import psutil

from procbatch.scheduler.models import WorkerProcess

logger = logging.getLogger(__name__)

_SCAN_ATTRS = ["pid", "name", "cmdline", "create_time", "username", "status"]
_INTERPRETERS = frozenset({"sh", "bash", "dash", "zsh", "ksh", "env", "python", "python3", "perl"})


class ProcessTable(Protocol):
    """Read-mostly view of the processes running on this machine."""

    def list_workers(self, signature: str) -> list[WorkerProcess]:
        """Return live processes whose name or command line carries ``signature``."""

    def count_workers(self, signature: str) -> int:
        """Return how many worker processes are currently running."""

    def kill(self, pid: int) -> bool:
        """Force-terminate ``pid``; return False if it was already gone."""


class PsutilProcessTable:
    """Process table backed by psutil, limited to the current user's processes.

    Workers are recognised by name rather than parentage: the worker may run
    as a grandchild behind wrapper scripts, so ``Popen`` handles alone do not
    see it.
    """

    def __init__(self, *, username: str | None = None, exclude_pids: set[int] | None = None) -> None:
        self.username = username or _current_username()
        self.exclude_pids = exclude_pids if exclude_pids is not None else {os.getpid()}

    def list_workers(self, signature: str) -> list[WorkerProcess]:
        workers: list[WorkerProcess] = []
        for proc in psutil.process_iter(_SCAN_ATTRS):
            info = proc.info
            if info["pid"] in self.exclude_pids:
                continue
            if info.get("status") == psutil.STATUS_ZOMBIE:
                continue
            if self.username is not None and info.get("username") != self.username:
                continue
            if not matches_signature(
                signature,
                name=info.get("name"),
                cmdline=info.get("cmdline"),
            ):
                continue
            workers.append(
                WorkerProcess(
                    pid=info["pid"],
                    name=info.get("name") or "",
                    create_time=float(info.get("create_time") or 0.0),
                ),
            )
        return workers

    def count_workers(self, signature: str) -> int:
        return len(self.list_workers(signature))

    def kill(self, pid: int) -> bool:
        try:
            psutil.Process(pid).kill()
        except psutil.NoSuchProcess:
            return False
        except psutil.AccessDenied:
            logger.warning("Not permitted to kill pid=%s", pid)
            return False
        return True


def matches_signature(
    signature: str,
    *,
    name: str | None,
    cmdline: list[str] | None,
) -> bool:
    """Match on the process name or the program the command line executes.

    Only the executable is considered, or the script an interpreter runs:
    ``tail -f ~/bin/reduce`` mentions the worker but is not one.
    """

    if not signature:
        return False
    if name == signature:
        return True
    return _program_name(cmdline or []) == signature


def _program_name(cmdline: list[str]) -> str | None:
    if not cmdline or not cmdline[0]:
        return None
    program = PurePath(cmdline[0]).name
    if program not in _INTERPRETERS:
        return program
    for part in cmdline[1:]:
        if part.startswith("-") or "=" in part:
            continue
        return PurePath(part).name
    return program


def kill_process_group(pgid: int) -> int:
    """SIGKILL every live process in group ``pgid``; return how many were signalled."""

    members: list[psutil.Process] = []
    for proc in psutil.process_iter(["pid", "status"]):
        if proc.info.get("status") == psutil.STATUS_ZOMBIE:
            continue
        try:
            if os.getpgid(proc.info["pid"]) == pgid:
                members.append(proc)
        except OSError:
            continue
    if not members:
        return 0

    try:
        os.killpg(pgid, signal.SIGKILL)
    except ProcessLookupError:
        return 0
    except PermissionError:
        logger.warning("Not permitted to kill process group %s", pgid)
        return 0
    psutil.wait_procs(members, timeout=2)
    return len(members)


def process_group_alive(pgid: int) -> bool:
    """True while group ``pgid`` has a member this user may signal."""

    try:
        os.killpg(pgid, 0)
    except (ProcessLookupError, PermissionError):
        return False
    return True


def pid_alive(pid: int) -> bool:
    try:
        return psutil.Process(pid).status() != psutil.STATUS_ZOMBIE
    except psutil.Error:
        return False


def _current_username() -> str | None:
    try:
        return psutil.Process().username()
    except psutil.Error:
        return None
