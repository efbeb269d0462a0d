"""Workspace layout: active workspace/configuration and input enumeration.

Layout under the procbatch home directory::

    current_workspace                      active workspace name
    workspaces/<ws>/current_config         active configuration name
    workspaces/<ws>/configs/<cfg>/         configuration directory
    workspaces/<ws>/inputs/                input files
    workspaces/<ws>/outputs/<cfg>/         worker outputs
    workspaces/<ws>/logs/                  per-job logs and master logs
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from procbatch.errors import ConfigDirectoryMissingError, WorkspaceNotResolvedError
from procbatch.scheduler.models import WorkItem


@dataclass(frozen=True, slots=True)
class ResolvedWorkspace:
    """Workspace state captured once at startup."""

    workspace_name: str
    config_name: str
    config_path: Path
    inputs_dir: Path
    output_dir: Path
    log_dir: Path


class WorkspaceLayout:
    """Reads workspace state files below ``home``."""

    def __init__(self, home: Path) -> None:
        self.home = home

    def workspace_dir(self, workspace: str) -> Path:
        return self.home / "workspaces" / workspace

    def current_workspace(self) -> str | None:
        return _read_name(self.home / "current_workspace")

    def current_config(self, workspace: str) -> str | None:
        return _read_name(self.workspace_dir(workspace) / "current_config")

    def config_path(self, workspace: str, config: str) -> Path:
        return self.workspace_dir(workspace) / "configs" / config

    def output_dir(self, workspace: str, config: str) -> Path:
        return self.workspace_dir(workspace) / "outputs" / config

    def log_dir(self, workspace: str) -> Path:
        return self.workspace_dir(workspace) / "logs"

    def inputs_dir(self, workspace: str) -> Path:
        return self.workspace_dir(workspace) / "inputs"

    def resolve(self) -> ResolvedWorkspace:
        """Resolve the active workspace and configuration, or raise a precondition error."""

        workspace = self.current_workspace()
        if not workspace:
            raise WorkspaceNotResolvedError(
                f"No active workspace. Write its name to {self.home / 'current_workspace'}.",
            )
        config = self.current_config(workspace)
        if not config:
            raise WorkspaceNotResolvedError(
                f"No active configuration for workspace {workspace!r}. "
                f"Write its name to {self.workspace_dir(workspace) / 'current_config'}.",
            )
        config_path = self.config_path(workspace, config)
        if not config_path.is_dir():
            raise ConfigDirectoryMissingError(str(config_path))
        return ResolvedWorkspace(
            workspace_name=workspace,
            config_name=config,
            config_path=config_path,
            inputs_dir=self.inputs_dir(workspace),
            output_dir=self.output_dir(workspace, config),
            log_dir=self.log_dir(workspace),
        )


def enumerate_inputs(inputs_dir: Path, pattern: str) -> list[WorkItem]:
    """Snapshot matching input files, ordered by file name."""

    if not inputs_dir.is_dir():
        return []
    paths = sorted(path for path in inputs_dir.glob(pattern) if path.is_file())
    return [WorkItem.from_path(path) for path in paths]


def _read_name(path: Path) -> str | None:
    try:
        value = path.read_text("utf-8").strip()
    except FileNotFoundError:
        return None
    return value or None
