from __future__ import annotations

import allure
import pytest

from procbatch.errors import ConfigDirectoryMissingError, WorkspaceNotResolvedError
from procbatch.workspace import WorkspaceLayout, enumerate_inputs

pytestmark = [
    allure.epic("Batch Scheduling"),
    allure.feature("Workspace Resolution"),
]


def test_resolve_reads_active_workspace_and_configuration(tmp_path, write_workspace) -> None:
    home = tmp_path / "home"
    write_workspace(home, workspace="survey", config="deep")

    resolved = WorkspaceLayout(home).resolve()

    assert resolved.workspace_name == "survey"
    assert resolved.config_name == "deep"
    assert resolved.config_path == home / "workspaces" / "survey" / "configs" / "deep"
    assert resolved.output_dir == home / "workspaces" / "survey" / "outputs" / "deep"
    assert resolved.log_dir == home / "workspaces" / "survey" / "logs"


def test_resolve_without_workspace_fails(tmp_path) -> None:
    with pytest.raises(WorkspaceNotResolvedError, match="No active workspace"):
        WorkspaceLayout(tmp_path / "empty").resolve()


def test_resolve_with_blank_configuration_fails(tmp_path, write_workspace) -> None:
    home = tmp_path / "home"
    write_workspace(home)
    (home / "workspaces" / "survey" / "current_config").write_text("  \n", "utf-8")

    with pytest.raises(WorkspaceNotResolvedError, match="No active configuration"):
        WorkspaceLayout(home).resolve()


def test_resolve_with_missing_config_directory_fails(tmp_path, write_workspace) -> None:
    home = tmp_path / "home"
    write_workspace(home, create_config_dir=False)

    with pytest.raises(ConfigDirectoryMissingError, match="does not exist"):
        WorkspaceLayout(home).resolve()


def test_enumerate_inputs_is_sorted_and_filtered(tmp_path) -> None:
    inputs = tmp_path / "inputs"
    inputs.mkdir()
    for name in ("b.fits", "a.fits", "notes.txt"):
        (inputs / name).write_bytes(b"x")
    (inputs / "c.fits").mkdir()

    items = enumerate_inputs(inputs, "*.fits")

    assert [item.source_path.name for item in items] == ["a.fits", "b.fits"]
    assert all(item.source_path.is_absolute() for item in items)
    assert items[0].base_name == "a"
    assert items[0].extension == ".fits"


def test_enumerate_inputs_of_missing_directory_is_empty(tmp_path) -> None:
    assert enumerate_inputs(tmp_path / "nope", "*.fits") == []
