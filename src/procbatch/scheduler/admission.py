"""Admission control: decide whether an input still needs processing."""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from procbatch.scheduler.models import RunConfig, WorkItem

PRIMARY_TAG = "red_"
SECONDARY_TAG = "aux_"


def expected_outputs(item: WorkItem, config: RunConfig) -> list[Path]:
    """Return the output files the worker must produce for ``item``.

    The secondary output is only required when the worker is not told to
    skip it.
    """

    stem = f"{item.base_name}_{config.config_name}{item.extension}"
    outputs = [config.output_dir / f"{PRIMARY_TAG}{stem}"]
    if not config.skip_secondary_output:
        outputs.append(config.output_dir / f"{SECONDARY_TAG}{stem}")
    return outputs


def outputs_complete(paths: Iterable[Path]) -> bool:
    """True when every path exists as a non-empty regular file."""

    for path in paths:
        try:
            if not path.is_file() or path.stat().st_size == 0:
                return False
        except OSError:
            return False
    return True


def should_process(item: WorkItem, config: RunConfig) -> bool:
    if config.force_reprocess:
        return True
    return not outputs_complete(expected_outputs(item, config))
