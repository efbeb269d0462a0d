"""Append-only record of dispatched jobs."""

from __future__ import annotations

from pathlib import Path

from procbatch.scheduler.models import JobRecord

TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_master_line(record: JobRecord, total: int) -> str:
    width = max(3, len(str(total)))
    return "\t".join(
        (
            f"{record.sequence_number:0{width}d}/{total:0{width}d}",
            record.started_at.strftime(TIMESTAMP_FORMAT),
            str(record.pid),
            str(record.item.source_path),
        ),
    )


class MasterLog:
    """One tab-separated line per dispatched (never skipped) item."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def append(self, record: JobRecord, *, total: int) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(format_master_line(record, total) + "\n")

    def read_lines(self) -> list[str]:
        if not self.path.exists():
            return []
        return self.path.read_text("utf-8").splitlines()
