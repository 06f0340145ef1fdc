"""
Progress log of partition attempts.

The log is append-only: every attempt adds one ProgressEntry and nothing is
ever rewritten. It is an optimisation for resuming a run; the current state of
a partition is always recomputed from row counts by the scanner.
"""

import json
import os
import threading
from abc import ABC, abstractmethod
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from curtailment_reconciler.core.models import PartitionKey, ProgressEntry, RunOverview
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.utils.validation import validate_run_id

logger = get_logger()


class ProgressStore(ABC):
    """
    Durable, append-only record of partition outcomes per run.

    Implementations must make record() durable before returning, and must be
    safe to call from the worker threads of the batch runner.
    """

    @abstractmethod
    def record(self, entry: ProgressEntry) -> None:
        """Append one entry."""

    @abstractmethod
    def load_run(self, run_id: str) -> list[ProgressEntry]:
        """All entries of a run in the order they were recorded."""

    @abstractmethod
    def run_ids(self) -> list[str]:
        """Identifiers of every run in the log."""

    def succeeded_keys(self, run_id: str) -> set[PartitionKey]:
        return {entry.key for entry in self.load_run(run_id) if entry.succeeded}

    def already_succeeded(self, key: PartitionKey, run_id: str) -> bool:
        return key in self.succeeded_keys(run_id)

    def last_failures(self, run_id: str) -> dict[PartitionKey, str]:
        """
        Most recent failure message per partition within a run.

        Partitions whose latest attempt succeeded are not included.
        """
        latest: dict[PartitionKey, ProgressEntry] = {}
        for entry in self.load_run(run_id):
            latest[entry.key] = entry
        return {
            key: entry.message or "failed"
            for key, entry in latest.items()
            if not entry.succeeded
        }

    def list_runs(self) -> list[RunOverview]:
        """Overview of every run, oldest first."""
        overviews = []
        for run_id in self.run_ids():
            entries = self.load_run(run_id)
            if entries:
                overviews.append(RunOverview.from_entries(run_id, entries))
        return sorted(overviews, key=lambda o: o.started_at)


class JsonlProgressStore(ProgressStore):
    """
    Progress log kept as one JSON-lines file per run.

    Each entry is flushed and fsynced before record() returns, so a crash can
    lose at most the line being written. A truncated final line is skipped on
    load.

    Usage:
        store = JsonlProgressStore("logs/checkpoints")
        store.record(entry)
        done = store.succeeded_keys("reconcile_20250321T120000")
    """

    SUFFIX = ".jsonl"

    def __init__(self, directory: str | Path = "logs/checkpoints"):
        """
        Args:
            directory: Directory holding the per-run files (created if needed)
        """
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def _path(self, run_id: str) -> Path:
        return self.directory / f"{validate_run_id(run_id)}{self.SUFFIX}"

    def record(self, entry: ProgressEntry) -> None:
        line = json.dumps(entry.to_record(), sort_keys=True)
        path = self._path(entry.run_id)
        with self._lock:
            with open(path, "a", encoding="utf-8") as f:
                f.write(line + "\n")
                f.flush()
                os.fsync(f.fileno())

    def load_run(self, run_id: str) -> list[ProgressEntry]:
        path = self._path(run_id)
        if not path.exists():
            return []

        with self._lock:
            with open(path, encoding="utf-8") as f:
                lines = f.read().split("\n")

        # A file that ends cleanly has an empty string after the last newline
        last_index = len(lines) - 1
        entries = []
        for index, line in enumerate(lines):
            if not line.strip():
                continue
            try:
                entries.append(ProgressEntry.from_record(json.loads(line)))
            except (json.JSONDecodeError, KeyError, PydanticValidationError) as e:
                if index == last_index:
                    logger.warning(
                        "Skipping truncated progress entry",
                        extra={"run_id": run_id, "path": str(path), "line": index + 1},
                    )
                else:
                    logger.warning(
                        "Skipping unreadable progress entry",
                        extra={"run_id": run_id, "path": str(path), "line": index + 1, "error": str(e)},
                    )
        return entries

    def run_ids(self) -> list[str]:
        return sorted(p.stem for p in self.directory.glob(f"*{self.SUFFIX}"))
