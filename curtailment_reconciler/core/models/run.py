"""
Result models returned by the Reprocessor, BatchRunner, Verifier and engine.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .partition import PartitionKey, PartitionState


class PartitionResult(BaseModel):
    """
    Outcome of reprocessing one partition.

    Attributes:
        key: Partition reprocessed
        started_at: When reprocessing began
        records_written: Derived rows written
        error: Failure message; None on success
        warnings: Non-fatal issues such as a fallback difficulty
        duration_seconds: Wall time spent on the partition
    """

    key: PartitionKey
    started_at: datetime
    records_written: int = Field(default=0, ge=0)
    error: str | None = None
    warnings: list[str] = Field(default_factory=list)
    duration_seconds: float = Field(default=0.0, ge=0.0)

    @property
    def succeeded(self) -> bool:
        return self.error is None


class RunReport(BaseModel):
    """
    What the BatchRunner did during a run.

    Attributes:
        run_id: Run identifier
        results: One result per attempted partition, in completion order
        batches_total: Batches handed to the runner
        batches_completed: Batches that ran to completion
        not_attempted: Partitions left in batches skipped after a stop request
        cancelled: Whether the run was stopped before the last batch
        progress_write_failures: Outcomes that could not be appended to the log
    """

    run_id: str
    results: list[PartitionResult] = Field(default_factory=list)
    batches_total: int = 0
    batches_completed: int = 0
    not_attempted: list[PartitionKey] = Field(default_factory=list)
    cancelled: bool = False
    progress_write_failures: int = 0

    @property
    def succeeded(self) -> list[PartitionResult]:
        return [r for r in self.results if r.succeeded]

    @property
    def failed(self) -> list[PartitionResult]:
        return [r for r in self.results if not r.succeeded]

    @property
    def records_written(self) -> int:
        return sum(r.records_written for r in self.results)


class OutstandingPartition(BaseModel):
    """A partition that is not Complete after verification."""

    key: PartitionKey
    state: PartitionState
    completion_pct: float
    source_count: int = 0
    derived_count: int = 0
    last_error: str | None = None


class VerificationSummary(BaseModel):
    """
    Completion summary produced by the Verifier.

    Attributes:
        scope: Human-readable scope description
        total: Partitions evaluated (Unknown included)
        complete / incomplete / missing / unknown: Partition counts by state
        source_groups: Sum of source counts over evaluable partitions
        derived_groups: Sum of min(derived, source) over evaluable partitions
        outstanding: Every partition that is not Complete
    """

    scope: str
    total: int = 0
    complete: int = 0
    incomplete: int = 0
    missing: int = 0
    unknown: int = 0
    source_groups: int = 0
    derived_groups: int = 0
    outstanding: list[OutstandingPartition] = Field(default_factory=list)

    @property
    def completion_pct(self) -> float:
        if self.source_groups == 0:
            return 100.0
        return self.derived_groups / self.source_groups * 100.0

    def is_successful(self, tolerance_pct: float = 0.0) -> bool:
        return self.completion_pct >= 100.0 - tolerance_pct

    def render(self) -> str:
        """Human-readable report."""
        lines = [
            "=" * 72,
            f"RECONCILIATION STATUS: {self.scope}",
            "=" * 72,
            f"Partitions:   {self.total}",
            f"  complete:   {self.complete}",
            f"  incomplete: {self.incomplete}",
            f"  missing:    {self.missing}",
            f"  unknown:    {self.unknown}",
            f"Derived rows: {self.derived_groups}/{self.source_groups}",
            f"Completion:   {self.completion_pct:.2f}%",
        ]
        if self.outstanding:
            lines.append("-" * 72)
            lines.append(f"{'Partition':<24} {'State':<11} {'Done':>8}  Last error")
            for item in self.outstanding:
                lines.append(
                    f"{str(item.key):<24} {item.state.value:<11} {item.completion_pct:>7.2f}%  "
                    f"{item.last_error or '-'}"
                )
        lines.append("=" * 72)
        return "\n".join(lines)


class RunResult(BaseModel):
    """What a reconcile invocation returns instead of printing and exiting."""

    run_id: str
    scope: str
    scheduled: int = 0
    skipped_already_succeeded: int = 0
    report: RunReport
    summary: VerificationSummary
    tolerance_pct: float = 0.0

    @property
    def successful(self) -> bool:
        return self.summary.is_successful(self.tolerance_pct)

    @property
    def exit_code(self) -> int:
        return 0 if self.successful else 1
