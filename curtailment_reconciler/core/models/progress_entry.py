"""
ProgressEntry model: one append-only record of a partition attempt.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field

from .partition import PartitionKey


class Outcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


class ProgressEntry(BaseModel):
    """
    Outcome of one attempt to reprocess a partition within a run.

    Entries are write-once: a retry in a later run appends a new entry
    rather than updating this one.

    Attributes:
        run_id: Run the attempt belongs to
        key: Partition attempted
        attempted_at: When the Reprocessor started on the partition
        recorded_at: When the outcome was appended to the log
        outcome: Success or Failure
        records_written: Derived rows written (0 on failure)
        message: Error or warning text
    """

    run_id: str = Field(..., min_length=1)
    key: PartitionKey
    attempted_at: datetime
    recorded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    outcome: Outcome
    records_written: int = Field(default=0, ge=0)
    message: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    def to_record(self) -> dict:
        """Flat, JSON-serialisable form used by both progress backends."""
        return {
            "run_id": self.run_id,
            "settlement_date": self.key.settlement_date.isoformat(),
            "variant": self.key.variant,
            "attempted_at": self.attempted_at.isoformat(),
            "recorded_at": self.recorded_at.isoformat(),
            "outcome": self.outcome.value,
            "records_written": self.records_written,
            "message": self.message,
        }

    @classmethod
    def from_record(cls, record: dict) -> "ProgressEntry":
        return cls(
            run_id=record["run_id"],
            key=PartitionKey(settlement_date=record["settlement_date"], variant=record["variant"]),
            attempted_at=record["attempted_at"],
            recorded_at=record["recorded_at"],
            outcome=record["outcome"],
            records_written=record.get("records_written", 0),
            message=record.get("message"),
        )

    def to_log_line(self) -> str:
        """Render the entry as one line of the human-readable audit trail."""
        stamp = self.attempted_at.strftime("%Y-%m-%d %H:%M:%S")
        line = f"{stamp}  {str(self.key):<24} {self.outcome.value:<8} records={self.records_written}"
        if self.message:
            line += f"  {self.message}"
        return line


class RunOverview(BaseModel):
    """Aggregate view of one run in the progress log."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    succeeded: int = 0
    failed: int = 0
    records_written: int = 0

    @classmethod
    def from_entries(cls, run_id: str, entries: list[ProgressEntry]) -> "RunOverview":
        return cls(
            run_id=run_id,
            started_at=min(e.attempted_at for e in entries),
            finished_at=max(e.recorded_at for e in entries),
            succeeded=sum(1 for e in entries if e.succeeded),
            failed=sum(1 for e in entries if not e.succeeded),
            records_written=sum(e.records_written for e in entries),
        )
