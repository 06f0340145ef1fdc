"""
Partition identity and status models.

A partition is one (settlement date, miner model) unit of reconciliation work.
"""

from datetime import date
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, computed_field


class PartitionState(str, Enum):
    """Lifecycle classification of a partition, derived from row counts."""

    MISSING = "missing"
    INCOMPLETE = "incomplete"
    COMPLETE = "complete"
    UNKNOWN = "unknown"


class PartitionKey(BaseModel):
    """
    Identifies one unit of reconciliation work.

    Attributes:
        settlement_date: Settlement date of the source rows
        variant: Derivation variant (miner model), e.g. "S19J_PRO"
    """

    model_config = ConfigDict(frozen=True)

    settlement_date: date
    variant: str = Field(..., min_length=1, pattern=r"^[A-Za-z0-9_]+$")

    @property
    def sort_key(self) -> tuple[date, str]:
        return (self.settlement_date, self.variant)

    def __str__(self) -> str:
        return f"{self.settlement_date.isoformat()}/{self.variant}"


class PartitionStatus(BaseModel):
    """
    Point-in-time status of a partition.

    Recomputed on demand from counts, never persisted as ground truth.

    Attributes:
        key: The partition
        state: Missing, Incomplete, Complete or Unknown
        source_count: Countable (period, farm) groups in curtailment_records
        derived_count: Distinct (period, farm) rows in historical_bitcoin_calculations
        error: Why the partition could not be evaluated (Unknown only)
    """

    key: PartitionKey
    state: PartitionState
    source_count: int = Field(default=0, ge=0)
    derived_count: int = Field(default=0, ge=0)
    error: str | None = None

    @computed_field
    @property
    def completion_pct(self) -> float:
        if self.source_count == 0:
            return 0.0 if self.state == PartitionState.UNKNOWN else 100.0
        return min(self.derived_count / self.source_count, 1.0) * 100.0

    @property
    def needs_work(self) -> bool:
        return self.state in (PartitionState.MISSING, PartitionState.INCOMPLETE)

    @classmethod
    def classify(cls, key: PartitionKey, source_count: int, derived_count: int) -> "PartitionStatus":
        """
        Build a status from counts.

        Missing when nothing is derived, Incomplete when fewer derived rows
        than source groups exist, Complete otherwise.
        """
        if derived_count == 0:
            state = PartitionState.MISSING
        elif derived_count < source_count:
            state = PartitionState.INCOMPLETE
        else:
            state = PartitionState.COMPLETE
        return cls(key=key, state=state, source_count=source_count, derived_count=derived_count)

    @classmethod
    def unknown(cls, key: PartitionKey, error: str) -> "PartitionStatus":
        return cls(key=key, state=PartitionState.UNKNOWN, error=error)
