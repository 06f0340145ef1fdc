"""
Core data models for the reconciliation engine.

All models use Pydantic for runtime validation and type safety.
"""

from .partition import PartitionKey, PartitionState, PartitionStatus
from .progress_entry import Outcome, ProgressEntry, RunOverview
from .records import DerivedRecord, SourceRecord
from .run import (
    OutstandingPartition,
    PartitionResult,
    RunReport,
    RunResult,
    VerificationSummary,
)
from .scope import ReconcileScope

__all__ = [
    "PartitionKey",
    "PartitionState",
    "PartitionStatus",
    "ReconcileScope",
    "SourceRecord",
    "DerivedRecord",
    "Outcome",
    "ProgressEntry",
    "RunOverview",
    "PartitionResult",
    "RunReport",
    "OutstandingPartition",
    "VerificationSummary",
    "RunResult",
]
