"""
Reconciliation of historical_bitcoin_calculations against curtailment_records.
"""

from .engine import ReconciliationEngine
from .progress import JsonlProgressStore, ProgressStore
from .reprocessor import Reprocessor, aggregate_volumes
from .retry import RETRYABLE_EXCEPTIONS, RetryPolicy
from .runner import BatchRunner
from .scanner import StatusScanner
from .scheduler import PriorityScheduler
from .verifier import Verifier, summarize

__all__ = [
    "ReconciliationEngine",
    "JsonlProgressStore",
    "ProgressStore",
    "Reprocessor",
    "aggregate_volumes",
    "RETRYABLE_EXCEPTIONS",
    "RetryPolicy",
    "BatchRunner",
    "StatusScanner",
    "PriorityScheduler",
    "Verifier",
    "summarize",
]
