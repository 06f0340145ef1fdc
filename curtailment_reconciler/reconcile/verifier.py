"""
Completion verification.
"""

from curtailment_reconciler.core.models import (
    OutstandingPartition,
    PartitionKey,
    PartitionState,
    PartitionStatus,
    ReconcileScope,
    VerificationSummary,
)
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.observability.metrics import record_verification

from .progress import ProgressStore
from .scanner import StatusScanner

logger = get_logger()


def summarize(
    statuses: list[PartitionStatus],
    scope_description: str,
    failures: dict[PartitionKey, str] | None = None,
) -> VerificationSummary:
    """
    Build a VerificationSummary from scanner output.

    Completion is weighted by source groups: a nearly-empty partition does
    not count as much as a full day. Unknown partitions are listed as
    outstanding but excluded from the percentage.

    Args:
        statuses: Scanner output
        scope_description: Label for the report
        failures: Last failure message per partition from the progress log
    """
    failures = failures or {}
    summary = VerificationSummary(scope=scope_description, total=len(statuses))

    for status in statuses:
        if status.state == PartitionState.COMPLETE:
            summary.complete += 1
        elif status.state == PartitionState.INCOMPLETE:
            summary.incomplete += 1
        elif status.state == PartitionState.MISSING:
            summary.missing += 1
        else:
            summary.unknown += 1

        if status.state != PartitionState.UNKNOWN:
            summary.source_groups += status.source_count
            summary.derived_groups += min(status.derived_count, status.source_count)

        if status.state != PartitionState.COMPLETE:
            summary.outstanding.append(
                OutstandingPartition(
                    key=status.key,
                    state=status.state,
                    completion_pct=status.completion_pct,
                    source_count=status.source_count,
                    derived_count=status.derived_count,
                    last_error=failures.get(status.key) or status.error,
                )
            )

    return summary


class Verifier:
    """
    Re-scans a scope and reports how complete the derived data is.

    Usage:
        verifier = Verifier(scanner, progress_store)
        summary = verifier.verify(ReconcileScope.single(day), run_id="reconcile_20250321T120000")
        print(summary.render())
    """

    def __init__(self, scanner: StatusScanner, progress_store: ProgressStore | None = None):
        self.scanner = scanner
        self.progress_store = progress_store

    def _failures(self, run_id: str | None) -> dict[PartitionKey, str]:
        if run_id is None or self.progress_store is None:
            return {}
        try:
            return self.progress_store.last_failures(run_id)
        except Exception as e:
            logger.warning(
                "Could not read failure messages from the progress log",
                extra={"run_id": run_id, "error": str(e)},
            )
            return {}

    def verify(self, scope: ReconcileScope, run_id: str | None = None) -> VerificationSummary:
        """
        Scan the scope and summarise completion.

        Args:
            scope: Scope to verify
            run_id: Run whose failure messages annotate outstanding partitions

        Raises:
            ScanError: If the dates of an unbounded scope cannot be listed
        """
        statuses = self.scanner.scan(scope)
        summary = summarize(statuses, scope.describe(), self._failures(run_id))
        record_verification(
            scope.describe(), summary.completion_pct, summary.missing, summary.incomplete, summary.unknown
        )
        logger.info(
            "Verification complete",
            extra={
                "scope": summary.scope,
                "run_id": run_id,
                "partitions": summary.total,
                "complete": summary.complete,
                "outstanding": len(summary.outstanding),
                "completion_pct": round(summary.completion_pct, 2),
            },
        )
        return summary
