"""
Unit tests for completion verification.
"""

from datetime import date, datetime, timezone

import pytest

from conftest import SCENARIO_DATE, make_source_records
from curtailment_reconciler.core.models import (
    Outcome,
    PartitionKey,
    PartitionState,
    PartitionStatus,
    ProgressEntry,
    ReconcileScope,
)
from curtailment_reconciler.observability.metrics import REGISTRY
from curtailment_reconciler.reconcile import StatusScanner, Verifier, summarize

S19 = PartitionKey(settlement_date=SCENARIO_DATE, variant="S19J_PRO")
S9 = PartitionKey(settlement_date=SCENARIO_DATE, variant="S9")
M20 = PartitionKey(settlement_date=SCENARIO_DATE, variant="M20S")


@pytest.mark.unit
class TestSummarize:
    """Tests for summarize()"""

    def test_counts_by_state(self):
        statuses = [
            PartitionStatus.classify(S19, 48, 48),
            PartitionStatus.classify(S9, 48, 24),
            PartitionStatus.classify(M20, 48, 0),
            PartitionStatus.unknown(PartitionKey(settlement_date=date(2025, 3, 22), variant="S9"), "scan failed"),
        ]
        summary = summarize(statuses, "2025-03-21..2025-03-22")

        assert (summary.total, summary.complete, summary.incomplete, summary.missing, summary.unknown) == (4, 1, 1, 1, 1)
        assert len(summary.outstanding) == 3

    def test_completion_is_source_weighted(self):
        """Test that a small partition weighs less than a full day"""
        statuses = [
            PartitionStatus.classify(S19, 96, 96),
            PartitionStatus.classify(S9, 4, 0),
        ]
        summary = summarize(statuses, "x")
        assert summary.completion_pct == pytest.approx(96.0)

    def test_unknown_excluded_from_percentage(self):
        statuses = [
            PartitionStatus.classify(S19, 48, 48),
            PartitionStatus.unknown(S9, "scan failed"),
        ]
        summary = summarize(statuses, "x")
        assert summary.completion_pct == 100.0
        assert summary.outstanding[0].state == PartitionState.UNKNOWN
        assert summary.outstanding[0].completion_pct == 0.0

    def test_surplus_rows_do_not_inflate_completion(self):
        statuses = [
            PartitionStatus.classify(S19, 10, 20),
            PartitionStatus.classify(S9, 10, 0),
        ]
        assert summarize(statuses, "x").completion_pct == pytest.approx(50.0)

    def test_last_error_prefers_progress_log(self):
        statuses = [PartitionStatus.classify(S9, 48, 0), PartitionStatus.unknown(M20, "scan failed: timeout")]
        summary = summarize(statuses, "x", failures={S9: "connection reset"})

        errors = {item.key: item.last_error for item in summary.outstanding}
        assert errors == {S9: "connection reset", M20: "scan failed: timeout"}

    def test_empty_scope(self):
        summary = summarize([], "2025-03-21")
        assert summary.total == 0
        assert summary.is_successful()


@pytest.mark.unit
class TestVerifier:
    """Tests for Verifier.verify"""

    def test_verify_scans_and_publishes(self, source, store, progress_store, no_sleep_retry):
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        store.seed(S19, range(1, 5))
        store.seed(S9, range(1, 3))
        scanner = StatusScanner(source, store, ["S19J_PRO", "S9"], retry_policy=no_sleep_retry)

        summary = Verifier(scanner, progress_store).verify(ReconcileScope.single(SCENARIO_DATE))

        assert summary.complete == 1
        assert summary.incomplete == 1
        assert summary.completion_pct == pytest.approx(75.0)
        assert REGISTRY.get_sample_value(
            "reconciler_completion_percentage", {"scope": "2025-03-21"}
        ) == pytest.approx(75.0)

    def test_failures_from_run_annotate_outstanding(self, source, store, progress_store, no_sleep_retry):
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        progress_store.record(
            ProgressEntry(
                run_id="run_1",
                key=S9,
                attempted_at=datetime(2025, 3, 22, tzinfo=timezone.utc),
                outcome=Outcome.FAILURE,
                message="deadlock detected",
            )
        )
        scanner = StatusScanner(source, store, ["S9"], retry_policy=no_sleep_retry)

        summary = Verifier(scanner, progress_store).verify(ReconcileScope.single(SCENARIO_DATE), run_id="run_1")

        assert summary.outstanding[0].state == PartitionState.MISSING
        assert summary.outstanding[0].last_error == "deadlock detected"

    def test_unreadable_progress_log_is_tolerated(self, source, store, progress_store, no_sleep_retry):
        source.add(make_source_records(SCENARIO_DATE, periods=4))

        def broken(run_id):
            raise OSError("permission denied")

        progress_store.load_run = broken
        scanner = StatusScanner(source, store, ["S9"], retry_policy=no_sleep_retry)

        summary = Verifier(scanner, progress_store).verify(ReconcileScope.single(SCENARIO_DATE), run_id="run_1")

        assert summary.outstanding[0].last_error is None
