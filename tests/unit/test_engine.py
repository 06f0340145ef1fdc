"""
Unit tests for ReconciliationEngine against the in-memory fakes.

These follow a reconciliation run end to end: scan, schedule, reprocess,
record progress and verify.
"""

from datetime import date
from decimal import Decimal

import pytest

from conftest import SCENARIO_DATE, make_source_records
from curtailment_reconciler.core.exceptions import PartitionWriteError, ScanError
from curtailment_reconciler.core.models import Outcome, PartitionKey, PartitionState, ReconcileScope, SourceRecord
from curtailment_reconciler.derivation import DifficultyTable, StaticDifficultySource

SCOPE = ReconcileScope.single(SCENARIO_DATE)
S19 = PartitionKey(settlement_date=SCENARIO_DATE, variant="S19J_PRO")
S9 = PartitionKey(settlement_date=SCENARIO_DATE, variant="S9")
M20 = PartitionKey(settlement_date=SCENARIO_DATE, variant="M20S")


class FakeSummaryRefresher:
    def __init__(self, fail=False):
        self.calls = []
        self.fail = fail

    def refresh(self, days, variants):
        if self.fail:
            raise RuntimeError("summary table locked")
        self.calls.append((sorted(set(days)), sorted(set(variants))))


@pytest.mark.unit
class TestReconcileScenario:
    """Tests for the single-day reconciliation scenario"""

    def test_missing_day_reaches_full_completion(self, make_engine, source, store):
        """Test 48 curtailment rows on 2025-03-21 become 48 S19J_PRO calculations"""
        source.add(make_source_records(SCENARIO_DATE, periods=48))
        engine = make_engine(variants=["S19J_PRO"])

        before = engine.status(SCOPE)
        result = engine.reconcile(SCOPE)

        assert before.missing == 1
        assert result.scheduled == 1
        assert result.report.records_written == 48
        assert len(store.fetch_partition(S19)) == 48
        assert result.summary.completion_pct == 100.0
        assert result.summary.outstanding == []
        assert result.successful
        assert result.exit_code == 0

    def test_all_variants_are_reconciled(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=48, farms=("F1", "F2")))

        result = make_engine().reconcile(SCOPE)

        assert result.summary.complete == 3
        for key in (S19, S9, M20):
            assert len(store.fetch_partition(key)) == 96

    def test_second_run_is_a_no_op(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=48))
        make_engine(variants=["S19J_PRO"], run_id="first").reconcile(SCOPE)
        rows_after_first = store.fetch_partition(S19)

        result = make_engine(variants=["S19J_PRO"], run_id="second").reconcile(SCOPE)

        assert result.scheduled == 0
        assert store.replace_calls[S19] == 1
        assert store.fetch_partition(S19) == rows_after_first
        assert result.exit_code == 0

    def test_incomplete_partition_is_repaired(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=48))
        store.seed(S19, range(1, 13))
        engine = make_engine(variants=["S19J_PRO"])

        assert engine.status(SCOPE).outstanding[0].state == PartitionState.INCOMPLETE
        result = engine.reconcile(SCOPE)

        assert result.summary.complete == 1
        assert len(store.fetch_partition(S19)) == 48

    def test_offsetting_rows_are_reconciled(self, make_engine, source, store):
        """Test every nonzero curtailment row gets a calculation even when signs cancel"""
        source.add([
            SourceRecord(settlement_date=SCENARIO_DATE, settlement_period=1, farm_id="F1", volume=Decimal("-10")),
            SourceRecord(settlement_date=SCENARIO_DATE, settlement_period=1, farm_id="F1", volume=Decimal("10")),
            SourceRecord(settlement_date=SCENARIO_DATE, settlement_period=2, farm_id="F1", volume=Decimal("-5")),
        ])

        result = make_engine(variants=["S19J_PRO"]).reconcile(SCOPE)

        assert [(r.settlement_period, r.farm_id) for r in store.fetch_partition(S19)] == [(1, "F1"), (2, "F1")]
        assert result.summary.completion_pct == 100.0
        assert result.exit_code == 0

    def test_range_scope(self, make_engine, source):
        next_day = date(2025, 3, 22)
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        source.add(make_source_records(next_day, periods=6))

        result = make_engine(variants=["S9"]).reconcile(ReconcileScope.between(SCENARIO_DATE, next_day))

        assert result.report.records_written == 10
        assert result.summary.complete == 2

    def test_all_scope(self, make_engine, source):
        source.add(make_source_records(date(2024, 1, 5), periods=2))
        source.add(make_source_records(SCENARIO_DATE, periods=2))

        result = make_engine(variants=["S9"]).reconcile(ReconcileScope.everything())

        assert result.summary.total == 2
        assert result.summary.complete == 2

    def test_all_scope_listing_failure_raises(self, make_engine, source):
        source.fail_list_dates = True
        with pytest.raises(ScanError):
            make_engine().reconcile(ReconcileScope.everything())


@pytest.mark.unit
class TestFailureHandling:
    """Tests for partition isolation and reporting"""

    def test_failing_partition_does_not_block_others(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=48))
        store.write_errors[S9] = PartitionWriteError(S9, "check constraint violated")

        result = make_engine().reconcile(SCOPE)

        assert len(store.fetch_partition(S19)) == 48
        assert len(store.fetch_partition(M20)) == 48
        assert [item.key for item in result.summary.outstanding] == [S9]
        assert "check constraint violated" in result.summary.outstanding[0].last_error
        assert result.exit_code == 1

    def test_tolerance_accepts_small_shortfall(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=48))
        store.write_errors[S9] = PartitionWriteError(S9, "boom")

        result = make_engine(completion_tolerance_pct=30.0).reconcile(SCOPE)

        assert result.summary.completion_pct == pytest.approx(200 / 3)
        assert not result.successful

        result = make_engine(completion_tolerance_pct=34.0).reconcile(SCOPE)
        assert result.successful

    def test_unknown_date_is_reported(self, make_engine, source):
        next_day = date(2025, 3, 22)
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        source.add(make_source_records(next_day, periods=4))
        source.fail_count_dates = {next_day}

        result = make_engine(variants=["S9"]).reconcile(ReconcileScope.between(SCENARIO_DATE, next_day))

        assert result.scheduled == 1
        assert result.summary.unknown == 1
        assert result.summary.completion_pct == 100.0
        assert result.summary.outstanding[0].key.settlement_date == next_day

    def test_progress_log_failure_does_not_stop_run(self, make_engine, source, store, progress_store):
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        progress_store.fail_writes = True

        result = make_engine(variants=["S9"]).reconcile(SCOPE)

        assert result.report.progress_write_failures == 1
        assert result.summary.complete == 1


@pytest.mark.unit
class TestResumeAndForce:
    """Tests for resuming a run by run_id and forced reprocessing"""

    def test_rerun_with_same_run_id_skips_succeeded(self, make_engine, source, store, progress_store):
        source.add(make_source_records(SCENARIO_DATE, periods=8))
        store.write_errors[S9] = PartitionWriteError(S9, "boom")
        make_engine(force=True, run_id="resumable").reconcile(SCOPE)

        del store.write_errors[S9]
        result = make_engine(force=True, run_id="resumable").reconcile(SCOPE)

        assert result.skipped_already_succeeded == 2
        assert result.scheduled == 1
        assert store.replace_calls == {S19: 1, S9: 2, M20: 1}
        assert result.summary.complete == 3
        outcomes = [e.outcome for e in progress_store.load_run("resumable") if e.key == S9]
        assert outcomes == [Outcome.FAILURE, Outcome.SUCCESS]

    def test_force_reprocesses_complete_partitions(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        make_engine(variants=["S9"], run_id="first").reconcile(SCOPE)

        result = make_engine(variants=["S9"], run_id="second", force=True).reconcile(SCOPE)

        assert result.scheduled == 1
        assert store.replace_calls[S9] == 2
        assert len(store.fetch_partition(S9)) == 4

    def test_missing_partitions_run_first(self, make_engine, source, store, progress_store):
        earlier = date(2025, 3, 20)
        source.add(make_source_records(earlier, periods=4))
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        store.seed(PartitionKey(settlement_date=earlier, variant="S9"), range(1, 3))

        make_engine(variants=["S9"], batch_size=1, concurrency=1).reconcile(
            ReconcileScope.between(earlier, SCENARIO_DATE)
        )

        order = [e.key.settlement_date for e in progress_store.load_run("test_run")]
        assert order == [SCENARIO_DATE, earlier]

    def test_stop_before_run(self, make_engine, source, store):
        source.add(make_source_records(SCENARIO_DATE, periods=4))
        engine = make_engine(variants=["S9"])
        engine.stop()

        result = engine.reconcile(SCOPE)

        assert result.report.cancelled
        assert result.report.not_attempted == [S9]
        assert store.replace_calls[S9] == 0
        assert result.exit_code == 1


@pytest.mark.unit
class TestEngineCollaborators:
    """Tests for difficulty loading, summaries, interim verification and history"""

    def test_difficulty_is_loaded_on_first_reconcile(self, source, store, progress_store, no_sleep_retry):
        from curtailment_reconciler.core.config import RunConfig
        from curtailment_reconciler.reconcile import ReconciliationEngine

        table = DifficultyTable(StaticDifficultySource({SCENARIO_DATE: 100000000000000}))
        engine = ReconciliationEngine(
            RunConfig(run_id="lazy", variants=["S9"], inter_batch_delay_seconds=0),
            source, store, progress_store, table, retry_policy=no_sleep_retry,
        )
        source.add(make_source_records(SCENARIO_DATE, periods=2))

        engine.reconcile(SCOPE)

        assert table.loaded
        assert store.fetch_partition(S9)[0].difficulty == 100000000000000

    def test_summaries_refreshed_for_changed_partitions(self, make_engine, source):
        source.add(make_source_records(SCENARIO_DATE, periods=2))
        engine = make_engine(variants=["S9", "M20S"])
        engine.summary_refresher = FakeSummaryRefresher()

        engine.reconcile(SCOPE)

        assert engine.summary_refresher.calls == [([SCENARIO_DATE], ["M20S", "S9"])]

    def test_summaries_refreshed_for_partition_emptied_by_reingest(self, make_engine, source, store):
        """Test a partition rebuilt to zero rows still has its summaries refreshed"""
        source.add(make_source_records(SCENARIO_DATE, periods=2))
        store.seed(S9, range(1, 2))
        reingested = make_source_records(SCENARIO_DATE, periods=2, volume="0")
        source.fetch_source_records = lambda settlement_date: list(reingested)
        engine = make_engine(variants=["S9"])
        engine.summary_refresher = FakeSummaryRefresher()

        result = engine.reconcile(SCOPE)

        assert result.report.records_written == 0
        assert store.fetch_partition(S9) == []
        assert engine.summary_refresher.calls == [([SCENARIO_DATE], ["S9"])]

    def test_summary_refresh_failure_is_not_fatal(self, make_engine, source):
        source.add(make_source_records(SCENARIO_DATE, periods=2))
        engine = make_engine(variants=["S9"])
        engine.summary_refresher = FakeSummaryRefresher(fail=True)

        assert engine.reconcile(SCOPE).exit_code == 0

    def test_interim_verification(self, make_engine, source):
        for offset in range(4):
            source.add(make_source_records(date(2025, 3, 1 + offset), periods=2))
        engine = make_engine(variants=["S9"], batch_size=1, verify_every_batches=2)
        calls = []
        original = engine.verifier.verify
        engine.verifier.verify = lambda scope, run_id=None: calls.append(scope) or original(scope, run_id)

        engine.reconcile(ReconcileScope.between(date(2025, 3, 1), date(2025, 3, 4)))

        # after batches 2 and 4, plus the final verification
        assert len(calls) == 3

    def test_history_and_runs(self, make_engine, source):
        source.add(make_source_records(SCENARIO_DATE, periods=2))
        engine = make_engine(variants=["S9"], run_id="audited")
        engine.reconcile(SCOPE)

        history = engine.history()
        assert [str(e.key) for e in history] == ["2025-03-21/S9"]
        assert engine.history("other") == []
        assert [o.run_id for o in engine.runs()] == ["audited"]

    def test_status_is_read_only(self, make_engine, source, store, progress_store):
        source.add(make_source_records(SCENARIO_DATE, periods=2))

        summary = make_engine().status(SCOPE)

        assert summary.missing == 3
        assert store.rows == {}
        assert progress_store.entries == []
