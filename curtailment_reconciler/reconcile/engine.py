"""
Reconciliation engine.

Wires the scanner, scheduler, batch runner, progress store and verifier
together for one RunConfig. The engine returns results; printing and exit
codes are left to the CLI.
"""

from curtailment_reconciler.core.config import RunConfig
from curtailment_reconciler.core.models import (
    PartitionResult,
    ProgressEntry,
    ReconcileScope,
    RunOverview,
    RunResult,
    VerificationSummary,
)
from curtailment_reconciler.derivation import DifficultyTable, calculate_bitcoin
from curtailment_reconciler.observability.logger import get_logger, log_operation

from .progress import JsonlProgressStore, ProgressStore
from .reprocessor import Reprocessor
from .retry import RetryPolicy
from .runner import BatchRunner
from .scanner import StatusScanner
from .scheduler import PriorityScheduler
from .verifier import Verifier

logger = get_logger()


class ReconciliationEngine:
    """
    Scan, schedule, reprocess and verify a scope.

    Usage:
        engine = ReconciliationEngine.from_pool(config, pool)
        result = engine.reconcile(ReconcileScope.single(date(2025, 3, 21)))
        sys.exit(result.exit_code)
    """

    def __init__(
        self,
        config: RunConfig,
        source,
        derived,
        progress_store: ProgressStore,
        difficulty: DifficultyTable,
        summary_refresher=None,
        calculate=calculate_bitcoin,
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Args:
            config: Run configuration
            source: Source collaborator (SourceFeed and SourceCounts)
            derived: Derived-store collaborator (DerivedStore and DerivedCounts)
            progress_store: Progress log backend
            difficulty: Difficulty lookup; loaded on first reconcile if needed
            summary_refresher: Optional SummaryRefresher run after each reconcile
            calculate: Derivation function
            retry_policy: Retry policy shared by all components
        """
        self.config = config
        self.source = source
        self.derived = derived
        self.progress_store = progress_store
        self.difficulty = difficulty
        self.summary_refresher = summary_refresher
        self.retry_policy = retry_policy or RetryPolicy(config.retry)

        self.scanner = StatusScanner(source, derived, config.variants, self.retry_policy)
        self.scheduler = PriorityScheduler(batch_size=config.batch_size, force=config.force)
        self.reprocessor = Reprocessor(
            source, derived, difficulty, calculate=calculate, retry_policy=self.retry_policy
        )
        self.verifier = Verifier(self.scanner, progress_store)
        self._runner: BatchRunner | None = None
        self._stop_requested = False

    @classmethod
    def from_pool(cls, config: RunConfig, pool) -> "ReconciliationEngine":
        """
        Build an engine backed by PostgreSQL.

        Args:
            config: Run configuration
            pool: Open DatabaseConnectionPool
        """
        # Imported here: the warehouse package depends on reconcile.progress
        from curtailment_reconciler.derivation import StaticDifficultySource
        from curtailment_reconciler.warehouse.calculations import CalculationRepository
        from curtailment_reconciler.warehouse.curtailment import CurtailmentRepository
        from curtailment_reconciler.warehouse.difficulty import NetworkDifficultyRepository
        from curtailment_reconciler.warehouse.progress import PostgresProgressStore
        from curtailment_reconciler.warehouse.summaries import SummaryRefresher

        retry_policy = RetryPolicy(config.retry)

        if config.progress_backend == "file":
            progress_store: ProgressStore = JsonlProgressStore(config.progress_dir)
        else:
            progress_store = PostgresProgressStore(pool)

        if config.difficulty_file:
            difficulty_source = StaticDifficultySource.from_yaml(config.difficulty_file)
        else:
            difficulty_source = NetworkDifficultyRepository(pool)

        return cls(
            config=config,
            source=CurtailmentRepository(pool),
            derived=CalculationRepository(pool),
            progress_store=progress_store,
            difficulty=DifficultyTable(difficulty_source, config.default_difficulty, retry_policy),
            summary_refresher=SummaryRefresher(pool) if config.refresh_summaries else None,
            retry_policy=retry_policy,
        )

    def stop(self) -> None:
        """Ask a running reconcile() to stop after the current batch."""
        self._stop_requested = True
        if self._runner is not None:
            self._runner.stop()

    def status(self, scope: ReconcileScope) -> VerificationSummary:
        """Verification summary for a scope without changing anything."""
        return self.verifier.verify(scope, self.config.run_id)

    def history(self, run_id: str | None = None) -> list[ProgressEntry]:
        """Progress log entries of a run (defaults to the configured run)."""
        return self.progress_store.load_run(run_id or self.config.run_id)

    def runs(self) -> list[RunOverview]:
        return self.progress_store.list_runs()

    def _interim_verification(self, scope: ReconcileScope):
        every = self.config.verify_every_batches

        def verify(batch_index: int, results: list[PartitionResult]) -> None:
            if (batch_index + 1) % every != 0:
                return
            summary = self.verifier.verify(scope, self.config.run_id)
            logger.info(
                "Interim completion",
                extra={
                    "run_id": self.config.run_id,
                    "batches_done": batch_index + 1,
                    "completion_pct": round(summary.completion_pct, 2),
                    "outstanding": len(summary.outstanding),
                },
            )

        return verify

    def _refresh_summaries(self, results: list[PartitionResult]) -> None:
        if self.summary_refresher is None:
            return
        # A partition rebuilt to zero rows still needs its stale totals removed
        changed = [r.key for r in results if r.succeeded]
        if not changed:
            return
        try:
            self.summary_refresher.refresh(
                [k.settlement_date for k in changed], [k.variant for k in changed]
            )
        except Exception as e:
            logger.warning(
                "Summary refresh failed; derived rows are unaffected",
                extra={"run_id": self.config.run_id, "error": str(e)},
            )

    def reconcile(self, scope: ReconcileScope) -> RunResult:
        """
        Bring the derived data of a scope up to date.

        Partitions that already succeeded under the configured run_id are
        skipped, so re-running with the same run_id resumes an interrupted run.

        Args:
            scope: Date, range or all dates

        Returns:
            RunResult with the run report and the final verification

        Raises:
            ScanError: If the dates of an unbounded scope cannot be listed
        """
        run_id = self.config.run_id
        with log_operation("Reconciliation run", logger=logger, run_id=run_id, scope=scope.describe()):
            if not self.difficulty.loaded:
                self.difficulty.load()

            statuses = self.scanner.scan(scope)
            try:
                already_done = self.progress_store.succeeded_keys(run_id)
            except Exception as e:
                # Without the log every partition is redone; the replace is idempotent
                logger.warning(
                    "Could not read the progress log, nothing will be skipped",
                    extra={"run_id": run_id, "error": str(e)},
                )
                already_done = set()
            skipped = sum(
                1 for s in statuses if s.key in already_done and self.scheduler.eligible(s)
            )
            batches = self.scheduler.schedule(statuses, skip=already_done)
            scheduled = sum(len(b) for b in batches)
            logger.info(
                "Work scheduled",
                extra={
                    "run_id": run_id,
                    "partitions": len(statuses),
                    "scheduled": scheduled,
                    "batches": len(batches),
                    "skipped_already_succeeded": skipped,
                },
            )

            hook = self._interim_verification(scope) if self.config.verify_every_batches > 0 else None
            self._runner = BatchRunner(
                self.reprocessor,
                self.progress_store,
                concurrency=self.config.concurrency,
                inter_batch_delay=self.config.inter_batch_delay_seconds,
                on_batch_complete=hook,
            )
            if self._stop_requested:
                self._runner.stop()
            try:
                report = self._runner.run(batches, run_id)
            finally:
                self._runner = None

            self._refresh_summaries(report.results)
            summary = self.verifier.verify(scope, run_id)

        return RunResult(
            run_id=run_id,
            scope=scope.describe(),
            scheduled=scheduled,
            skipped_already_succeeded=skipped,
            report=report,
            summary=summary,
            tolerance_pct=self.config.completion_tolerance_pct,
        )
