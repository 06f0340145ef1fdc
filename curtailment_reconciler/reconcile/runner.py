"""
Batch runner: drives the Reprocessor over scheduled batches.

Batches run one after another in priority order. Inside a batch up to
`concurrency` partitions are reprocessed at once on a thread pool. Each
outcome is appended to the progress store as soon as its partition finishes.
"""

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Callable

from curtailment_reconciler.core.models import (
    Outcome,
    PartitionKey,
    PartitionResult,
    ProgressEntry,
    RunReport,
)
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.observability.metrics import (
    batches_processed_total,
    increment_counter,
    progress_write_failures_total,
)

from .progress import ProgressStore
from .reprocessor import Reprocessor

logger = get_logger()

BatchHook = Callable[[int, list[PartitionResult]], None]


class BatchRunner:
    """
    Executes batches with bounded concurrency and a pause between batches.

    A failing partition never stops the run, and neither does a failing
    progress write. stop() can be called from another thread (e.g. a signal
    handler): the batch in flight finishes, later batches are reported as not
    attempted.

    Usage:
        runner = BatchRunner(reprocessor, progress_store, concurrency=3, inter_batch_delay=1.0)
        report = runner.run(batches, run_id="reconcile_20250321T120000")
    """

    def __init__(
        self,
        reprocessor: Reprocessor,
        progress_store: ProgressStore,
        concurrency: int = 3,
        inter_batch_delay: float = 1.0,
        on_batch_complete: BatchHook | None = None,
    ):
        """
        Args:
            reprocessor: Rebuilds one partition
            progress_store: Receives one entry per attempted partition
            concurrency: Maximum partitions in flight within a batch
            inter_batch_delay: Seconds to wait between batches
            on_batch_complete: Called with (batch_index, results) after each batch

        Raises:
            ValueError: If concurrency < 1 or inter_batch_delay < 0
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be >= 1, got {concurrency}")
        if inter_batch_delay < 0:
            raise ValueError(f"inter_batch_delay must be >= 0, got {inter_batch_delay}")
        self.reprocessor = reprocessor
        self.progress_store = progress_store
        self.concurrency = concurrency
        self.inter_batch_delay = inter_batch_delay
        self.on_batch_complete = on_batch_complete
        self._stop_event = threading.Event()

    def stop(self) -> None:
        """Request cancellation before the next batch."""
        if not self.stop_requested:
            logger.warning("Stop requested, finishing the current batch")
        self._stop_event.set()

    @property
    def stop_requested(self) -> bool:
        return self._stop_event.is_set()

    def _reprocess(self, key: PartitionKey) -> PartitionResult:
        try:
            return self.reprocessor.reprocess(key)
        except Exception as e:
            logger.error(
                "Reprocessor raised instead of returning a result",
                extra={"partition": str(key), "error": str(e)},
                exc_info=True,
            )
            return PartitionResult(
                key=key,
                started_at=datetime.now(timezone.utc),
                error=str(e) or e.__class__.__name__,
            )

    def _record(self, run_id: str, result: PartitionResult) -> bool:
        messages = [result.error] if result.error else list(result.warnings)
        entry = ProgressEntry(
            run_id=run_id,
            key=result.key,
            attempted_at=result.started_at,
            outcome=Outcome.SUCCESS if result.succeeded else Outcome.FAILURE,
            records_written=result.records_written,
            message="; ".join(messages) or None,
        )
        try:
            self.progress_store.record(entry)
        except Exception as e:
            increment_counter(progress_write_failures_total)
            logger.error(
                "Could not record partition outcome",
                extra={"run_id": run_id, "partition": str(result.key), "error": str(e)},
            )
            return False
        return True

    def _process(self, run_id: str, key: PartitionKey) -> tuple[PartitionResult, bool]:
        result = self._reprocess(key)
        return result, self._record(run_id, result)

    def run(self, batches: list[list[PartitionKey]], run_id: str) -> RunReport:
        """
        Execute batches in order.

        Args:
            batches: Scheduler output
            run_id: Run the progress entries belong to

        Returns:
            RunReport with one result per attempted partition
        """
        report = RunReport(run_id=run_id, batches_total=len(batches))
        if not batches:
            return report

        with ThreadPoolExecutor(max_workers=self.concurrency, thread_name_prefix="reconcile") as executor:
            for index, batch in enumerate(batches):
                if self.stop_requested:
                    report.cancelled = True
                    for remaining in batches[index:]:
                        report.not_attempted.extend(remaining)
                    increment_counter(batches_processed_total, len(batches) - index, status="cancelled")
                    logger.warning(
                        "Run cancelled",
                        extra={
                            "run_id": run_id,
                            "batches_completed": report.batches_completed,
                            "partitions_not_attempted": len(report.not_attempted),
                        },
                    )
                    break

                logger.info(
                    "Starting batch",
                    extra={
                        "run_id": run_id,
                        "batch": index + 1,
                        "batches_total": len(batches),
                        "partitions": [str(k) for k in batch],
                    },
                )

                futures = [executor.submit(self._process, run_id, key) for key in batch]
                batch_results = []
                for future in as_completed(futures):
                    result, recorded = future.result()
                    batch_results.append(result)
                    if not recorded:
                        report.progress_write_failures += 1

                report.results.extend(batch_results)
                report.batches_completed += 1
                increment_counter(batches_processed_total, 1, status="completed")
                logger.info(
                    "Batch complete",
                    extra={
                        "run_id": run_id,
                        "batch": index + 1,
                        "succeeded": sum(1 for r in batch_results if r.succeeded),
                        "failed": sum(1 for r in batch_results if not r.succeeded),
                    },
                )

                if self.on_batch_complete is not None:
                    try:
                        self.on_batch_complete(index, batch_results)
                    except Exception as e:
                        logger.error(
                            "Batch hook failed",
                            extra={"run_id": run_id, "batch": index + 1, "error": str(e)},
                        )

                if index < len(batches) - 1 and self.inter_batch_delay > 0:
                    # Returns early when stop() is called
                    self._stop_event.wait(self.inter_batch_delay)

        return report
