"""
Recomputes the derived rows of one partition.
"""

import time
from collections import defaultdict
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Callable, Protocol

from curtailment_reconciler.core.models import DerivedRecord, PartitionKey, PartitionResult, SourceRecord
from curtailment_reconciler.derivation import DifficultyTable, calculate_bitcoin
from curtailment_reconciler.observability.logger import get_logger
from curtailment_reconciler.observability.metrics import record_partition_result

from .retry import RetryPolicy

logger = get_logger()


class SourceFeed(Protocol):
    def fetch_source_records(self, settlement_date: date) -> list[SourceRecord]:
        ...


class DerivedStore(Protocol):
    def replace_partition(self, key: PartitionKey, records: list[DerivedRecord]) -> int:
        ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def aggregate_volumes(records: list[SourceRecord]) -> dict[tuple[int, str], Decimal]:
    """
    Curtailed energy per (period, farm): the sum of |volume| over its rows.

    Rows with zero volume are ignored. Signs never offset, so a farm with a
    -10 and a +10 row in one period curtails 20 MWh.
    """
    totals: dict[tuple[int, str], Decimal] = defaultdict(Decimal)
    for record in records:
        if record.volume != 0:
            totals[(record.settlement_period, record.farm_id)] += abs(record.volume)
    return dict(sorted(totals.items()))


class Reprocessor:
    """
    Rebuilds one (date, variant) partition from its source rows.

    The partition is replaced atomically, so running it twice leaves the
    same rows. reprocess() never raises: every failure becomes the error of
    the returned PartitionResult.

    Usage:
        reprocessor = Reprocessor(curtailment_repo, calculation_repo, difficulty_table)
        result = reprocessor.reprocess(PartitionKey(settlement_date=day, variant="S19J_PRO"))
    """

    def __init__(
        self,
        source: SourceFeed,
        store: DerivedStore,
        difficulty: DifficultyTable,
        calculate: Callable[..., Decimal] = calculate_bitcoin,
        retry_policy: RetryPolicy | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        """
        Args:
            source: Reads curtailment rows for a date
            store: Replaces the derived rows of a partition
            difficulty: Loaded difficulty lookup
            calculate: Derivation function (energy_mwh, miner_model, difficulty, settlement_date)
            retry_policy: Retry policy for source reads and writes
            clock: Timestamp source for calculated_at and started_at
        """
        self.source = source
        self.store = store
        self.difficulty = difficulty
        self.calculate = calculate
        self.retry_policy = retry_policy or RetryPolicy()
        self.clock = clock

    def build_records(
        self,
        key: PartitionKey,
        source_records: list[SourceRecord],
        difficulty: Decimal,
    ) -> list[DerivedRecord]:
        """Derived rows for a partition, one per countable (period, farm) group."""
        calculated_at = self.clock()
        records = []
        for (period, farm_id), volume in aggregate_volumes(source_records).items():
            bitcoin = self.calculate(volume, key.variant, difficulty, key.settlement_date)
            records.append(
                DerivedRecord(
                    settlement_date=key.settlement_date,
                    settlement_period=period,
                    farm_id=farm_id,
                    miner_model=key.variant,
                    bitcoin_mined=bitcoin,
                    difficulty=difficulty,
                    calculated_at=calculated_at,
                )
            )
        return records

    def _run(self, key: PartitionKey, warnings: list[str]) -> int:
        source_records = self.retry_policy.call(
            "fetch_source_records", self.source.fetch_source_records, key.settlement_date
        )
        if not source_records:
            logger.info("No source records, nothing to do", extra={"partition": str(key)})
            return 0

        resolution = self.difficulty.resolve(key.settlement_date)
        if resolution.is_fallback:
            warnings.append(resolution.describe(key.settlement_date))

        records = self.build_records(key, source_records, resolution.value)
        return self.retry_policy.call("replace_partition", self.store.replace_partition, key, records)

    def reprocess(self, key: PartitionKey) -> PartitionResult:
        """
        Recompute a partition.

        Args:
            key: Partition to rebuild

        Returns:
            PartitionResult with records_written on success or error on failure
        """
        started_at = self.clock()
        start = time.monotonic()
        warnings: list[str] = []
        records_written = 0
        error = None

        try:
            records_written = self._run(key, warnings)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(
                "Partition reprocessing failed",
                extra={
                    "partition": str(key),
                    "settlement_date": key.settlement_date.isoformat(),
                    "variant": key.variant,
                    "error_type": e.__class__.__name__,
                    "error": error,
                },
            )

        duration = time.monotonic() - start
        result = PartitionResult(
            key=key,
            started_at=started_at,
            records_written=records_written if error is None else 0,
            error=error,
            warnings=warnings,
            duration_seconds=duration,
        )
        record_partition_result(key.variant, result.succeeded, result.records_written, duration)

        if result.succeeded:
            logger.info(
                "Partition reprocessed",
                extra={
                    "partition": str(key),
                    "records_written": records_written,
                    "duration_seconds": round(duration, 3),
                    "warnings": warnings,
                },
            )
        return result
