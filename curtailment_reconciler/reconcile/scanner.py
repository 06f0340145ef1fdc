"""
Partition status scanner.

Compares countable source groups with derived rows per (date, variant) and
classifies every partition in a scope. Read-only.
"""

from datetime import date
from typing import Protocol

from curtailment_reconciler.core.exceptions import ScanError
from curtailment_reconciler.core.models import PartitionKey, PartitionStatus, ReconcileScope
from curtailment_reconciler.observability.logger import get_logger, log_operation
from curtailment_reconciler.observability.metrics import increment_counter, scan_failures_total

from .retry import RetryPolicy

logger = get_logger()


class SourceCounts(Protocol):
    def count_source_groups(self, dates: list[date] | None = None) -> dict[date, int]:
        ...

    def list_source_dates(self) -> list[date]:
        ...


class DerivedCounts(Protocol):
    def count_derived_groups(self, dates: list[date] | None, variants: list[str]) -> dict[tuple[date, str], int]:
        ...


class StatusScanner:
    """
    Computes PartitionStatus for every (date, variant) in a scope.

    Counting is attempted with one grouped query per table for the whole
    scope. If that fails the scanner falls back to one query per date so
    that only the dates that really cannot be counted end up Unknown.

    Usage:
        scanner = StatusScanner(curtailment_repo, calculation_repo, ["S19J_PRO"])
        statuses = scanner.scan(ReconcileScope.single(date(2025, 3, 21)))
    """

    def __init__(
        self,
        source: SourceCounts,
        derived: DerivedCounts,
        variants: list[str],
        retry_policy: RetryPolicy | None = None,
    ):
        """
        Args:
            source: Counts countable source groups per date
            derived: Counts derived rows per (date, variant)
            variants: Miner models to evaluate
            retry_policy: Retry policy for count queries
        """
        if not variants:
            raise ValueError("StatusScanner needs at least one variant")
        self.source = source
        self.derived = derived
        self.variants = sorted(set(variants))
        self.retry_policy = retry_policy or RetryPolicy()

    def _dates_for(self, scope: ReconcileScope) -> list[date]:
        if scope.is_bounded:
            return list(scope.dates())
        try:
            return self.retry_policy.call("list_source_dates", self.source.list_source_dates)
        except Exception as e:
            raise ScanError(f"Could not enumerate settlement dates: {e}") from e

    def _count(self, dates: list[date] | None) -> tuple[dict[date, int], dict[tuple[date, str], int]]:
        source_counts = self.retry_policy.call("count_source_groups", self.source.count_source_groups, dates)
        derived_counts = self.retry_policy.call(
            "count_derived_groups", self.derived.count_derived_groups, dates, self.variants
        )
        return source_counts, derived_counts

    def _classify_date(
        self,
        day: date,
        source_counts: dict[date, int],
        derived_counts: dict[tuple[date, str], int],
    ) -> list[PartitionStatus]:
        source_count = source_counts.get(day, 0)
        statuses = []
        for variant in self.variants:
            key = PartitionKey(settlement_date=day, variant=variant)
            if source_count == 0:
                statuses.append(
                    PartitionStatus.unknown(key, f"no countable curtailment records for {day.isoformat()}")
                )
            else:
                statuses.append(
                    PartitionStatus.classify(key, source_count, derived_counts.get((day, variant), 0))
                )
        return statuses

    def _scan_per_date(self, dates: list[date]) -> list[PartitionStatus]:
        statuses = []
        for day in dates:
            try:
                source_counts, derived_counts = self._count([day])
            except Exception as e:
                increment_counter(scan_failures_total)
                logger.error(
                    "Could not count partitions for date",
                    extra={"settlement_date": day.isoformat(), "error": str(e)},
                )
                for variant in self.variants:
                    key = PartitionKey(settlement_date=day, variant=variant)
                    statuses.append(PartitionStatus.unknown(key, f"scan failed: {e}"))
                continue
            statuses.extend(self._classify_date(day, source_counts, derived_counts))
        return statuses

    def scan(self, scope: ReconcileScope) -> list[PartitionStatus]:
        """
        Classify every partition in a scope.

        Args:
            scope: Date, range or all dates with curtailment records

        Returns:
            Statuses sorted by (date, variant)

        Raises:
            ScanError: If the dates of an unbounded scope cannot be listed
        """
        with log_operation("Scanning partitions", logger=logger, scope=scope.describe()):
            dates = self._dates_for(scope)
            if not dates:
                return []

            # Unbounded scope counts everything in one pass
            query_dates = dates if scope.is_bounded else None
            try:
                source_counts, derived_counts = self._count(query_dates)
            except Exception as e:
                logger.warning(
                    "Grouped count failed, falling back to per-date scan",
                    extra={"scope": scope.describe(), "dates": len(dates), "error": str(e)},
                )
                statuses = self._scan_per_date(dates)
            else:
                statuses = []
                for day in dates:
                    statuses.extend(self._classify_date(day, source_counts, derived_counts))

        statuses.sort(key=lambda s: s.key.sort_key)
        return statuses
