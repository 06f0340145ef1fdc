"""
Priority scheduling of partitions that need work.
"""

from curtailment_reconciler.core.models import PartitionKey, PartitionState, PartitionStatus

# Missing partitions have no derived rows at all, so they go first
STATE_RANK = {
    PartitionState.MISSING: 0,
    PartitionState.INCOMPLETE: 1,
    PartitionState.COMPLETE: 2,
}


class PriorityScheduler:
    """
    Orders partitions by (state, date, variant) and slices them into batches.

    Complete and Unknown partitions are dropped; with force=True Complete
    partitions are kept and scheduled after everything else. The output is a
    pure function of the input.
    """

    def __init__(self, batch_size: int = 5, force: bool = False):
        """
        Args:
            batch_size: Partitions per batch
            force: Also schedule Complete partitions

        Raises:
            ValueError: If batch_size < 1
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.batch_size = batch_size
        self.force = force

    def eligible(self, status: PartitionStatus) -> bool:
        if status.needs_work:
            return True
        return self.force and status.state == PartitionState.COMPLETE

    def order(
        self,
        statuses: list[PartitionStatus],
        skip: set[PartitionKey] | None = None,
    ) -> list[PartitionKey]:
        """
        Eligible partition keys in priority order.

        Args:
            statuses: Scanner output
            skip: Keys to leave out (already succeeded in the current run)
        """
        skip = skip or set()
        seen: set[PartitionKey] = set()
        selected = []
        for status in statuses:
            if status.key in skip or status.key in seen or not self.eligible(status):
                continue
            seen.add(status.key)
            selected.append(status)

        selected.sort(key=lambda s: (STATE_RANK[s.state], s.key.settlement_date, s.key.variant))
        return [s.key for s in selected]

    def schedule(
        self,
        statuses: list[PartitionStatus],
        skip: set[PartitionKey] | None = None,
    ) -> list[list[PartitionKey]]:
        """
        Slice the ordered work list into batches of at most batch_size.

        Returns:
            Batches in execution order; empty when nothing needs work
        """
        keys = self.order(statuses, skip)
        return [keys[i:i + self.batch_size] for i in range(0, len(keys), self.batch_size)]
