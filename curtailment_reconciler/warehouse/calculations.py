"""
Write access to historical_bitcoin_calculations.

Implements the atomic per-partition replace: the delete of stale rows and the
INSERT ... ON CONFLICT upsert of fresh ones share one transaction, so readers
never observe a partition with its rows removed but not yet rewritten.
"""

from datetime import date

from psycopg import DatabaseError, OperationalError

from curtailment_reconciler.core.exceptions import PartitionWriteError
from curtailment_reconciler.core.models import DerivedRecord, PartitionKey

from .connection import DatabaseConnectionPool

_UPSERT = """
    INSERT INTO historical_bitcoin_calculations (
        settlement_date, settlement_period, farm_id, miner_model,
        bitcoin_mined, difficulty, calculated_at
    )
    VALUES (%s, %s, %s, %s, %s, %s, %s)
    ON CONFLICT (settlement_date, settlement_period, farm_id, miner_model) DO UPDATE SET
        bitcoin_mined = EXCLUDED.bitcoin_mined,
        difficulty = EXCLUDED.difficulty,
        calculated_at = EXCLUDED.calculated_at
"""


class CalculationRepository:
    """
    Counts and rewrites derived calculation rows.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize repository.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def count_derived_groups(
        self,
        dates: list[date] | None,
        variants: list[str],
    ) -> dict[tuple[date, str], int]:
        """
        Distinct (period, farm) rows per (date, variant).

        Args:
            dates: Dates to count; None counts every date
            variants: Miner models to count

        Returns:
            {(date, variant): count}; partitions without rows are absent
        """
        if not variants or (dates is not None and not dates):
            return {}

        conditions = ["miner_model = ANY(%s)"]
        params: list = [list(variants)]
        if dates is not None:
            conditions.append("settlement_date = ANY(%s)")
            params.append(list(dates))

        query = f"""
            SELECT settlement_date, miner_model,
                   COUNT(DISTINCT (settlement_period, farm_id)) AS group_count
            FROM historical_bitcoin_calculations
            WHERE {" AND ".join(conditions)}
            GROUP BY settlement_date, miner_model
        """
        rows = self.pool.execute_query(query, tuple(params))
        return {(row["settlement_date"], row["miner_model"]): int(row["group_count"]) for row in rows}

    def replace_partition(self, key: PartitionKey, records: list[DerivedRecord]) -> int:
        """
        Atomically replace all derived rows of a partition.

        Args:
            key: Partition to rewrite
            records: Complete new contents of the partition

        Returns:
            Number of rows written

        Raises:
            PartitionWriteError: If a record does not belong to the partition
                or the database rejects the write (nothing is changed)
        """
        for record in records:
            if record.settlement_date != key.settlement_date or record.miner_model != key.variant:
                raise PartitionWriteError(str(key), f"record {record.natural_key} is outside the partition")

        params = [
            (
                r.settlement_date,
                r.settlement_period,
                r.farm_id,
                r.miner_model,
                r.bitcoin_mined,
                r.difficulty,
                r.calculated_at,
            )
            for r in records
        ]

        try:
            with self.pool.transaction() as cur:
                cur.execute(
                    """
                    DELETE FROM historical_bitcoin_calculations
                    WHERE settlement_date = %s AND miner_model = %s
                    """,
                    (key.settlement_date, key.variant),
                )
                if params:
                    cur.executemany(_UPSERT, params)
        except OperationalError:
            # Connection-level failures are left to the caller's retry policy
            raise
        except DatabaseError as e:
            raise PartitionWriteError(str(key), str(e)) from e

        return len(records)

    def fetch_partition(self, key: PartitionKey) -> list[DerivedRecord]:
        """
        Derived rows of a partition, ordered by period and farm.
        """
        query = """
            SELECT settlement_date, settlement_period, farm_id, miner_model,
                   bitcoin_mined, difficulty, calculated_at
            FROM historical_bitcoin_calculations
            WHERE settlement_date = %s AND miner_model = %s
            ORDER BY settlement_period, farm_id
        """
        rows = self.pool.execute_query(query, (key.settlement_date, key.variant))
        return [DerivedRecord(**row) for row in rows]
