"""
Read access to curtailment_records, the source of truth for reconciliation.
"""

from datetime import date

from curtailment_reconciler.core.models import SourceRecord

from .connection import DatabaseConnectionPool

# Source groups are (date, period, farm) with at least one nonzero-volume row.
# Offsetting legs in one period still form a group; signs are not netted.
_COUNTABLE_GROUPS = """
    SELECT settlement_date, settlement_period, farm_id
    FROM curtailment_records
    WHERE volume <> 0 {and_where}
    GROUP BY settlement_date, settlement_period, farm_id
"""


class CurtailmentRepository:
    """
    Queries curtailment_records.

    The reconciler never writes to this table.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize repository.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def fetch_source_records(self, settlement_date: date) -> list[SourceRecord]:
        """
        All curtailment rows for one settlement date.

        Args:
            settlement_date: Date to fetch

        Returns:
            Rows ordered by period and farm
        """
        query = """
            SELECT settlement_date, settlement_period, farm_id, lead_party_name, volume, payment
            FROM curtailment_records
            WHERE settlement_date = %s
            ORDER BY settlement_period, farm_id
        """
        rows = self.pool.execute_query(query, (settlement_date,))
        return [SourceRecord(**row) for row in rows]

    def count_source_groups(self, dates: list[date] | None = None) -> dict[date, int]:
        """
        Countable (period, farm) groups per date.

        Args:
            dates: Dates to count; None counts every date

        Returns:
            {date: group count}; dates without countable groups are absent
        """
        if dates is None:
            inner = _COUNTABLE_GROUPS.format(and_where="")
            params: tuple = ()
        else:
            if not dates:
                return {}
            inner = _COUNTABLE_GROUPS.format(and_where="AND settlement_date = ANY(%s)")
            params = (list(dates),)

        query = f"""
            SELECT settlement_date, COUNT(*) AS group_count
            FROM ({inner}) AS groups
            GROUP BY settlement_date
        """
        rows = self.pool.execute_query(query, params)
        return {row["settlement_date"]: int(row["group_count"]) for row in rows}

    def list_source_dates(self) -> list[date]:
        """Every date with at least one curtailment row, ascending."""
        rows = self.pool.execute_query(
            "SELECT DISTINCT settlement_date FROM curtailment_records ORDER BY settlement_date"
        )
        return [row["settlement_date"] for row in rows]
