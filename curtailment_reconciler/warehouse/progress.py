"""
PostgreSQL backend for the progress log (table reconciliation_progress).
"""

from curtailment_reconciler.core.models import PartitionKey, ProgressEntry, RunOverview
from curtailment_reconciler.reconcile.progress import ProgressStore

from .connection import DatabaseConnectionPool

_COLUMNS = "run_id, settlement_date, variant, attempted_at, recorded_at, outcome, records_written, message"


class PostgresProgressStore(ProgressStore):
    """
    Append-only progress log in reconciliation_progress.

    Rows are only ever inserted. Each record() commits on its own so an entry
    survives a crash of the run that wrote it.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize progress store.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def record(self, entry: ProgressEntry) -> None:
        query = f"""
            INSERT INTO reconciliation_progress ({_COLUMNS})
            VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
        """
        self.pool.execute_command(
            query,
            (
                entry.run_id,
                entry.key.settlement_date,
                entry.key.variant,
                entry.attempted_at,
                entry.recorded_at,
                entry.outcome.value,
                entry.records_written,
                entry.message,
            ),
        )

    def load_run(self, run_id: str) -> list[ProgressEntry]:
        query = f"""
            SELECT {_COLUMNS}
            FROM reconciliation_progress
            WHERE run_id = %s
            ORDER BY id
        """
        rows = self.pool.execute_query(query, (run_id,))
        return [ProgressEntry.from_record(row) for row in rows]

    def run_ids(self) -> list[str]:
        rows = self.pool.execute_query(
            "SELECT DISTINCT run_id FROM reconciliation_progress ORDER BY run_id"
        )
        return [row["run_id"] for row in rows]

    def succeeded_keys(self, run_id: str) -> set[PartitionKey]:
        query = """
            SELECT DISTINCT settlement_date, variant
            FROM reconciliation_progress
            WHERE run_id = %s AND outcome = 'success'
        """
        rows = self.pool.execute_query(query, (run_id,))
        return {
            PartitionKey(settlement_date=row["settlement_date"], variant=row["variant"])
            for row in rows
        }

    def list_runs(self) -> list[RunOverview]:
        query = """
            SELECT run_id,
                   MIN(attempted_at) AS started_at,
                   MAX(recorded_at) AS finished_at,
                   COUNT(*) FILTER (WHERE outcome = 'success') AS succeeded,
                   COUNT(*) FILTER (WHERE outcome = 'failure') AS failed,
                   COALESCE(SUM(records_written), 0) AS records_written
            FROM reconciliation_progress
            GROUP BY run_id
            ORDER BY MIN(attempted_at)
        """
        return [RunOverview(**row) for row in self.pool.execute_query(query)]
