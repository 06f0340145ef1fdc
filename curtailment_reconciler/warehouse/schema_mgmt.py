"""
Schema management for the reconciliation tables.

Applies the bundled schema.sql and reports which expected tables exist.
"""

from pathlib import Path

from curtailment_reconciler.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger()

SCHEMA_PATH = Path(__file__).with_name("schema.sql")

EXPECTED_TABLES = (
    "curtailment_records",
    "historical_bitcoin_calculations",
    "network_difficulty",
    "reconciliation_progress",
    "bitcoin_daily_summaries",
    "bitcoin_monthly_summaries",
    "bitcoin_yearly_summaries",
)


def load_schema_sql() -> str:
    return SCHEMA_PATH.read_text()


class SchemaManager:
    """
    Creates and inspects the tables the reconciler depends on.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize schema manager.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def ensure_schema(self) -> None:
        """
        Create any missing tables and indexes.

        Safe to call on every start: all DDL uses IF NOT EXISTS.
        """
        missing = self.missing_tables()
        with self.pool.transaction() as cur:
            cur.execute(load_schema_sql())
        if missing:
            logger.info("Created missing tables", extra={"tables": missing})
        else:
            logger.info("Schema ensured", extra={"tables": len(EXPECTED_TABLES)})

    def missing_tables(self) -> list[str]:
        """
        List expected tables that do not exist in the current schema.

        Returns:
            Table names, in EXPECTED_TABLES order
        """
        query = """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = current_schema() AND table_name = ANY(%s)
        """
        rows = self.pool.execute_query(query, (list(EXPECTED_TABLES),))
        present = {row["table_name"] for row in rows}
        return [name for name in EXPECTED_TABLES if name not in present]


def ensure_schema(pool: DatabaseConnectionPool) -> None:
    SchemaManager(pool).ensure_schema()
