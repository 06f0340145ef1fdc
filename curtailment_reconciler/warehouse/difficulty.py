"""
Network difficulty observations stored in the network_difficulty table.
"""

from datetime import date
from decimal import Decimal

from .connection import DatabaseConnectionPool


class NetworkDifficultyRepository:
    """
    Difficulty source backed by PostgreSQL.

    Satisfies the DifficultySource protocol used by DifficultyTable.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    def load_difficulties(self) -> dict[date, Decimal]:
        rows = self.pool.execute_query(
            "SELECT observed_on, difficulty FROM network_difficulty ORDER BY observed_on"
        )
        return {row["observed_on"]: Decimal(row["difficulty"]) for row in rows}

    def upsert_difficulty(self, observed_on: date, difficulty: int | Decimal) -> None:
        """
        Store or correct the difficulty observed on a date.

        Raises:
            ValueError: If difficulty is not positive
        """
        if Decimal(difficulty) <= 0:
            raise ValueError(f"difficulty must be positive, got {difficulty}")
        self.pool.execute_command(
            """
            INSERT INTO network_difficulty (observed_on, difficulty)
            VALUES (%s, %s)
            ON CONFLICT (observed_on) DO UPDATE SET difficulty = EXCLUDED.difficulty
            """,
            (observed_on, Decimal(difficulty)),
        )
