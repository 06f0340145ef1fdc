"""
Daily, monthly and yearly bitcoin rollups.

Rebuilt from historical_bitcoin_calculations after a run for the dates and
miner models it touched. Each affected (period, miner_model) row is deleted
and recomputed, so a period whose calculations disappeared keeps no stale total.
"""

from datetime import date

from curtailment_reconciler.observability.logger import get_logger

from .connection import DatabaseConnectionPool

logger = get_logger()


class SummaryRefresher:
    """
    Recomputes bitcoin_daily_summaries, bitcoin_monthly_summaries and
    bitcoin_yearly_summaries.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize refresher.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def refresh_daily(self, cur, days: list[date], variants: list[str]) -> None:
        cur.execute(
            """
            DELETE FROM bitcoin_daily_summaries
            WHERE summary_date = ANY(%s) AND miner_model = ANY(%s)
            """,
            (days, variants),
        )
        cur.execute(
            """
            INSERT INTO bitcoin_daily_summaries (summary_date, miner_model, bitcoin_mined, updated_at)
            SELECT settlement_date, miner_model, SUM(bitcoin_mined), NOW()
            FROM historical_bitcoin_calculations
            WHERE settlement_date = ANY(%s) AND miner_model = ANY(%s)
            GROUP BY settlement_date, miner_model
            """,
            (days, variants),
        )

    def refresh_monthly(self, cur, months: list[str], variants: list[str]) -> None:
        cur.execute(
            "DELETE FROM bitcoin_monthly_summaries WHERE year_month = ANY(%s) AND miner_model = ANY(%s)",
            (months, variants),
        )
        cur.execute(
            """
            INSERT INTO bitcoin_monthly_summaries (year_month, miner_model, bitcoin_mined, updated_at)
            SELECT TO_CHAR(summary_date, 'YYYY-MM'), miner_model, SUM(bitcoin_mined), NOW()
            FROM bitcoin_daily_summaries
            WHERE TO_CHAR(summary_date, 'YYYY-MM') = ANY(%s) AND miner_model = ANY(%s)
            GROUP BY TO_CHAR(summary_date, 'YYYY-MM'), miner_model
            """,
            (months, variants),
        )

    def refresh_yearly(self, cur, years: list[str], variants: list[str]) -> None:
        cur.execute(
            "DELETE FROM bitcoin_yearly_summaries WHERE year = ANY(%s) AND miner_model = ANY(%s)",
            (years, variants),
        )
        cur.execute(
            """
            INSERT INTO bitcoin_yearly_summaries (year, miner_model, bitcoin_mined, updated_at)
            SELECT LEFT(year_month, 4), miner_model, SUM(bitcoin_mined), NOW()
            FROM bitcoin_monthly_summaries
            WHERE LEFT(year_month, 4) = ANY(%s) AND miner_model = ANY(%s)
            GROUP BY LEFT(year_month, 4), miner_model
            """,
            (years, variants),
        )

    def refresh(self, days: list[date], variants: list[str]) -> None:
        """
        Rebuild the rollups that cover the given dates.

        Args:
            days: Settlement dates whose calculations changed
            variants: Miner models whose calculations changed
        """
        days = sorted(set(days))
        variants = sorted(set(variants))
        if not days or not variants:
            return

        months = sorted({d.strftime("%Y-%m") for d in days})
        years = sorted({d.strftime("%Y") for d in days})

        with self.pool.transaction() as cur:
            self.refresh_daily(cur, days, variants)
            self.refresh_monthly(cur, months, variants)
            self.refresh_yearly(cur, years, variants)

        logger.info(
            "Refreshed bitcoin summaries",
            extra={"days": len(days), "months": len(months), "years": len(years), "variants": variants},
        )
