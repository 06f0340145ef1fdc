"""
Pytest configuration and fixtures for curtailment-reconciler tests

Unit tests run against the in-memory fakes defined here; integration and E2E
tests run against PostgreSQL in a testcontainer.
"""
import threading
from collections import Counter, defaultdict
from datetime import date
from decimal import Decimal
from typing import Generator

import psycopg
import pytest

from curtailment_reconciler.core.config import RetryConfig, RunConfig
from curtailment_reconciler.core.models import DerivedRecord, PartitionKey, ProgressEntry, SourceRecord
from curtailment_reconciler.derivation import DEFAULT_DIFFICULTY, DifficultyTable, StaticDifficultySource
from curtailment_reconciler.reconcile import ProgressStore, ReconciliationEngine, RetryPolicy
from curtailment_reconciler.reconcile.reprocessor import aggregate_volumes
from curtailment_reconciler.warehouse.schema_mgmt import load_schema_sql


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests that test the full reconciliation flow"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# TEST DATA HELPERS
# =======================

SCENARIO_DATE = date(2025, 3, 21)


def make_source_records(
    day: date,
    periods: int = 48,
    farms: tuple[str, ...] = ("T_VKNGW-1",),
    volume: str = "-42.5",
) -> list[SourceRecord]:
    """One curtailment row per (period, farm)."""
    return [
        SourceRecord(
            settlement_date=day,
            settlement_period=period,
            farm_id=farm,
            lead_party_name="Test Wind LLP",
            volume=Decimal(volume),
            payment=Decimal("-100"),
        )
        for period in range(1, periods + 1)
        for farm in farms
    ]


# =======================
# IN-MEMORY FAKES
# =======================

class FakeCurtailmentSource:
    """
    In-memory stand-in for CurtailmentRepository.

    Failure injection:
        fetch_errors[date]: exceptions raised by successive fetches of that date
        fail_bulk_count: grouped counts over several dates (or all) raise
        fail_count_dates: counts that include one of these dates raise
        fail_list_dates: list_source_dates raises
    """

    def __init__(self, records: list[SourceRecord] | None = None):
        self.records: dict[date, list[SourceRecord]] = defaultdict(list)
        self.fetch_errors: dict[date, list[Exception]] = {}
        self.fail_bulk_count = False
        self.fail_count_dates: set[date] = set()
        self.fail_list_dates = False
        self.fetch_calls: Counter = Counter()
        self._lock = threading.Lock()
        self.add(records or [])

    def add(self, records: list[SourceRecord]) -> None:
        for record in records:
            self.records[record.settlement_date].append(record)

    def fetch_source_records(self, settlement_date: date) -> list[SourceRecord]:
        with self._lock:
            self.fetch_calls[settlement_date] += 1
            errors = self.fetch_errors.get(settlement_date)
            if errors:
                raise errors.pop(0)
        return list(self.records.get(settlement_date, []))

    def count_source_groups(self, dates: list[date] | None = None) -> dict[date, int]:
        if self.fail_bulk_count and (dates is None or len(dates) > 1):
            raise RuntimeError("grouped count timed out")
        wanted = self.records.keys() if dates is None else dates
        if self.fail_count_dates.intersection(wanted):
            raise RuntimeError("count failed")
        counts = {}
        for day in wanted:
            groups = len(aggregate_volumes(self.records.get(day, [])))
            if groups:
                counts[day] = groups
        return counts

    def list_source_dates(self) -> list[date]:
        if self.fail_list_dates:
            raise RuntimeError("source unavailable")
        return sorted(d for d, rows in self.records.items() if rows)


class FakeCalculationStore:
    """
    In-memory stand-in for CalculationRepository keyed by natural key.

    write_errors[key] makes replace_partition for that partition raise.
    """

    def __init__(self):
        self.rows: dict[tuple, DerivedRecord] = {}
        self.write_errors: dict[PartitionKey, Exception] = {}
        self.replace_calls: Counter = Counter()
        self._lock = threading.Lock()

    def count_derived_groups(self, dates, variants) -> dict[tuple[date, str], int]:
        counts: Counter = Counter()
        with self._lock:
            for (day, _period, _farm, variant) in self.rows:
                if variant in variants and (dates is None or day in dates):
                    counts[(day, variant)] += 1
        return dict(counts)

    def replace_partition(self, key: PartitionKey, records: list[DerivedRecord]) -> int:
        with self._lock:
            self.replace_calls[key] += 1
            if key in self.write_errors:
                raise self.write_errors[key]
            for natural_key in [k for k in self.rows if k[0] == key.settlement_date and k[3] == key.variant]:
                del self.rows[natural_key]
            for record in records:
                self.rows[record.natural_key] = record
        return len(records)

    def fetch_partition(self, key: PartitionKey) -> list[DerivedRecord]:
        with self._lock:
            return sorted(
                (r for k, r in self.rows.items() if k[0] == key.settlement_date and k[3] == key.variant),
                key=lambda r: (r.settlement_period, r.farm_id),
            )

    def seed(self, key: PartitionKey, periods: range, farm_id: str = "T_VKNGW-1") -> None:
        """Insert placeholder derived rows for some periods of a partition."""
        for period in periods:
            record = DerivedRecord(
                settlement_date=key.settlement_date,
                settlement_period=period,
                farm_id=farm_id,
                miner_model=key.variant,
                bitcoin_mined=Decimal("0.1"),
                difficulty=Decimal(DEFAULT_DIFFICULTY),
            )
            self.rows[record.natural_key] = record


class MemoryProgressStore(ProgressStore):
    """Thread-safe in-memory progress log; fail_writes makes record() raise."""

    def __init__(self):
        self.entries: list[ProgressEntry] = []
        self.fail_writes = False
        self._lock = threading.Lock()

    def record(self, entry: ProgressEntry) -> None:
        if self.fail_writes:
            raise OSError("disk full")
        with self._lock:
            self.entries.append(entry)

    def load_run(self, run_id: str) -> list[ProgressEntry]:
        with self._lock:
            return [e for e in self.entries if e.run_id == run_id]

    def run_ids(self) -> list[str]:
        with self._lock:
            return sorted({e.run_id for e in self.entries})


# =======================
# COMPONENT FIXTURES
# =======================

@pytest.fixture
def no_sleep_retry() -> RetryPolicy:
    """Retry policy with three attempts and no waiting"""
    return RetryPolicy(
        RetryConfig(max_attempts=3, base_delay_seconds=0.0, max_delay_seconds=0.0, jitter_seconds=0.0),
        sleep=lambda seconds: None,
    )


@pytest.fixture
def difficulty_table() -> DifficultyTable:
    """Difficulty table with one observation before the scenario date"""
    source = StaticDifficultySource({"2025-03-01": 112149504190349})
    return DifficultyTable(source).load()


@pytest.fixture
def source() -> FakeCurtailmentSource:
    return FakeCurtailmentSource()


@pytest.fixture
def store() -> FakeCalculationStore:
    return FakeCalculationStore()


@pytest.fixture
def progress_store() -> MemoryProgressStore:
    return MemoryProgressStore()


@pytest.fixture
def make_engine(source, store, progress_store, difficulty_table, no_sleep_retry):
    """
    Factory for engines wired to the in-memory fakes

    Usage:
        engine = make_engine(variants=["S19J_PRO"], batch_size=2)
    """
    def _make(**config_fields) -> ReconciliationEngine:
        config_fields.setdefault("run_id", "test_run")
        config_fields.setdefault("inter_batch_delay_seconds", 0.0)
        config_fields.setdefault("refresh_summaries", False)
        config = RunConfig(**config_fields)
        return ReconciliationEngine(
            config=config,
            source=source,
            derived=store,
            progress_store=progress_store,
            difficulty=difficulty_table,
            retry_policy=no_sleep_retry,
        )

    return _make


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

DB_USER = "test_reconciler"
DB_PASSWORD = "test_password"
DB_NAME = "test_curtailment"


@pytest.fixture(scope="session")
def postgres_container():
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with the reconciliation schema applied
    """
    from testcontainers.postgres import PostgresContainer

    container = PostgresContainer(
        image="postgres:16.2-alpine",
        username=DB_USER,
        password=DB_PASSWORD,
        dbname=DB_NAME,
        driver=None,
    )
    try:
        container.start()
    except Exception as e:
        pytest.skip(f"Docker is not available: {e}")

    try:
        with psycopg.connect(container.get_connection_url()) as conn:
            with conn.cursor() as cur:
                cur.execute(load_schema_sql())
            conn.commit()
        yield container
    finally:
        container.stop()


@pytest.fixture
def db_pool(postgres_container) -> Generator:
    """
    Open DatabaseConnectionPool on the test container

    Yields:
        DatabaseConnectionPool
    """
    from curtailment_reconciler.warehouse.connection import DatabaseConnectionPool

    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database=DB_NAME,
        user=DB_USER,
        password=DB_PASSWORD,
        min_size=1,
        max_size=5,
    )
    pool.open()
    yield pool
    pool.close()


@pytest.fixture
def clean_db(db_pool):
    """
    Truncate every reconciliation table before the test

    Yields:
        The open pool
    """
    with db_pool.transaction() as cur:
        cur.execute(
            """
            TRUNCATE TABLE curtailment_records, historical_bitcoin_calculations,
                network_difficulty, reconciliation_progress, bitcoin_daily_summaries,
                bitcoin_monthly_summaries, bitcoin_yearly_summaries
            RESTART IDENTITY
            """
        )
    yield db_pool


def insert_source_records(pool, records: list[SourceRecord]) -> None:
    """Load curtailment rows the way ingestion would."""
    with pool.transaction() as cur:
        cur.executemany(
            """
            INSERT INTO curtailment_records
                (settlement_date, settlement_period, farm_id, lead_party_name, volume, payment)
            VALUES (%s, %s, %s, %s, %s, %s)
            """,
            [
                (r.settlement_date, r.settlement_period, r.farm_id, r.lead_party_name, r.volume, r.payment)
                for r in records
            ],
        )
