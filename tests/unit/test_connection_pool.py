"""
Unit tests for database connection pool

Tests the PostgreSQL connection pool functionality using testcontainers.
"""
import pytest

from conftest import DB_NAME, DB_PASSWORD, DB_USER
from curtailment_reconciler.core.config import DatabaseConfig
from curtailment_reconciler.warehouse.connection import DatabaseConnectionPool


def container_pool(postgres_container, **kwargs) -> DatabaseConnectionPool:
    return DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database=DB_NAME,
        user=DB_USER,
        password=DB_PASSWORD,
        **kwargs,
    )


@pytest.mark.unit
def test_password_is_required(monkeypatch):
    """Test the pool refuses to start without a password"""
    monkeypatch.delenv("DB_PASSWORD", raising=False)
    with pytest.raises(ValueError):
        DatabaseConnectionPool(host="localhost")


@pytest.mark.unit
def test_env_defaults(monkeypatch):
    """Test connection settings fall back to DB_* environment variables"""
    monkeypatch.setenv("DB_HOST", "db.internal")
    monkeypatch.setenv("DB_PORT", "6543")
    monkeypatch.setenv("DB_PASSWORD", "from_env")
    pool = DatabaseConnectionPool()
    assert pool.host == "db.internal"
    assert pool.port == 6543
    assert "password=from_env" in pool.conninfo


@pytest.mark.unit
def test_from_config():
    """Test building a pool from DatabaseConfig"""
    config = DatabaseConfig(host="db", port=5433, password="secret", min_size=4, max_size=2)
    pool = DatabaseConnectionPool.from_config(config)
    assert pool.port == 5433
    # min_size never exceeds max_size
    assert pool.min_size == 2


@pytest.mark.unit
def test_pool_not_open():
    """Test using the pool before open() raises"""
    pool = DatabaseConnectionPool(password="secret")
    with pytest.raises(RuntimeError):
        pool.execute_query("SELECT 1")


@pytest.mark.integration
def test_connection_pool_initialization(postgres_container):
    """Test that connection pool initializes correctly"""
    pool = container_pool(postgres_container, min_size=2, max_size=5)

    pool.open()

    assert pool._pool is not None
    assert pool._pool.min_size == 2
    assert pool._pool.max_size == 5

    pool.close()
    assert pool._pool is None


@pytest.mark.integration
def test_execute_query(postgres_container):
    """Test executing a query using the pool"""
    pool = container_pool(postgres_container)
    pool.open()

    result = pool.execute_query("SELECT 42 as answer")
    assert result == [{"answer": 42}]

    pool.close()


@pytest.mark.integration
def test_execute_command(clean_db):
    """Test executing INSERT commands"""
    rowcount = clean_db.execute_command(
        "INSERT INTO network_difficulty (observed_on, difficulty) VALUES (%s, %s)",
        ("2025-03-01", 112149504190349),
    )

    assert rowcount == 1
    result = clean_db.execute_query("SELECT difficulty FROM network_difficulty")
    assert result[0]["difficulty"] == 112149504190349


@pytest.mark.integration
def test_context_manager(postgres_container):
    """Test using pool as context manager"""
    with container_pool(postgres_container) as pool:
        with pool.get_cursor() as cur:
            cur.execute("SELECT 1 as test")
            assert cur.fetchone()["test"] == 1
    assert pool._pool is None
