"""
PostgreSQL connection pool management using psycopg3

This module provides a connection pool shared by the scanner, the worker
threads of the batch runner and the progress store.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from curtailment_reconciler.core.config import DatabaseConfig
from curtailment_reconciler.observability.logger import get_logger

logger = get_logger()


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Every pooled connection has a statement_timeout so that no single query
    can hang a worker indefinitely.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
        statement_timeout_ms: int = 60000,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var DB_HOST)
            port: Database port (defaults to env var DB_PORT)
            database: Database name (defaults to env var DB_NAME)
            user: Database user (defaults to env var DB_USER)
            password: Database password (defaults to env var DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection and pool checkout timeout in seconds
            statement_timeout_ms: Per-statement timeout (0 disables)
        """
        self.host = host or os.getenv("DB_HOST", "localhost")
        self.port = port or int(os.getenv("DB_PORT", "5432"))
        self.database = database or os.getenv("DB_NAME", "curtailment")
        self.user = user or os.getenv("DB_USER", "reconciler")
        self.password = password or os.getenv("DB_PASSWORD")

        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min(min_size, max_size)
        self.max_size = max_size
        self.timeout = timeout
        self.statement_timeout_ms = statement_timeout_ms

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"connect_timeout={int(self.timeout)}"
        )

        self._pool: ConnectionPool | None = None

    @classmethod
    def from_config(cls, config: DatabaseConfig) -> "DatabaseConnectionPool":
        return cls(
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
            password=config.password,
            min_size=config.min_size,
            max_size=config.max_size,
            timeout=config.timeout,
            statement_timeout_ms=config.statement_timeout_ms,
        )

    def _configure(self, conn) -> None:
        if self.statement_timeout_ms:
            conn.execute(f"SET statement_timeout = {int(self.statement_timeout_ms)}")
        conn.commit()

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            OperationalError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        last_error = None
        for attempt in range(1, max_retries + 1):
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                configure=self._configure,
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
                self._pool = pool
                logger.info(
                    "Opened database pool",
                    extra={"host": self.host, "database": self.database, "max_size": self.max_size},
                )
                return
            except Exception as e:
                pool.close()
                last_error = e
                logger.warning(
                    "Database connection attempt failed",
                    extra={"attempt": attempt, "max_retries": max_retries, "error": str(e)},
                )
                if attempt < max_retries:
                    time.sleep(retry_delay)

        raise OperationalError(
            f"Failed to connect to database after {max_retries} attempts: {last_error}"
        ) from last_error

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool

        Yields:
            psycopg.Connection: Database connection

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        """
        Get a cursor from a pooled connection

        Yields:
            psycopg.Cursor: Database cursor
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    @contextmanager
    def transaction(self):
        """
        Run a block of statements atomically.

        Commits when the block exits normally and rolls back if it raises.

        Yields:
            psycopg.Cursor: Cursor bound to the transaction
        """
        with self.get_connection() as conn:
            with conn.transaction():
                with conn.cursor() as cur:
                    yield cur

    def execute_query(self, query: str, params: tuple | dict | None = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Args:
            query: SQL SELECT query
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command: str, params: tuple | dict | None = None) -> int:
        """
        Execute an INSERT/UPDATE/DELETE command

        Args:
            command: SQL command
            params: Command parameters (optional)

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
            return rowcount

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
        return False
