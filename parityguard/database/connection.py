"""Database connection management."""

import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Self, TypeVar

from parityguard.config import DatabaseConfig
from parityguard.errors import PersistenceError

from .schema import create_schema

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_lock_error(error: sqlite3.Error) -> bool:
    message = str(error).lower()
    return "database is locked" in message or "database is busy" in message


class Database:
    """SQLite database connection wrapper with context manager support."""

    def __init__(self, db_path: Path, settings: DatabaseConfig | None = None):
        self.db_path = db_path
        self.settings = settings or DatabaseConfig()
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(
                self.db_path,
                timeout=self.settings.busy_timeout_ms / 1000,
            )
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA synchronous = NORMAL")
            self._conn.execute(f"PRAGMA busy_timeout = {int(self.settings.busy_timeout_ms)}")
            create_schema(self._conn)
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        return self.connect()

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> Self:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block inside BEGIN IMMEDIATE, rolling back on any error.

        Nested use joins the outer transaction.
        """
        conn = self.conn
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except sqlite3.Error as e:
            conn.rollback()
            if is_lock_error(e):
                raise
            raise PersistenceError(f"Database operation failed: {e}") from e
        except BaseException:
            conn.rollback()
            raise
        else:
            conn.commit()

    def with_retry(self, func: Callable[[], T]) -> T:
        """Call ``func`` retrying on lock contention with exponential backoff."""
        delay = self.settings.initial_retry_delay_ms / 1000
        max_delay = self.settings.max_retry_delay_ms / 1000
        attempt = 0

        while True:
            try:
                return func()
            except sqlite3.OperationalError as e:
                if not is_lock_error(e):
                    raise PersistenceError(f"Database operation failed: {e}") from e
                attempt += 1
                if attempt > self.settings.max_retries:
                    raise PersistenceError(
                        f"Database still locked after {self.settings.max_retries} retries"
                    ) from e
                logger.warning(
                    "Database locked, retrying in %.0f ms (attempt %d/%d)",
                    delay * 1000,
                    attempt,
                    self.settings.max_retries,
                )
                time.sleep(delay)
                delay = min(delay * 2, max_delay)

    def execute_with_retry(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        def run() -> sqlite3.Cursor:
            cursor = self.conn.execute(sql, params)
            self.conn.commit()
            return cursor

        return self.with_retry(run)

    def quick_check(self) -> bool:
        """Fast integrity probe. Lock contention propagates as sqlite3.OperationalError."""
        row = self.conn.execute("PRAGMA quick_check").fetchone()
        return row is not None and row[0] == "ok"
