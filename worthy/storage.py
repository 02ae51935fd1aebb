"""SQLite persistence handle for the ledger services."""

from __future__ import annotations

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union

from .exceptions import PersistenceError, ReferentialIntegrityError

logger = logging.getLogger(__name__)

MEMORY = ":memory:"


class SQLiteStorage:
    """Single embedded-database handle shared by every service of one ledger.

    The connection runs in autocommit mode; ``transaction()`` opens an explicit
    BEGIN/COMMIT block so schema changes roll back together with data changes.
    A re-entrant lock serialises statements and transactions across threads.
    """

    def __init__(self, path: Union[str, Path] = MEMORY) -> None:
        self._path = str(path)
        if self._path != MEMORY:
            Path(self._path).parent.mkdir(parents=True, exist_ok=True)
        try:
            self._conn = sqlite3.connect(self._path, isolation_level=None, check_same_thread=False)
        except sqlite3.Error as exc:
            raise PersistenceError(f"Unable to open database at {self._path}") from exc
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()
        self._depth = 0
        # Foreign-key enforcement is per-connection and cannot change inside a transaction.
        self._conn.execute("PRAGMA foreign_keys = ON")

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    # Queries ----------------------------------------------------------------
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Run a write statement and return the affected row count."""
        with self._lock:
            return self._run(sql, params).rowcount

    def query_all(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._run(sql, params).fetchall()

    def query_one(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._run(sql, params).fetchone()

    def scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        row = self.query_one(sql, params)
        return None if row is None else row[0]

    # Schema version ---------------------------------------------------------
    def user_version(self) -> int:
        return int(self.scalar("PRAGMA user_version"))

    def set_user_version(self, version: int) -> None:
        # PRAGMA arguments cannot be bound parameters.
        self.execute(f"PRAGMA user_version = {int(version)}")

    # Transactions -----------------------------------------------------------
    @contextmanager
    def transaction(self) -> Iterator["SQLiteStorage"]:
        """Atomic block; nested calls join the outermost transaction.

        The lock is held for the whole block, so other threads wait instead of
        joining a transaction they did not open.
        """
        with self._lock:
            if self._depth:
                self._depth += 1
                try:
                    yield self
                finally:
                    self._depth -= 1
                return

            self._run("BEGIN", ())
            self._depth = 1
            try:
                yield self
            except BaseException:
                self._depth = 0
                self._conn.execute("ROLLBACK")
                raise
            self._depth = 0
            self._run("COMMIT", ())

    def _run(self, sql: str, params: Sequence[Any]) -> sqlite3.Cursor:
        try:
            return self._conn.execute(sql, tuple(params))
        except sqlite3.IntegrityError as exc:
            if "FOREIGN KEY" in str(exc).upper():
                raise ReferentialIntegrityError(
                    "Operation rejected: the row is referenced by other records or references a missing row"
                ) from exc
            raise PersistenceError(f"Integrity error: {exc}") from exc
        except OverflowError as exc:
            raise PersistenceError(f"Value out of range for SQLite: {exc}") from exc
        except sqlite3.Error as exc:
            logger.error("Database error while executing %r: %s", sql.split("\n", 1)[0], exc)
            raise PersistenceError(f"Database error: {exc}") from exc
