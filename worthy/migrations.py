"""Versioned schema revisions and the runner that applies them."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .exceptions import MigrationError, PersistenceError, ReferentialIntegrityError, ValidationError
from .storage import SQLiteStorage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Migration:
    version: int
    statements: Tuple[str, ...]
    description: str = ""


_INIT = (
    """CREATE TABLE IF NOT EXISTS accounts (
      id TEXT PRIMARY KEY NOT NULL,
      name TEXT NOT NULL,
      type TEXT NOT NULL,
      currency TEXT NOT NULL,
      starting_balance_minor INTEGER NOT NULL,
      created_at INTEGER NOT NULL,
      archived_at INTEGER
    )""",
    """CREATE TABLE IF NOT EXISTS categories (
      id TEXT PRIMARY KEY NOT NULL,
      name TEXT NOT NULL,
      icon TEXT NOT NULL,
      color TEXT NOT NULL,
      sort_order INTEGER NOT NULL,
      created_at INTEGER NOT NULL,
      archived_at INTEGER
    )""",
    """CREATE TABLE IF NOT EXISTS expenses (
      id TEXT PRIMARY KEY NOT NULL,
      title TEXT NOT NULL,
      amount_minor INTEGER NOT NULL,
      category_id TEXT NOT NULL,
      account_id TEXT NOT NULL,
      date_ts INTEGER NOT NULL,
      slider_0_100 INTEGER NOT NULL,
      notes TEXT,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE RESTRICT,
      FOREIGN KEY (account_id) REFERENCES accounts (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS incomes (
      id TEXT PRIMARY KEY NOT NULL,
      source TEXT NOT NULL,
      amount_minor INTEGER NOT NULL,
      account_id TEXT NOT NULL,
      date_ts INTEGER NOT NULL,
      hours_worked REAL,
      notes TEXT,
      created_at INTEGER NOT NULL,
      updated_at INTEGER NOT NULL,
      FOREIGN KEY (account_id) REFERENCES accounts (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS transfers (
      id TEXT PRIMARY KEY NOT NULL,
      from_account_id TEXT NOT NULL,
      to_account_id TEXT NOT NULL,
      amount_minor INTEGER NOT NULL,
      date_ts INTEGER NOT NULL,
      notes TEXT,
      created_at INTEGER NOT NULL,
      FOREIGN KEY (from_account_id) REFERENCES accounts (id) ON DELETE RESTRICT,
      FOREIGN KEY (to_account_id) REFERENCES accounts (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS budgets (
      id TEXT PRIMARY KEY NOT NULL,
      category_id TEXT NOT NULL,
      amount_minor INTEGER NOT NULL,
      period_type TEXT NOT NULL,
      start_date_ts INTEGER NOT NULL,
      created_at INTEGER NOT NULL,
      archived_at INTEGER,
      FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS savings_buckets (
      id TEXT PRIMARY KEY NOT NULL,
      category_id TEXT NOT NULL,
      name TEXT NOT NULL,
      target_amount_minor INTEGER,
      created_at INTEGER NOT NULL,
      archived_at INTEGER,
      FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS savings_contributions (
      id TEXT PRIMARY KEY NOT NULL,
      bucket_id TEXT NOT NULL,
      amount_minor INTEGER NOT NULL,
      date_ts INTEGER NOT NULL,
      notes TEXT,
      FOREIGN KEY (bucket_id) REFERENCES savings_buckets (id) ON DELETE CASCADE
    )""",
    """CREATE TABLE IF NOT EXISTS wishlist_items (
      id TEXT PRIMARY KEY NOT NULL,
      category_id TEXT NOT NULL,
      title TEXT NOT NULL,
      target_price_minor INTEGER,
      link TEXT,
      priority INTEGER,
      created_at INTEGER NOT NULL,
      archived_at INTEGER,
      FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE RESTRICT
    )""",
    """CREATE TABLE IF NOT EXISTS receipt_inbox (
      id TEXT PRIMARY KEY NOT NULL,
      image_uri TEXT NOT NULL,
      created_at INTEGER NOT NULL,
      status TEXT NOT NULL,
      suggested_title TEXT,
      suggested_amount_minor INTEGER,
      suggested_date_ts INTEGER,
      linked_expense_id TEXT,
      FOREIGN KEY (linked_expense_id) REFERENCES expenses (id) ON DELETE SET NULL
    )""",
    """CREATE TABLE IF NOT EXISTS recurring_rules (
      id TEXT PRIMARY KEY NOT NULL,
      entity_type TEXT NOT NULL,
      entity_id TEXT NOT NULL,
      rrule_text TEXT NOT NULL,
      next_run_ts INTEGER NOT NULL,
      active INTEGER NOT NULL
    )""",
    """CREATE TABLE IF NOT EXISTS settings (
      key TEXT PRIMARY KEY NOT NULL,
      value TEXT NOT NULL
    )""",
    "CREATE INDEX IF NOT EXISTS idx_expenses_date ON expenses (date_ts)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_category ON expenses (category_id)",
    "CREATE INDEX IF NOT EXISTS idx_expenses_account ON expenses (account_id)",
    "CREATE INDEX IF NOT EXISTS idx_incomes_date ON incomes (date_ts)",
    "CREATE INDEX IF NOT EXISTS idx_incomes_account ON incomes (account_id)",
    "CREATE INDEX IF NOT EXISTS idx_receipts_status ON receipt_inbox (status)",
    "CREATE INDEX IF NOT EXISTS idx_wishlist_category ON wishlist_items (category_id)",
    "CREATE INDEX IF NOT EXISTS idx_contrib_bucket ON savings_contributions (bucket_id)",
)

_CURRENCIES = (
    """CREATE TABLE IF NOT EXISTS currencies (
      code TEXT PRIMARY KEY NOT NULL,
      name TEXT NOT NULL,
      symbol TEXT,
      rate_to_base REAL NOT NULL,
      created_at INTEGER NOT NULL,
      archived_at INTEGER
    )""",
    "ALTER TABLE expenses ADD COLUMN currency_code TEXT",
    "ALTER TABLE incomes ADD COLUMN currency_code TEXT",
    """UPDATE expenses
    SET currency_code = (SELECT currency FROM accounts WHERE accounts.id = expenses.account_id)
    WHERE currency_code IS NULL""",
    """UPDATE incomes
    SET currency_code = (SELECT currency FROM accounts WHERE accounts.id = incomes.account_id)
    WHERE currency_code IS NULL""",
)

_AUDIT_COLUMNS = (
    "ALTER TABLE accounts ADD COLUMN updated_at INTEGER",
    "ALTER TABLE categories ADD COLUMN updated_at INTEGER",
    "ALTER TABLE budgets ADD COLUMN updated_at INTEGER",
    "ALTER TABLE wishlist_items ADD COLUMN updated_at INTEGER",
    "UPDATE accounts SET updated_at = created_at WHERE updated_at IS NULL",
    "UPDATE categories SET updated_at = created_at WHERE updated_at IS NULL",
    "UPDATE budgets SET updated_at = created_at WHERE updated_at IS NULL",
    "UPDATE wishlist_items SET updated_at = created_at WHERE updated_at IS NULL",
    "CREATE INDEX IF NOT EXISTS idx_transfers_date ON transfers (date_ts)",
)

MIGRATIONS: Tuple[Migration, ...] = (
    Migration(1, _INIT, "core ledger tables"),
    Migration(2, _CURRENCIES, "currencies and per-entry currency overrides"),
    Migration(3, _AUDIT_COLUMNS, "update timestamps for mutable entities"),
)


class MigrationRunner:
    """Bring a store up to the latest schema revision.

    Each pending revision runs in its own transaction that also advances
    ``PRAGMA user_version``; a failure rolls that revision back and aborts the
    run. A successful run is memoised on the instance.
    """

    def __init__(self, storage: SQLiteStorage, migrations: Sequence[Migration] = MIGRATIONS) -> None:
        versions = [migration.version for migration in migrations]
        if len(set(versions)) != len(versions):
            raise ValidationError("Migration versions must be unique")
        if any(version <= 0 for version in versions):
            raise ValidationError("Migration versions must be positive integers")
        self._storage = storage
        self._migrations = sorted(migrations, key=lambda migration: migration.version)
        self._completed_version: Optional[int] = None

    @property
    def latest_version(self) -> int:
        return self._migrations[-1].version if self._migrations else 0

    def pending(self) -> List[Migration]:
        current = self._storage.user_version()
        return [migration for migration in self._migrations if migration.version > current]

    def run(self) -> List[int]:
        """Apply pending revisions and return the versions applied by this call."""
        if self._completed_version is not None:
            return []

        applied: List[int] = []
        for migration in self.pending():
            try:
                with self._storage.transaction() as tx:
                    for statement in migration.statements:
                        tx.execute(statement)
                    tx.set_user_version(migration.version)
            except (PersistenceError, ReferentialIntegrityError) as exc:
                raise MigrationError(
                    f"Migration {migration.version} failed; schema left at version "
                    f"{self._storage.user_version()}"
                ) from exc
            logger.info("Applied migration %s (%s)", migration.version, migration.description)
            applied.append(migration.version)

        self._completed_version = self._storage.user_version()
        return applied
