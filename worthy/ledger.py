"""Composition root wiring one storage handle into every ledger service."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Union

from .analytics import AnalyticsService
from .balances import BalanceService
from .migrations import MigrationRunner
from .planning import (
    BudgetService,
    ReceiptInboxService,
    RecurringRuleService,
    SavingsService,
    WishlistService,
)
from .seed import seed_defaults
from .services import (
    AccountService,
    CategoryService,
    CurrencyService,
    ExpenseService,
    IncomeService,
    SettingsService,
    TransactionService,
    TransferService,
)
from .storage import MEMORY, SQLiteStorage

logger = logging.getLogger(__name__)


class Ledger:
    """Bundles the services of a single ledger database."""

    def __init__(self, storage: SQLiteStorage, base_currency: str = "USD") -> None:
        self.storage = storage
        self.migrations = MigrationRunner(storage)
        self.settings = SettingsService(storage, default_base_currency=base_currency)
        self.currencies = CurrencyService(storage, self.settings)
        self.accounts = AccountService(storage, self.settings)
        self.categories = CategoryService(storage)
        self.expenses = ExpenseService(storage)
        self.incomes = IncomeService(storage)
        self.transfers = TransferService(storage)
        self.transactions = TransactionService(storage)
        self.budgets = BudgetService(storage, self.currencies)
        self.savings = SavingsService(storage)
        self.wishlist = WishlistService(storage)
        self.recurring = RecurringRuleService(storage)
        self.receipts = ReceiptInboxService(storage)
        self.balances = BalanceService(storage, self.accounts, self.currencies)
        self.analytics = AnalyticsService(storage, self.currencies, self.settings)

    @classmethod
    def open(
        cls,
        path: Union[str, Path] = MEMORY,
        *,
        base_currency: str = "USD",
        seed: bool = True,
    ) -> "Ledger":
        """Open (or create) a ledger, migrate it to the latest schema and seed defaults."""
        ledger = cls(SQLiteStorage(path), base_currency=base_currency)
        try:
            ledger.migrate()
            if seed:
                seed_defaults(ledger.storage, base_currency)
        except Exception:
            ledger.close()
            raise
        logger.debug("Opened ledger at %s", ledger.storage.path)
        return ledger

    def migrate(self) -> List[int]:
        return self.migrations.run()

    def seed(self) -> List[str]:
        return seed_defaults(self.storage, self.settings.base_currency())

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> "Ledger":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()
