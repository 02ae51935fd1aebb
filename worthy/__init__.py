"""Core ledger, currency and analytics package for the Worthy finance tracker."""

from .analytics import AnalyticsService, WrapSummary, format_life_cost
from .balances import BalanceService
from .currency import RateTable, between, to_base
from .exceptions import (
    MigrationError,
    PersistenceError,
    RecordNotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from .ledger import Ledger
from .migrations import MIGRATIONS, Migration, MigrationRunner
from .models import Account, Category, Currency, Expense, Income, Transfer
from .storage import SQLiteStorage

__all__ = [
    "Account",
    "Category",
    "Currency",
    "Expense",
    "Income",
    "Transfer",
    "AnalyticsService",
    "BalanceService",
    "Ledger",
    "Migration",
    "MigrationRunner",
    "MIGRATIONS",
    "RateTable",
    "SQLiteStorage",
    "WrapSummary",
    "between",
    "format_life_cost",
    "to_base",
    "MigrationError",
    "PersistenceError",
    "RecordNotFoundError",
    "ReferentialIntegrityError",
    "ValidationError",
]
