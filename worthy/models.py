"""Data models for the ledger domain."""

from __future__ import annotations

import time
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

__all__ = [
    "Account",
    "AccountBalance",
    "Budget",
    "BudgetProgress",
    "Category",
    "Currency",
    "Expense",
    "ExpenseView",
    "Income",
    "IncomeView",
    "ReceiptInboxItem",
    "RecurringRule",
    "SavingsBucket",
    "SavingsBucketView",
    "SavingsContribution",
    "TransactionEntry",
    "Transfer",
    "TransferView",
    "WishlistItem",
    "WishlistItemView",
    "from_millis",
    "now_ms",
    "parse_datetime",
    "to_millis",
]

RowT = TypeVar("RowT", bound="_Row")


def parse_datetime(value: str) -> datetime:
    """Parse ISO 8601 datetime strings with optional trailing Z into an aware datetime.

    Naive values are interpreted in the local timezone, matching how event dates
    are bucketed by the analytics layer.
    """
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return dt


def to_millis(dt: datetime) -> int:
    if dt.tzinfo is None:
        dt = dt.astimezone()
    return int(round(dt.timestamp() * 1000))


def from_millis(value: int) -> datetime:
    """Local-time datetime for a millisecond timestamp."""
    return datetime.fromtimestamp(value / 1000)


def now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class _Row:
    """Shared row hydration for sqlite3.Row and plain mappings."""

    @classmethod
    def from_row(cls: Type[RowT], row: Mapping[str, Any]) -> RowT:
        keys = set(row.keys())
        values = {f.name: row[f.name] for f in fields(cls) if f.name in keys}
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Account(_Row):
    id: str
    name: str
    type: str
    currency: str
    starting_balance_minor: int
    created_at: int
    updated_at: Optional[int] = None
    archived_at: Optional[int] = None

    @property
    def archived(self) -> bool:
        return self.archived_at is not None


@dataclass(frozen=True)
class AccountBalance(_Row):
    account_id: str
    name: str
    currency: str
    balance_minor: int
    balance_base_minor: int


@dataclass(frozen=True)
class Category(_Row):
    id: str
    name: str
    icon: str
    color: str
    sort_order: int
    created_at: int
    updated_at: Optional[int] = None
    archived_at: Optional[int] = None


@dataclass(frozen=True)
class Currency(_Row):
    code: str
    name: str
    rate_to_base: float
    created_at: int
    symbol: Optional[str] = None
    archived_at: Optional[int] = None


@dataclass(frozen=True)
class Expense(_Row):
    id: str
    title: str
    amount_minor: int
    category_id: str
    account_id: str
    date_ts: int
    slider_0_100: int
    created_at: int
    updated_at: int
    currency_code: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ExpenseView(Expense):
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    category_icon: Optional[str] = None
    account_name: Optional[str] = None
    account_currency: Optional[str] = None

    @property
    def effective_currency(self) -> Optional[str]:
        return self.currency_code or self.account_currency


@dataclass(frozen=True)
class Income(_Row):
    id: str
    source: str
    amount_minor: int
    account_id: str
    date_ts: int
    created_at: int
    updated_at: int
    currency_code: Optional[str] = None
    hours_worked: Optional[float] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class IncomeView(Income):
    account_name: Optional[str] = None
    account_currency: Optional[str] = None

    @property
    def effective_currency(self) -> Optional[str]:
        return self.currency_code or self.account_currency


@dataclass(frozen=True)
class Transfer(_Row):
    id: str
    from_account_id: str
    to_account_id: str
    amount_minor: int
    date_ts: int
    created_at: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class TransferView(Transfer):
    from_account_name: Optional[str] = None
    to_account_name: Optional[str] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class TransactionEntry(_Row):
    """One row of the merged activity feed."""

    id: str
    type: str
    title: str
    amount_minor: int
    date_ts: int
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    category_icon: Optional[str] = None
    account_name: Optional[str] = None
    account_currency: Optional[str] = None
    slider_0_100: Optional[int] = None
    notes: Optional[str] = None
    from_account_name: Optional[str] = None
    to_account_name: Optional[str] = None


@dataclass(frozen=True)
class Budget(_Row):
    id: str
    category_id: str
    amount_minor: int
    period_type: str
    start_date_ts: int
    created_at: int
    updated_at: Optional[int] = None
    archived_at: Optional[int] = None
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    category_icon: Optional[str] = None


@dataclass(frozen=True)
class BudgetProgress(_Row):
    budget_id: str
    category_id: str
    period_start: int
    period_end: int
    limit_minor: int
    spent_minor: int

    @property
    def remaining_minor(self) -> int:
        return self.limit_minor - self.spent_minor

    @property
    def over_budget(self) -> bool:
        return self.spent_minor > self.limit_minor

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["remaining_minor"] = self.remaining_minor
        payload["over_budget"] = self.over_budget
        return payload


@dataclass(frozen=True)
class SavingsBucket(_Row):
    id: str
    category_id: str
    name: str
    created_at: int
    target_amount_minor: Optional[int] = None
    archived_at: Optional[int] = None


@dataclass(frozen=True)
class SavingsBucketView(SavingsBucket):
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    category_icon: Optional[str] = None
    saved_minor: int = 0


@dataclass(frozen=True)
class SavingsContribution(_Row):
    id: str
    bucket_id: str
    amount_minor: int
    date_ts: int
    notes: Optional[str] = None


@dataclass(frozen=True)
class WishlistItem(_Row):
    id: str
    category_id: str
    title: str
    created_at: int
    target_price_minor: Optional[int] = None
    link: Optional[str] = None
    priority: Optional[int] = None
    updated_at: Optional[int] = None
    archived_at: Optional[int] = None


@dataclass(frozen=True)
class WishlistItemView(WishlistItem):
    category_name: Optional[str] = None
    category_color: Optional[str] = None
    category_icon: Optional[str] = None
    saved_minor: int = 0


@dataclass(frozen=True)
class RecurringRule(_Row):
    id: str
    entity_type: str
    entity_id: str
    rrule_text: str
    next_run_ts: int
    active: bool

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "RecurringRule":
        rule = super().from_row(row)
        # SQLite stores booleans as 0/1.
        return RecurringRule(**{**asdict(rule), "active": bool(rule.active)})


@dataclass(frozen=True)
class ReceiptInboxItem(_Row):
    id: str
    image_uri: str
    created_at: int
    status: str
    suggested_title: Optional[str] = None
    suggested_amount_minor: Optional[int] = None
    suggested_date_ts: Optional[int] = None
    linked_expense_id: Optional[str] = None
