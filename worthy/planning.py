"""Planning services: budgets, savings goals, wishlist, recurring rules and the receipt inbox."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional

from .currency import round_minor, to_base_exact
from .exceptions import RecordNotFoundError, ValidationError
from .models import (
    Budget,
    BudgetProgress,
    ReceiptInboxItem,
    RecurringRule,
    SavingsBucketView,
    SavingsContribution,
    WishlistItemView,
    now_ms,
)
from .periods import period_range
from .services import (
    CurrencyService,
    Payload,
    Validator,
    clean_payload,
    new_id,
    require_live,
    update_columns,
)
from .storage import SQLiteStorage
from .validators import (
    PERIOD_TYPES,
    RECEIPT_STATUSES,
    RECURRING_ENTITY_TYPES,
    parse_minor_amount,
    parse_optional_minor_amount,
    validate_enum,
    validate_identifier,
    validate_optional_int,
    validate_optional_str,
    validate_optional_timestamp,
    validate_required_str,
    validate_timestamp,
)


class BudgetService:
    """Spending limits per category and period."""

    _VALIDATORS: Dict[str, Validator] = {
        "category_id": lambda v: validate_identifier(v, "category_id"),
        "amount_minor": lambda v: parse_minor_amount(v, "amount_minor"),
        "period_type": lambda v: validate_enum(v, "period_type", PERIOD_TYPES),
        "start_date_ts": lambda v: validate_timestamp(v, "start_date_ts"),
    }

    _SELECT = """
    SELECT b.*, c.name AS category_name, c.color AS category_color, c.icon AS category_icon
    FROM budgets b
    JOIN categories c ON c.id = b.category_id
    """

    def __init__(self, storage: SQLiteStorage, currencies: CurrencyService) -> None:
        self._storage = storage
        self._currencies = currencies

    def add(self, payload: Payload) -> Budget:
        now = now_ms()
        payload = {"period_type": "month", "start_date_ts": now, **payload}
        data = clean_payload(payload, self._VALIDATORS, required=("category_id", "amount_minor"))
        require_live(self._storage, "categories", data["category_id"], "Category")
        budget_id = new_id("bud_")
        self._storage.execute(
            """INSERT INTO budgets (id, category_id, amount_minor, period_type, start_date_ts, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                budget_id,
                data["category_id"],
                data["amount_minor"],
                data["period_type"],
                data["start_date_ts"],
                now,
                now,
            ),
        )
        return self.get(budget_id)

    def get(self, budget_id: str) -> Budget:
        row = self._storage.query_one(f"{self._SELECT} WHERE b.id = ?", (budget_id,))
        if row is None:
            raise RecordNotFoundError(f"Budget {budget_id} not found")
        return Budget.from_row(row)

    def list(self, include_archived: bool = False) -> List[Budget]:
        where = "" if include_archived else "WHERE b.archived_at IS NULL"
        rows = self._storage.query_all(f"{self._SELECT} {where} ORDER BY b.created_at DESC, b.rowid DESC")
        return [Budget.from_row(row) for row in rows]

    def update(self, budget_id: str, changes: Payload) -> Budget:
        existing = self.get(budget_id)
        data = clean_payload(changes, self._VALIDATORS)
        if not data:
            return existing
        if "category_id" in data:
            require_live(self._storage, "categories", data["category_id"], "Category")
        update_columns(self._storage, "budgets", budget_id, data)
        return self.get(budget_id)

    def archive(self, budget_id: str) -> Budget:
        self.get(budget_id)
        update_columns(self._storage, "budgets", budget_id, {"archived_at": now_ms()})
        return self.get(budget_id)

    def progress(self, budget_id: str, reference: Optional[datetime] = None) -> BudgetProgress:
        """Base-currency spend against the limit for the period containing ``reference``."""
        budget = self.get(budget_id)
        start, end = period_range(reference, budget.period_type)
        start = max(start, budget.start_date_ts)
        rates = self._currencies.rate_table()
        rows = self._storage.query_all(
            """SELECT e.amount_minor, COALESCE(e.currency_code, a.currency) AS currency_code
            FROM expenses e
            JOIN accounts a ON a.id = e.account_id
            WHERE e.category_id = ? AND e.date_ts BETWEEN ? AND ? AND a.archived_at IS NULL""",
            (budget.category_id, start, end),
        )
        spent = sum(
            (to_base_exact(row["amount_minor"], row["currency_code"], rates, rates.base) for row in rows),
            Decimal(0),
        )
        return BudgetProgress(
            budget_id=budget.id,
            category_id=budget.category_id,
            period_start=start,
            period_end=end,
            limit_minor=budget.amount_minor,
            spent_minor=round_minor(spent),
        )


class SavingsService:
    """Savings buckets and their dated contributions."""

    _BUCKET_VALIDATORS: Dict[str, Validator] = {
        "category_id": lambda v: validate_identifier(v, "category_id"),
        "name": lambda v: validate_required_str(v, "name", 50),
        "target_amount_minor": lambda v: parse_optional_minor_amount(v, "target_amount_minor"),
    }

    _CONTRIBUTION_VALIDATORS: Dict[str, Validator] = {
        "bucket_id": lambda v: validate_identifier(v, "bucket_id"),
        "amount_minor": lambda v: parse_minor_amount(v, "amount_minor"),
        "date_ts": lambda v: validate_timestamp(v, "date_ts"),
        "notes": lambda v: validate_optional_str(v, "notes", 500),
    }

    _SELECT = """
    SELECT b.*, c.name AS category_name, c.color AS category_color, c.icon AS category_icon,
      COALESCE(SUM(sc.amount_minor), 0) AS saved_minor
    FROM savings_buckets b
    JOIN categories c ON c.id = b.category_id
    LEFT JOIN savings_contributions sc ON sc.bucket_id = b.id
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def add_bucket(self, payload: Payload) -> SavingsBucketView:
        data = clean_payload(payload, self._BUCKET_VALIDATORS, required=("category_id", "name"))
        require_live(self._storage, "categories", data["category_id"], "Category")
        bucket_id = new_id("sav_")
        self._storage.execute(
            """INSERT INTO savings_buckets (id, category_id, name, target_amount_minor, created_at)
            VALUES (?, ?, ?, ?, ?)""",
            (bucket_id, data["category_id"], data["name"], data.get("target_amount_minor"), now_ms()),
        )
        return self.get_bucket(bucket_id)

    def get_bucket(self, bucket_id: str) -> SavingsBucketView:
        row = self._storage.query_one(f"{self._SELECT} WHERE b.id = ? GROUP BY b.id", (bucket_id,))
        if row is None:
            raise RecordNotFoundError(f"Savings bucket {bucket_id} not found")
        return SavingsBucketView.from_row(row)

    def list_buckets(self, include_archived: bool = False) -> List[SavingsBucketView]:
        where = "" if include_archived else "WHERE b.archived_at IS NULL"
        rows = self._storage.query_all(
            f"{self._SELECT} {where} GROUP BY b.id ORDER BY b.created_at DESC, b.rowid DESC"
        )
        return [SavingsBucketView.from_row(row) for row in rows]

    def archive_bucket(self, bucket_id: str) -> SavingsBucketView:
        self.get_bucket(bucket_id)
        update_columns(self._storage, "savings_buckets", bucket_id, {"archived_at": now_ms()}, touch=False)
        return self.get_bucket(bucket_id)

    def delete_bucket(self, bucket_id: str) -> None:
        """Hard delete; contributions are removed with the bucket."""
        self.get_bucket(bucket_id)
        self._storage.execute("DELETE FROM savings_buckets WHERE id = ?", (bucket_id,))

    def add_contribution(self, payload: Payload) -> SavingsContribution:
        payload = {"date_ts": now_ms(), **payload}
        data = clean_payload(payload, self._CONTRIBUTION_VALIDATORS, required=("bucket_id", "amount_minor"))
        require_live(self._storage, "savings_buckets", data["bucket_id"], "Savings bucket")
        contribution_id = new_id("scon_")
        self._storage.execute(
            """INSERT INTO savings_contributions (id, bucket_id, amount_minor, date_ts, notes)
            VALUES (?, ?, ?, ?, ?)""",
            (contribution_id, data["bucket_id"], data["amount_minor"], data["date_ts"], data.get("notes")),
        )
        row = self._storage.query_one("SELECT * FROM savings_contributions WHERE id = ?", (contribution_id,))
        return SavingsContribution.from_row(row)

    def list_contributions(self, bucket_id: str) -> List[SavingsContribution]:
        self.get_bucket(bucket_id)
        rows = self._storage.query_all(
            "SELECT * FROM savings_contributions WHERE bucket_id = ? ORDER BY date_ts DESC, rowid DESC",
            (bucket_id,),
        )
        return [SavingsContribution.from_row(row) for row in rows]


class WishlistService:
    """Things to buy later; progress comes from savings buckets of the same category."""

    _VALIDATORS: Dict[str, Validator] = {
        "category_id": lambda v: validate_identifier(v, "category_id"),
        "title": lambda v: validate_required_str(v, "title", 100),
        "target_price_minor": lambda v: parse_optional_minor_amount(v, "target_price_minor"),
        "link": lambda v: validate_optional_str(v, "link", 500),
        "priority": lambda v: validate_optional_int(v, "priority"),
    }

    _SELECT = """
    SELECT w.*, c.name AS category_name, c.color AS category_color, c.icon AS category_icon,
      COALESCE(SUM(sc.amount_minor), 0) AS saved_minor
    FROM wishlist_items w
    JOIN categories c ON c.id = w.category_id
    LEFT JOIN savings_buckets b ON b.category_id = w.category_id AND b.archived_at IS NULL
    LEFT JOIN savings_contributions sc ON sc.bucket_id = b.id
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def add(self, payload: Payload) -> WishlistItemView:
        data = clean_payload(payload, self._VALIDATORS, required=("category_id", "title"))
        require_live(self._storage, "categories", data["category_id"], "Category")
        item_id = new_id("wish_")
        now = now_ms()
        self._storage.execute(
            """INSERT INTO wishlist_items (id, category_id, title, target_price_minor, link, priority,
                created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                item_id,
                data["category_id"],
                data["title"],
                data.get("target_price_minor"),
                data.get("link"),
                data.get("priority"),
                now,
                now,
            ),
        )
        return self.get(item_id)

    def get(self, item_id: str) -> WishlistItemView:
        row = self._storage.query_one(f"{self._SELECT} WHERE w.id = ? GROUP BY w.id", (item_id,))
        if row is None:
            raise RecordNotFoundError(f"Wishlist item {item_id} not found")
        return WishlistItemView.from_row(row)

    def list(self, include_archived: bool = False) -> List[WishlistItemView]:
        where = "" if include_archived else "WHERE w.archived_at IS NULL"
        rows = self._storage.query_all(
            f"{self._SELECT} {where} GROUP BY w.id ORDER BY w.created_at DESC, w.rowid DESC"
        )
        return [WishlistItemView.from_row(row) for row in rows]

    def update(self, item_id: str, changes: Payload) -> WishlistItemView:
        existing = self.get(item_id)
        data = clean_payload(changes, self._VALIDATORS)
        if not data:
            return existing
        if "category_id" in data:
            require_live(self._storage, "categories", data["category_id"], "Category")
        update_columns(self._storage, "wishlist_items", item_id, data)
        return self.get(item_id)

    def archive(self, item_id: str) -> WishlistItemView:
        self.get(item_id)
        update_columns(self._storage, "wishlist_items", item_id, {"archived_at": now_ms()})
        return self.get(item_id)


_FREQUENCY_LABELS = {"DAILY": "day", "WEEKLY": "week", "MONTHLY": "month", "YEARLY": "year"}


def describe_recurrence(rrule_text: Optional[str]) -> str:
    """Human label for an RRULE-style string such as ``FREQ=WEEKLY;INTERVAL=2``."""
    if not rrule_text:
        return "Not recurring"
    parts: Dict[str, str] = {}
    for part in rrule_text.split(";"):
        key, _, value = part.partition("=")
        if key.strip() and value.strip():
            parts[key.strip().upper()] = value.strip().upper()

    label = _FREQUENCY_LABELS.get(parts.get("FREQ", ""))
    if label is None:
        return "Custom schedule"
    try:
        interval = int(parts.get("INTERVAL", "1"))
    except ValueError:
        interval = 1
    if interval <= 1:
        return f"Every {label}"
    return f"Every {interval} {label}s"


class RecurringRuleService:
    """Schedules attached to an expense or income template."""

    _VALIDATORS: Dict[str, Validator] = {
        "entity_type": lambda v: validate_enum(v, "entity_type", RECURRING_ENTITY_TYPES),
        "entity_id": lambda v: validate_identifier(v, "entity_id"),
        "rrule_text": lambda v: validate_required_str(v, "rrule_text", 200),
        "next_run_ts": lambda v: validate_timestamp(v, "next_run_ts"),
    }

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def add(self, payload: Payload) -> RecurringRule:
        data = clean_payload(
            payload, self._VALIDATORS, required=("entity_type", "entity_id", "rrule_text", "next_run_ts")
        )
        table = "expenses" if data["entity_type"] == "expense" else "incomes"
        if self._storage.query_one(f"SELECT 1 FROM {table} WHERE id = ?", (data["entity_id"],)) is None:
            raise RecordNotFoundError(f"{data['entity_type'].capitalize()} {data['entity_id']} not found")
        rule_id = new_id("rr_")
        self._storage.execute(
            """INSERT INTO recurring_rules (id, entity_type, entity_id, rrule_text, next_run_ts, active)
            VALUES (?, ?, ?, ?, ?, 1)""",
            (rule_id, data["entity_type"], data["entity_id"], data["rrule_text"], data["next_run_ts"]),
        )
        return self.get(rule_id)

    def get(self, rule_id: str) -> RecurringRule:
        row = self._storage.query_one("SELECT * FROM recurring_rules WHERE id = ?", (rule_id,))
        if row is None:
            raise RecordNotFoundError(f"Recurring rule {rule_id} not found")
        return RecurringRule.from_row(row)

    def list(self, active_only: bool = False) -> List[RecurringRule]:
        where = "WHERE active = 1" if active_only else ""
        rows = self._storage.query_all(f"SELECT * FROM recurring_rules {where} ORDER BY next_run_ts ASC")
        return [RecurringRule.from_row(row) for row in rows]

    def set_active(self, rule_id: str, active: bool) -> RecurringRule:
        self.get(rule_id)
        update_columns(self._storage, "recurring_rules", rule_id, {"active": 1 if active else 0}, touch=False)
        return self.get(rule_id)

    def due(self, now: Optional[int] = None) -> List[RecurringRule]:
        cutoff = now if now is not None else now_ms()
        rows = self._storage.query_all(
            "SELECT * FROM recurring_rules WHERE active = 1 AND next_run_ts <= ? ORDER BY next_run_ts ASC",
            (cutoff,),
        )
        return [RecurringRule.from_row(row) for row in rows]


class ReceiptInboxService:
    """Captured receipts waiting to become expenses."""

    _VALIDATORS: Dict[str, Validator] = {
        "image_uri": lambda v: validate_required_str(v, "image_uri", 1000),
        "status": lambda v: validate_enum(v, "status", RECEIPT_STATUSES),
        "suggested_title": lambda v: validate_optional_str(v, "suggested_title", 100),
        "suggested_amount_minor": lambda v: parse_optional_minor_amount(v, "suggested_amount_minor"),
        "suggested_date_ts": lambda v: validate_optional_timestamp(v, "suggested_date_ts"),
        "linked_expense_id": lambda v: validate_optional_str(v, "linked_expense_id", 64),
    }

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def add(self, payload: Payload) -> ReceiptInboxItem:
        data = clean_payload(payload, self._VALIDATORS, required=("image_uri",))
        if data.get("status", "pending") != "pending" or data.get("linked_expense_id"):
            raise ValidationError("New receipts start as pending and unlinked")
        receipt_id = new_id("rcpt_")
        self._storage.execute(
            """INSERT INTO receipt_inbox (id, image_uri, created_at, status, suggested_title,
                suggested_amount_minor, suggested_date_ts)
            VALUES (?, ?, ?, 'pending', ?, ?, ?)""",
            (
                receipt_id,
                data["image_uri"],
                now_ms(),
                data.get("suggested_title"),
                data.get("suggested_amount_minor"),
                data.get("suggested_date_ts"),
            ),
        )
        return self.get(receipt_id)

    def get(self, receipt_id: str) -> ReceiptInboxItem:
        row = self._storage.query_one("SELECT * FROM receipt_inbox WHERE id = ?", (receipt_id,))
        if row is None:
            raise RecordNotFoundError(f"Receipt {receipt_id} not found")
        return ReceiptInboxItem.from_row(row)

    def list(self, status: Optional[str] = None) -> List[ReceiptInboxItem]:
        if status is None:
            rows = self._storage.query_all("SELECT * FROM receipt_inbox ORDER BY created_at DESC, rowid DESC")
        else:
            rows = self._storage.query_all(
                "SELECT * FROM receipt_inbox WHERE status = ? ORDER BY created_at DESC, rowid DESC",
                (validate_enum(status, "status", RECEIPT_STATUSES),),
            )
        return [ReceiptInboxItem.from_row(row) for row in rows]

    def update(self, receipt_id: str, changes: Payload) -> ReceiptInboxItem:
        existing = self.get(receipt_id)
        data = clean_payload(changes, self._VALIDATORS)
        if not data:
            return existing
        update_columns(self._storage, "receipt_inbox", receipt_id, data, touch=False)
        return self.get(receipt_id)

    def link_expense(self, receipt_id: str, expense_id: str) -> ReceiptInboxItem:
        self.get(receipt_id)
        if self._storage.query_one("SELECT 1 FROM expenses WHERE id = ?", (expense_id,)) is None:
            raise RecordNotFoundError(f"Expense {expense_id} not found")
        update_columns(
            self._storage,
            "receipt_inbox",
            receipt_id,
            {"linked_expense_id": expense_id, "status": "processed"},
            touch=False,
        )
        return self.get(receipt_id)

    def delete(self, receipt_id: str) -> None:
        self.get(receipt_id)
        self._storage.execute("DELETE FROM receipt_inbox WHERE id = ?", (receipt_id,))

