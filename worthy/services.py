"""Ledger services: accounts, categories, currencies, settings and ledger events."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from uuid import uuid4

from .currency import RateTable
from .exceptions import RecordNotFoundError, ReferentialIntegrityError, ValidationError
from .models import (
    Account,
    Category,
    Currency,
    ExpenseView,
    IncomeView,
    TransactionEntry,
    TransferView,
    now_ms,
)
from .storage import SQLiteStorage
from .validators import (
    ACCOUNT_TYPES,
    parse_hours,
    parse_minor_amount,
    parse_rate,
    reject_unknown_fields,
    validate_color,
    validate_currency,
    validate_enum,
    validate_identifier,
    validate_optional_currency,
    validate_optional_int,
    validate_optional_str,
    validate_required_str,
    validate_sentiment,
    validate_timestamp,
)

logger = logging.getLogger(__name__)

Validator = Callable[[Any], Any]
Payload = Mapping[str, object]

DEFAULT_SENTIMENT = 50


def new_id(prefix: str) -> str:
    """Generate a unique identifier carrying a short entity-kind prefix."""
    return f"{prefix}{uuid4().hex}"


def clean_payload(
    payload: Payload, validators: Mapping[str, Validator], *, required: Sequence[str] = ()
) -> Dict[str, Any]:
    """Validate the supplied fields only; unknown and missing-required fields are rejected."""
    if not isinstance(payload, Mapping):
        raise ValidationError("Payload must be an object")
    reject_unknown_fields(payload, validators)
    missing = [name for name in required if payload.get(name) is None]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    return {name: validators[name](value) for name, value in payload.items()}


def update_columns(
    storage: SQLiteStorage,
    table: str,
    row_id: str,
    values: Mapping[str, Any],
    *,
    touch: bool = True,
    key: str = "id",
) -> None:
    columns = dict(values)
    if touch:
        columns["updated_at"] = now_ms()
    assignments = ", ".join(f"{column} = ?" for column in columns)
    storage.execute(
        f"UPDATE {table} SET {assignments} WHERE {key} = ?", [*columns.values(), row_id]
    )


def require_live(storage: SQLiteStorage, table: str, row_id: str, label: str) -> None:
    """Reject writes that reference a missing or archived row."""
    row = storage.query_one(f"SELECT archived_at FROM {table} WHERE id = ?", (row_id,))
    if row is None:
        raise ReferentialIntegrityError(f"{label} {row_id} does not exist")
    if row["archived_at"] is not None:
        raise ReferentialIntegrityError(f"{label} {row_id} is archived")


def _range_conditions(
    alias: str, start: Optional[object], end: Optional[object], column: str = "date_ts"
) -> Tuple[List[str], List[Any]]:
    conditions: List[str] = []
    params: List[Any] = []
    if start is not None:
        conditions.append(f"{alias}.{column} >= ?")
        params.append(validate_timestamp(start, "start"))
    if end is not None:
        conditions.append(f"{alias}.{column} <= ?")
        params.append(validate_timestamp(end, "end"))
    return conditions, params


def _where(conditions: Iterable[str]) -> str:
    conditions = list(conditions)
    return f"WHERE {' AND '.join(conditions)}" if conditions else ""


def _limit(limit: Optional[object]) -> str:
    if limit is None:
        return ""
    value = validate_optional_int(limit, "limit")
    if value is None or value <= 0:
        raise ValidationError("limit must be a positive integer")
    return f"LIMIT {value}"


# Settings -------------------------------------------------------------------

class SettingKey(str, Enum):
    BASE_CURRENCY = "base_currency"
    THEME_MODE = "theme_mode"
    HOURS_PER_DAY = "hours_per_day"
    FIXED_HOURLY_RATE_MINOR = "fixed_hourly_rate_minor"


class ThemeMode(str, Enum):
    SYSTEM = "system"
    LIGHT = "light"
    DARK = "dark"


DEFAULT_HOURS_PER_DAY = 8

# Remembered form values, keyed by form kind then logical field.
DEFAULT_KEYS: Dict[str, Dict[str, str]] = {
    "expense": {
        "account_id": "defaults_expense_account_id",
        "category_id": "defaults_expense_category_id",
        "currency_code": "defaults_expense_currency_code",
        "regret_value": "defaults_expense_regret_value",
        "notes": "defaults_expense_notes",
    },
    "income": {
        "account_id": "defaults_income_account_id",
        "currency_code": "defaults_income_currency_code",
        "notes": "defaults_income_notes",
        "hours_worked": "defaults_income_hours_worked",
    },
    "transfer": {
        "from_account_id": "defaults_transfer_from_account_id",
        "to_account_id": "defaults_transfer_to_account_id",
        "notes": "defaults_transfer_notes",
    },
}


class SettingsService:
    """String key/value settings with typed accessors for the well-known keys."""

    def __init__(self, storage: SQLiteStorage, default_base_currency: str = "USD") -> None:
        self._storage = storage
        self._default_base = validate_currency(default_base_currency, "base_currency")

    def get(self, key: Union[str, SettingKey]) -> Optional[str]:
        return self._storage.scalar("SELECT value FROM settings WHERE key = ?", (_key(key),))

    def get_all(self) -> Dict[str, str]:
        rows = self._storage.query_all("SELECT key, value FROM settings ORDER BY key")
        return {row["key"]: row["value"] for row in rows}

    def set(self, key: Union[str, SettingKey], value: str) -> None:
        name = validate_required_str(_key(key), "key", 100)
        if not isinstance(value, str):
            raise ValidationError("Setting values must be strings")
        if name == SettingKey.BASE_CURRENCY.value:
            self.set_base_currency(value)
            return
        self._write(name, value)

    def set_many(self, values: Mapping[str, str]) -> None:
        with self._storage.transaction():
            for key, value in values.items():
                self.set(key, value)

    # Typed accessors --------------------------------------------------------
    def base_currency(self) -> str:
        return (self.get(SettingKey.BASE_CURRENCY) or self._default_base).upper()

    def set_base_currency(self, code: str) -> None:
        """Switch the base currency and pin its rate to exactly 1."""
        canonical = validate_currency(code, "base_currency")
        with self._storage.transaction() as tx:
            self._write(SettingKey.BASE_CURRENCY.value, canonical)
            updated = tx.execute(
                "UPDATE currencies SET rate_to_base = 1, archived_at = NULL WHERE code = ?",
                (canonical,),
            )
            if not updated:
                tx.execute(
                    "INSERT INTO currencies (code, name, symbol, rate_to_base, created_at) VALUES (?, ?, ?, ?, ?)",
                    (canonical, canonical, None, 1, now_ms()),
                )
        logger.info("Base currency set to %s", canonical)

    def theme_mode(self) -> ThemeMode:
        raw = self.get(SettingKey.THEME_MODE)
        try:
            return ThemeMode(raw) if raw else ThemeMode.SYSTEM
        except ValueError:
            return ThemeMode.SYSTEM

    def set_theme_mode(self, mode: Union[str, ThemeMode]) -> None:
        try:
            theme = ThemeMode(mode)
        except ValueError as exc:
            raise ValidationError(
                f"theme_mode must be one of: {', '.join(item.value for item in ThemeMode)}"
            ) from exc
        self._write(SettingKey.THEME_MODE.value, theme.value)

    def hours_per_day(self) -> int:
        value = _parse_int(self.get(SettingKey.HOURS_PER_DAY))
        return value if value and value > 0 else DEFAULT_HOURS_PER_DAY

    def set_hours_per_day(self, hours: int) -> None:
        value = validate_optional_int(hours, "hours_per_day")
        if value is None or not 0 < value <= 24:
            raise ValidationError("hours_per_day must be between 1 and 24")
        self._write(SettingKey.HOURS_PER_DAY.value, str(value))

    def fixed_hourly_rate_minor(self) -> int:
        value = _parse_int(self.get(SettingKey.FIXED_HOURLY_RATE_MINOR))
        return value if value and value > 0 else 0

    def set_fixed_hourly_rate_minor(self, rate_minor: int) -> None:
        value = parse_minor_amount(rate_minor, "fixed_hourly_rate_minor", allow_zero=True)
        self._write(SettingKey.FIXED_HOURLY_RATE_MINOR.value, str(value))

    def last_viewed(self, period: str) -> Optional[int]:
        return _parse_int(self.get(f"last_viewed_{period}"))

    def mark_viewed(self, period: str, timestamp: Optional[int] = None) -> None:
        name = validate_required_str(period, "period", 20)
        value = now_ms() if timestamp is None else validate_timestamp(timestamp, "timestamp")
        self._write(f"last_viewed_{name}", str(value))

    def load_defaults(self, kind: str) -> Dict[str, Optional[str]]:
        keys = _default_keys(kind)
        stored = self.get_all()
        return {name: stored.get(key) for name, key in keys.items()}

    def save_defaults(self, kind: str, values: Mapping[str, Optional[object]]) -> None:
        keys = _default_keys(kind)
        reject_unknown_fields(values, keys)
        with self._storage.transaction():
            for name, value in values.items():
                # Missing identifiers keep the previous default; other fields may be cleared.
                if value is None and name.endswith("_id"):
                    continue
                self._write(keys[name], "" if value is None else str(value))

    def _write(self, key: str, value: str) -> None:
        self._storage.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )


def _key(key: Union[str, SettingKey]) -> str:
    return key.value if isinstance(key, SettingKey) else key


def _parse_int(raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _default_keys(kind: str) -> Dict[str, str]:
    try:
        return DEFAULT_KEYS[kind]
    except KeyError as exc:
        raise ValidationError(f"kind must be one of: {', '.join(sorted(DEFAULT_KEYS))}") from exc


# Currencies -----------------------------------------------------------------

class CurrencyService:
    """Manages currency definitions and exposes the current rate table."""

    def __init__(self, storage: SQLiteStorage, settings: SettingsService) -> None:
        self._storage = storage
        self._settings = settings

    def upsert(self, payload: Payload) -> Currency:
        data = clean_payload(
            payload,
            {
                "code": lambda v: validate_currency(v, "code"),
                "name": lambda v: validate_required_str(v, "name", 50),
                "symbol": lambda v: validate_optional_str(v, "symbol", 5),
                "rate_to_base": parse_rate,
            },
            required=("code", "name", "rate_to_base"),
        )
        code = data["code"]
        rate = data["rate_to_base"]
        if code == self._settings.base_currency():
            rate = 1
        self._storage.execute(
            """INSERT INTO currencies (code, name, symbol, rate_to_base, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(code) DO UPDATE SET
              name = excluded.name,
              symbol = excluded.symbol,
              rate_to_base = excluded.rate_to_base,
              archived_at = NULL""",
            (code, data["name"], data.get("symbol"), float(rate), now_ms()),
        )
        return self.get(code)

    def get(self, code: str) -> Currency:
        canonical = validate_currency(code, "code")
        row = self._storage.query_one("SELECT * FROM currencies WHERE code = ?", (canonical,))
        if row is None:
            raise RecordNotFoundError(f"Currency {canonical} not found")
        return Currency.from_row(row)

    def list(self, include_archived: bool = False) -> List[Currency]:
        where = "" if include_archived else "WHERE archived_at IS NULL"
        rows = self._storage.query_all(f"SELECT * FROM currencies {where} ORDER BY code ASC")
        return [Currency.from_row(row) for row in rows]

    def archive(self, code: str) -> None:
        currency = self.get(code)
        if currency.code == self._settings.base_currency():
            raise ValidationError("The base currency cannot be archived")
        self._storage.execute(
            "UPDATE currencies SET archived_at = ? WHERE code = ?", (now_ms(), currency.code)
        )

    def rate_table(self) -> RateTable:
        # Archived currencies keep their rate so historical entries still convert.
        return RateTable.from_currencies(self.list(include_archived=True), self._settings.base_currency())


# Accounts -------------------------------------------------------------------

class AccountService:
    """Manages accounts; archiving is a soft delete."""

    def __init__(self, storage: SQLiteStorage, settings: SettingsService) -> None:
        self._storage = storage
        self._settings = settings

    def _validators(self) -> Dict[str, Validator]:
        return {
            "name": lambda v: validate_required_str(v, "name", 50),
            "type": lambda v: validate_enum(v, "type", ACCOUNT_TYPES),
            "currency": lambda v: validate_currency(v, "currency"),
            "starting_balance_minor": lambda v: parse_minor_amount(
                v, "starting_balance_minor", allow_negative=True
            ),
        }

    def add(self, payload: Payload) -> Account:
        payload = {"type": "cash", "starting_balance_minor": 0, **payload}
        payload.setdefault("currency", self._settings.base_currency())
        data = clean_payload(payload, self._validators(), required=("name",))
        account_id = new_id("acct_")
        now = now_ms()
        self._storage.execute(
            """INSERT INTO accounts (id, name, type, currency, starting_balance_minor, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                account_id,
                data["name"],
                data["type"],
                data["currency"],
                data["starting_balance_minor"],
                now,
                now,
            ),
        )
        return self.get(account_id)

    def get(self, account_id: str) -> Account:
        row = self._storage.query_one("SELECT * FROM accounts WHERE id = ?", (account_id,))
        if row is None:
            raise RecordNotFoundError(f"Account {account_id} not found")
        return Account.from_row(row)

    def list(self, include_archived: bool = False) -> List[Account]:
        where = "" if include_archived else "WHERE archived_at IS NULL"
        rows = self._storage.query_all(
            f"SELECT * FROM accounts {where} ORDER BY created_at DESC, rowid DESC"
        )
        return [Account.from_row(row) for row in rows]

    def update(self, account_id: str, changes: Payload) -> Account:
        existing = self.get(account_id)
        data = clean_payload(changes, self._validators())
        if not data:
            return existing
        update_columns(self._storage, "accounts", account_id, data)
        return self.get(account_id)

    def archive(self, account_id: str) -> Account:
        self.get(account_id)
        now = now_ms()
        update_columns(self._storage, "accounts", account_id, {"archived_at": now})
        return self.get(account_id)

    def restore(self, account_id: str) -> Account:
        self.get(account_id)
        update_columns(self._storage, "accounts", account_id, {"archived_at": None})
        return self.get(account_id)

    def delete(self, account_id: str) -> None:
        """Hard delete; rejected while any ledger event references the account."""
        self.get(account_id)
        self._storage.execute("DELETE FROM accounts WHERE id = ?", (account_id,))


# Categories -----------------------------------------------------------------

class CategoryService:
    """Manages expense categories and their user-defined order."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    _VALIDATORS: Dict[str, Validator] = {
        "name": lambda v: validate_required_str(v, "name", 50),
        "icon": lambda v: validate_required_str(v, "icon", 40),
        "color": validate_color,
        "sort_order": lambda v: validate_optional_int(v, "sort_order"),
    }

    def add(self, payload: Payload) -> Category:
        payload = {"icon": "grid", "color": "#B07AA1", **payload}
        data = clean_payload(payload, self._VALIDATORS, required=("name",))
        sort_order = data.get("sort_order")
        if sort_order is None:
            current_max = self._storage.scalar("SELECT MAX(sort_order) FROM categories")
            sort_order = (current_max or 0) + 1
        category_id = new_id("cat_")
        now = now_ms()
        self._storage.execute(
            """INSERT INTO categories (id, name, icon, color, sort_order, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (category_id, data["name"], data["icon"], data["color"], sort_order, now, now),
        )
        return self.get(category_id)

    def get(self, category_id: str) -> Category:
        row = self._storage.query_one("SELECT * FROM categories WHERE id = ?", (category_id,))
        if row is None:
            raise RecordNotFoundError(f"Category {category_id} not found")
        return Category.from_row(row)

    def list(self, include_archived: bool = False) -> List[Category]:
        where = "" if include_archived else "WHERE archived_at IS NULL"
        rows = self._storage.query_all(
            f"SELECT * FROM categories {where} ORDER BY sort_order ASC, created_at ASC, rowid ASC"
        )
        return [Category.from_row(row) for row in rows]

    def update(self, category_id: str, changes: Payload) -> Category:
        existing = self.get(category_id)
        data = clean_payload(changes, self._VALIDATORS)
        if data.get("sort_order", 0) is None:
            raise ValidationError("sort_order cannot be null")
        if not data:
            return existing
        update_columns(self._storage, "categories", category_id, data)
        return self.get(category_id)

    def reorder(self, order: Iterable[Union[Tuple[str, int], Mapping[str, object]]]) -> List[Category]:
        """Apply new sort positions atomically; any unknown id rolls back the batch."""
        pairs = [_order_pair(item) for item in order]
        with self._storage.transaction() as tx:
            now = now_ms()
            for category_id, sort_order in pairs:
                changed = tx.execute(
                    "UPDATE categories SET sort_order = ?, updated_at = ? WHERE id = ?",
                    (sort_order, now, category_id),
                )
                if not changed:
                    raise RecordNotFoundError(f"Category {category_id} not found")
        return self.list()

    def archive(self, category_id: str) -> Category:
        self.get(category_id)
        update_columns(self._storage, "categories", category_id, {"archived_at": now_ms()})
        return self.get(category_id)

    def restore(self, category_id: str) -> Category:
        self.get(category_id)
        update_columns(self._storage, "categories", category_id, {"archived_at": None})
        return self.get(category_id)

    def delete(self, category_id: str) -> None:
        """Hard delete; rejected while expenses, budgets or goals reference the category."""
        self.get(category_id)
        self._storage.execute("DELETE FROM categories WHERE id = ?", (category_id,))


def _order_pair(item: Union[Tuple[str, int], Mapping[str, object]]) -> Tuple[str, int]:
    if isinstance(item, Mapping):
        category_id, sort_order = item.get("id"), item.get("sort_order")
    else:
        category_id, sort_order = item
    value = validate_optional_int(sort_order, "sort_order")
    if value is None:
        raise ValidationError("sort_order is required")
    return validate_identifier(category_id, "id"), value


# Ledger events --------------------------------------------------------------

_EXPENSE_SELECT = """
SELECT e.*, c.name AS category_name, c.color AS category_color, c.icon AS category_icon,
       a.name AS account_name, a.currency AS account_currency
FROM expenses e
JOIN categories c ON c.id = e.category_id
JOIN accounts a ON a.id = e.account_id
"""


class ExpenseService:
    """Manages expense records; list rows carry joined category and account fields."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    _VALIDATORS: Dict[str, Validator] = {
        "title": lambda v: validate_required_str(v, "title", 100),
        "amount_minor": lambda v: parse_minor_amount(v, "amount_minor"),
        "category_id": lambda v: validate_identifier(v, "category_id"),
        "account_id": lambda v: validate_identifier(v, "account_id"),
        "currency_code": validate_optional_currency,
        "date_ts": lambda v: validate_timestamp(v, "date_ts"),
        "slider_0_100": validate_sentiment,
        "notes": lambda v: validate_optional_str(v, "notes", 500),
    }

    def add(self, payload: Payload) -> ExpenseView:
        now = now_ms()
        payload = {"slider_0_100": DEFAULT_SENTIMENT, "date_ts": now, **payload}
        data = clean_payload(
            payload, self._VALIDATORS, required=("title", "amount_minor", "category_id", "account_id")
        )
        self._check_references(data)
        expense_id = new_id("exp_")
        self._storage.execute(
            """INSERT INTO expenses (id, title, amount_minor, category_id, account_id, currency_code,
                date_ts, slider_0_100, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                expense_id,
                data["title"],
                data["amount_minor"],
                data["category_id"],
                data["account_id"],
                data.get("currency_code"),
                data["date_ts"],
                data["slider_0_100"],
                data.get("notes"),
                now,
                now,
            ),
        )
        return self.get(expense_id)

    def get(self, expense_id: str) -> ExpenseView:
        """Return an expense or raise if it does not exist."""
        row = self._storage.query_one(f"{_EXPENSE_SELECT} WHERE e.id = ?", (expense_id,))
        if row is None:
            raise RecordNotFoundError(f"Expense {expense_id} not found")
        return ExpenseView.from_row(row)

    def list(
        self,
        *,
        start: Optional[object] = None,
        end: Optional[object] = None,
        category_id: Optional[str] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
        include_archived: bool = False,
    ) -> List[ExpenseView]:
        conditions, params = _range_conditions("e", start, end)
        if category_id is not None:
            conditions.append("e.category_id = ?")
            params.append(category_id)
        if account_id is not None:
            conditions.append("e.account_id = ?")
            params.append(account_id)
        if not include_archived:
            conditions.append("c.archived_at IS NULL AND a.archived_at IS NULL")
        rows = self._storage.query_all(
            f"{_EXPENSE_SELECT} {_where(conditions)} ORDER BY e.date_ts DESC, e.rowid DESC {_limit(limit)}",
            params,
        )
        return [ExpenseView.from_row(row) for row in rows]

    def update(self, expense_id: str, changes: Payload) -> ExpenseView:
        existing = self.get(expense_id)
        data = clean_payload(changes, self._VALIDATORS)
        for name in ("title", "amount_minor", "category_id", "account_id", "date_ts", "slider_0_100"):
            if name in data and data[name] is None:
                raise ValidationError(f"{name} cannot be null")
        if not data:
            return existing
        self._check_references(data)
        update_columns(self._storage, "expenses", expense_id, data)
        return self.get(expense_id)

    def delete(self, expense_id: str) -> None:
        self.get(expense_id)
        self._storage.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))

    def _check_references(self, data: Mapping[str, Any]) -> None:
        if "category_id" in data:
            require_live(self._storage, "categories", data["category_id"], "Category")
        if "account_id" in data:
            require_live(self._storage, "accounts", data["account_id"], "Account")


_INCOME_SELECT = """
SELECT i.*, a.name AS account_name, a.currency AS account_currency
FROM incomes i
JOIN accounts a ON a.id = i.account_id
"""


class IncomeService:
    """Manages income records and mediates persistence."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    _VALIDATORS: Dict[str, Validator] = {
        "source": lambda v: validate_required_str(v, "source", 100),
        "amount_minor": lambda v: parse_minor_amount(v, "amount_minor"),
        "account_id": lambda v: validate_identifier(v, "account_id"),
        "currency_code": validate_optional_currency,
        "date_ts": lambda v: validate_timestamp(v, "date_ts"),
        "hours_worked": parse_hours,
        "notes": lambda v: validate_optional_str(v, "notes", 500),
    }

    def add(self, payload: Payload) -> IncomeView:
        now = now_ms()
        payload = {"date_ts": now, **payload}
        data = clean_payload(payload, self._VALIDATORS, required=("source", "amount_minor", "account_id"))
        require_live(self._storage, "accounts", data["account_id"], "Account")
        income_id = new_id("inc_")
        self._storage.execute(
            """INSERT INTO incomes (id, source, amount_minor, account_id, currency_code, date_ts,
                hours_worked, notes, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                income_id,
                data["source"],
                data["amount_minor"],
                data["account_id"],
                data.get("currency_code"),
                data["date_ts"],
                data.get("hours_worked"),
                data.get("notes"),
                now,
                now,
            ),
        )
        return self.get(income_id)

    def get(self, income_id: str) -> IncomeView:
        """Return an income or raise if it does not exist."""
        row = self._storage.query_one(f"{_INCOME_SELECT} WHERE i.id = ?", (income_id,))
        if row is None:
            raise RecordNotFoundError(f"Income {income_id} not found")
        return IncomeView.from_row(row)

    def list(
        self,
        *,
        start: Optional[object] = None,
        end: Optional[object] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
        include_archived: bool = False,
    ) -> List[IncomeView]:
        conditions, params = _range_conditions("i", start, end)
        if account_id is not None:
            conditions.append("i.account_id = ?")
            params.append(account_id)
        if not include_archived:
            conditions.append("a.archived_at IS NULL")
        rows = self._storage.query_all(
            f"{_INCOME_SELECT} {_where(conditions)} ORDER BY i.date_ts DESC, i.rowid DESC {_limit(limit)}",
            params,
        )
        return [IncomeView.from_row(row) for row in rows]

    def update(self, income_id: str, changes: Payload) -> IncomeView:
        existing = self.get(income_id)
        data = clean_payload(changes, self._VALIDATORS)
        for name in ("source", "amount_minor", "account_id", "date_ts"):
            if name in data and data[name] is None:
                raise ValidationError(f"{name} cannot be null")
        if not data:
            return existing
        if "account_id" in data:
            require_live(self._storage, "accounts", data["account_id"], "Account")
        update_columns(self._storage, "incomes", income_id, data)
        return self.get(income_id)

    def delete(self, income_id: str) -> None:
        self.get(income_id)
        self._storage.execute("DELETE FROM incomes WHERE id = ?", (income_id,))


_TRANSFER_SELECT = """
SELECT t.*, af.name AS from_account_name, at.name AS to_account_name, af.currency AS currency
FROM transfers t
JOIN accounts af ON af.id = t.from_account_id
JOIN accounts at ON at.id = t.to_account_id
"""


class TransferService:
    """Directed movements between two accounts.

    The amount is in the source account's currency and lands unconverted in the
    destination account, whatever its currency.
    """

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    _VALIDATORS: Dict[str, Validator] = {
        "from_account_id": lambda v: validate_identifier(v, "from_account_id"),
        "to_account_id": lambda v: validate_identifier(v, "to_account_id"),
        "amount_minor": lambda v: parse_minor_amount(v, "amount_minor"),
        "date_ts": lambda v: validate_timestamp(v, "date_ts"),
        "notes": lambda v: validate_optional_str(v, "notes", 500),
    }

    def add(self, payload: Payload) -> TransferView:
        now = now_ms()
        payload = {"date_ts": now, **payload}
        data = clean_payload(
            payload, self._VALIDATORS, required=("from_account_id", "to_account_id", "amount_minor")
        )
        if data["from_account_id"] == data["to_account_id"]:
            raise ValidationError("A transfer needs two different accounts")
        require_live(self._storage, "accounts", data["from_account_id"], "Account")
        require_live(self._storage, "accounts", data["to_account_id"], "Account")
        transfer_id = new_id("trf_")
        self._storage.execute(
            """INSERT INTO transfers (id, from_account_id, to_account_id, amount_minor, date_ts, notes, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)""",
            (
                transfer_id,
                data["from_account_id"],
                data["to_account_id"],
                data["amount_minor"],
                data["date_ts"],
                data.get("notes"),
                now,
            ),
        )
        return self.get(transfer_id)

    def get(self, transfer_id: str) -> TransferView:
        row = self._storage.query_one(f"{_TRANSFER_SELECT} WHERE t.id = ?", (transfer_id,))
        if row is None:
            raise RecordNotFoundError(f"Transfer {transfer_id} not found")
        return TransferView.from_row(row)

    def list(
        self,
        *,
        start: Optional[object] = None,
        end: Optional[object] = None,
        account_id: Optional[str] = None,
        limit: Optional[int] = None,
        include_archived: bool = False,
    ) -> List[TransferView]:
        conditions, params = _range_conditions("t", start, end)
        if account_id is not None:
            conditions.append("(t.from_account_id = ? OR t.to_account_id = ?)")
            params.extend([account_id, account_id])
        if not include_archived:
            conditions.append("af.archived_at IS NULL AND at.archived_at IS NULL")
        rows = self._storage.query_all(
            f"{_TRANSFER_SELECT} {_where(conditions)} ORDER BY t.date_ts DESC, t.rowid DESC {_limit(limit)}",
            params,
        )
        return [TransferView.from_row(row) for row in rows]

    def delete(self, transfer_id: str) -> None:
        self.get(transfer_id)
        self._storage.execute("DELETE FROM transfers WHERE id = ?", (transfer_id,))


_FEED_EXPENSES = """
SELECT e.id AS id, 'expense' AS type, e.title AS title, e.amount_minor AS amount_minor, e.date_ts AS date_ts,
  c.name AS category_name, c.color AS category_color, c.icon AS category_icon,
  a.name AS account_name, COALESCE(e.currency_code, a.currency) AS account_currency,
  e.slider_0_100 AS slider_0_100, e.notes AS notes,
  NULL AS from_account_name, NULL AS to_account_name, e.created_at AS created_at
FROM expenses e
JOIN categories c ON c.id = e.category_id
JOIN accounts a ON a.id = e.account_id
{archived}
"""

_FEED_INCOMES = """
SELECT i.id, 'income', i.source, i.amount_minor, i.date_ts,
  NULL, NULL, NULL,
  a.name, COALESCE(i.currency_code, a.currency),
  NULL, i.notes,
  NULL, NULL, i.created_at
FROM incomes i
JOIN accounts a ON a.id = i.account_id
{archived}
"""

_FEED_TRANSFERS = """
SELECT t.id, 'transfer', 'Transfer', t.amount_minor, t.date_ts,
  NULL, NULL, NULL,
  af.name, af.currency,
  NULL, t.notes,
  af.name, at.name, t.created_at
FROM transfers t
JOIN accounts af ON af.id = t.from_account_id
JOIN accounts at ON at.id = t.to_account_id
{archived}
"""


class TransactionService:
    """Read-only activity feed merging expenses, incomes and transfers."""

    def __init__(self, storage: SQLiteStorage) -> None:
        self._storage = storage

    def list(
        self,
        *,
        start: Optional[object] = None,
        end: Optional[object] = None,
        limit: Optional[int] = None,
        include_archived: bool = False,
    ) -> List[TransactionEntry]:
        feed = " UNION ALL ".join(
            [
                _FEED_EXPENSES.format(
                    archived="" if include_archived else "WHERE c.archived_at IS NULL AND a.archived_at IS NULL"
                ),
                _FEED_INCOMES.format(archived="" if include_archived else "WHERE a.archived_at IS NULL"),
                _FEED_TRANSFERS.format(
                    archived="" if include_archived else "WHERE af.archived_at IS NULL AND at.archived_at IS NULL"
                ),
            ]
        )
        conditions, params = _range_conditions("feed", start, end)
        rows = self._storage.query_all(
            f"SELECT * FROM ({feed}) AS feed {_where(conditions)} "
            f"ORDER BY feed.date_ts DESC, feed.created_at DESC {_limit(limit)}",
            params,
        )
        return [TransactionEntry.from_row(row) for row in rows]

    def first_date(self) -> Optional[int]:
        return self._storage.scalar(
            """SELECT MIN(date_ts) FROM (
              SELECT date_ts FROM expenses
              UNION ALL SELECT date_ts FROM incomes
              UNION ALL SELECT date_ts FROM transfers
            )"""
        )
