"""Console interface for the Worthy ledger."""

from __future__ import annotations

import argparse
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from worthy.config import load_config
from worthy.currency import format_minor, to_minor
from worthy.exceptions import PersistenceError, RecordNotFoundError, ValidationError
from worthy.ledger import Ledger
from worthy.models import ExpenseView, IncomeView, from_millis, to_millis
from worthy.periods import WRAP_PERIODS
from worthy.storage import SQLiteStorage
from worthy.validators import ACCOUNT_TYPES

DATETIME_FORMAT = "%Y-%m-%dT%H:%M:%S"
DATE_FORMAT = "%Y-%m-%d"


def _parse_datetime(value: str) -> int:
    for fmt in (DATETIME_FORMAT, DATE_FORMAT):
        try:
            return to_millis(datetime.strptime(value, fmt))
        except ValueError:
            continue
    raise argparse.ArgumentTypeError(
        f"Invalid datetime '{value}'. Expected format YYYY-MM-DD or YYYY-MM-DDTHH:MM:SS."
    )


def _parse_amount(value: str) -> int:
    try:
        amount = to_minor(value)
    except ValidationError as exc:
        raise argparse.ArgumentTypeError("Amount must be a numeric value") from exc
    if amount <= 0:
        raise argparse.ArgumentTypeError("Amount must be greater than zero")
    return amount


def _parse_signed_amount(value: str) -> int:
    try:
        return to_minor(value)
    except ValidationError as exc:
        raise argparse.ArgumentTypeError("Amount must be a numeric value") from exc


def _format_date(timestamp: int) -> str:
    return from_millis(timestamp).strftime("%Y-%m-%d %H:%M")


def _format_expense(expense: ExpenseView) -> str:
    return (
        f"[{expense.id}] {_format_date(expense.date_ts)} "
        f"{format_minor(expense.amount_minor, expense.effective_currency or '')}\n"
        f"  {expense.title} | Category: {expense.category_name} | Account: {expense.account_name}\n"
        f"  Worth it: {expense.slider_0_100}/100 | Notes: {expense.notes or '-'}\n"
    )


def _format_income(income: IncomeView) -> str:
    hours = f"{income.hours_worked:g}h" if income.hours_worked is not None else "-"
    return (
        f"[{income.id}] {_format_date(income.date_ts)} "
        f"{format_minor(income.amount_minor, income.effective_currency or '')}\n"
        f"  {income.source} | Account: {income.account_name} | Hours: {hours}\n"
        f"  Notes: {income.notes or '-'}\n"
    )


def _clean(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _resolve(records, value: str, label: str) -> str:
    """Match a record by id or, case-insensitively, by name."""
    for record in records:
        if record.id == value:
            return record.id
    matches = [record for record in records if record.name.lower() == value.lower()]
    if not matches:
        raise RecordNotFoundError(f"{label} '{value}' not found")
    if len(matches) > 1:
        raise ValidationError(f"{label} name '{value}' is ambiguous; use its id")
    return matches[0].id


def _resolve_category(ledger: Ledger, value: Optional[str]) -> Optional[str]:
    return _resolve(ledger.categories.list(), value, "Category") if value else None


def _resolve_account(ledger: Ledger, value: Optional[str], kind: Optional[str] = None) -> Optional[str]:
    if value:
        return _resolve(ledger.accounts.list(), value, "Account")
    if kind is None:
        return None
    remembered = ledger.settings.load_defaults(kind).get("account_id")
    accounts = ledger.accounts.list()
    if remembered and any(account.id == remembered for account in accounts):
        return remembered
    if not accounts:
        raise ValidationError("No accounts available; add one with 'account add'")
    return accounts[-1].id


def handle_expense(args: argparse.Namespace, ledger: Ledger) -> None:
    service = ledger.expenses
    if args.command == "add":
        payload = {
            "title": args.title,
            "amount_minor": args.amount,
            "category_id": _resolve_category(ledger, args.category),
            "account_id": _resolve_account(ledger, args.account, "expense"),
            "currency_code": args.currency,
            "date_ts": args.date,
            "slider_0_100": args.worth,
            "notes": args.notes,
        }
        expense = service.add(_clean(payload))
        ledger.settings.save_defaults(
            "expense", {"account_id": expense.account_id, "category_id": expense.category_id}
        )
        print("Expense added:\n" + _format_expense(expense))
    elif args.command == "list":
        expenses = service.list(
            start=args.start,
            end=args.end,
            category_id=_resolve_category(ledger, args.category),
            account_id=_resolve_account(ledger, args.account),
            limit=args.limit,
        )
        if not expenses:
            print("No expenses found.")
            return
        print(f"Found {len(expenses)} expenses:")
        for expense in expenses:
            print(_format_expense(expense))
    elif args.command == "edit":
        changes = {
            "title": args.title,
            "amount_minor": args.amount,
            "category_id": _resolve_category(ledger, args.category),
            "account_id": _resolve_account(ledger, args.account),
            "currency_code": args.currency,
            "date_ts": args.date,
            "slider_0_100": args.worth,
            "notes": args.notes,
        }
        expense = service.update(args.id, _clean(changes))
        print("Expense updated:\n" + _format_expense(expense))
    elif args.command == "delete":
        service.delete(args.id)
        print(f"Expense {args.id} deleted.")


def handle_income(args: argparse.Namespace, ledger: Ledger) -> None:
    service = ledger.incomes
    if args.command == "add":
        payload = {
            "source": args.source,
            "amount_minor": args.amount,
            "account_id": _resolve_account(ledger, args.account, "income"),
            "currency_code": args.currency,
            "date_ts": args.date,
            "hours_worked": args.hours,
            "notes": args.notes,
        }
        income = service.add(_clean(payload))
        ledger.settings.save_defaults("income", {"account_id": income.account_id})
        print("Income added:\n" + _format_income(income))
    elif args.command == "list":
        incomes = service.list(
            start=args.start, end=args.end, account_id=_resolve_account(ledger, args.account), limit=args.limit
        )
        if not incomes:
            print("No incomes found.")
            return
        print(f"Found {len(incomes)} incomes:")
        for income in incomes:
            print(_format_income(income))
    elif args.command == "edit":
        changes = {
            "source": args.source,
            "amount_minor": args.amount,
            "account_id": _resolve_account(ledger, args.account),
            "currency_code": args.currency,
            "date_ts": args.date,
            "hours_worked": args.hours,
            "notes": args.notes,
        }
        income = service.update(args.id, _clean(changes))
        print("Income updated:\n" + _format_income(income))
    elif args.command == "delete":
        service.delete(args.id)
        print(f"Income {args.id} deleted.")


def handle_account(args: argparse.Namespace, ledger: Ledger) -> None:
    if args.command == "add":
        payload = {
            "name": args.name,
            "type": args.type,
            "currency": args.currency,
            "starting_balance_minor": args.starting,
        }
        account = ledger.accounts.add(_clean(payload))
        print(f"Account added: [{account.id}] {account.name} ({account.type}, {account.currency})")
    elif args.command == "list":
        accounts = ledger.accounts.list(include_archived=args.all)
        if not accounts:
            print("No accounts found.")
            return
        for account in accounts:
            marker = " (archived)" if account.archived else ""
            print(f"[{account.id}] {account.name} {account.type} {account.currency}{marker}")
    elif args.command == "archive":
        account = ledger.accounts.archive(_resolve_account(ledger, args.account))
        print(f"Account {account.name} archived.")


def handle_transfer(args: argparse.Namespace, ledger: Ledger) -> None:
    if args.command == "add":
        payload = {
            "from_account_id": _resolve_account(ledger, args.source),
            "to_account_id": _resolve_account(ledger, args.target),
            "amount_minor": args.amount,
            "date_ts": args.date,
            "notes": args.notes,
        }
        transfer = ledger.transfers.add(_clean(payload))
        print(
            f"Transfer added: [{transfer.id}] {transfer.from_account_name} -> {transfer.to_account_name} "
            f"{format_minor(transfer.amount_minor, transfer.currency or '')}"
        )
    elif args.command == "list":
        transfers = ledger.transfers.list(limit=args.limit)
        if not transfers:
            print("No transfers found.")
            return
        for transfer in transfers:
            print(
                f"[{transfer.id}] {_format_date(transfer.date_ts)} {transfer.from_account_name} -> "
                f"{transfer.to_account_name} {format_minor(transfer.amount_minor, transfer.currency or '')}"
            )


def handle_balance(args: argparse.Namespace, ledger: Ledger) -> None:
    base = ledger.settings.base_currency()
    for balance in ledger.balances.balances():
        print(
            f"{balance.name}: {format_minor(balance.balance_minor, balance.currency)} "
            f"({format_minor(balance.balance_base_minor, base)})"
        )
    currency = (args.currency or base).upper()
    total = ledger.balances.portfolio_total(args.currency)
    print(f"Total: {format_minor(total, currency)}")


def handle_wrap(args: argparse.Namespace, ledger: Ledger) -> None:
    if args.start is not None and args.end is not None:
        summary = ledger.analytics.wrap_summary(args.start, args.end)
    else:
        summary = ledger.analytics.wrap_for_period(args.period)
        ledger.settings.mark_viewed(args.period)
    base = ledger.settings.base_currency()
    print(summary.title or f"{_format_date(summary.start)} - {_format_date(summary.end)}")
    print(f"  Spent: {format_minor(summary.total_expense_minor, base)} across {summary.expense_count} expenses")
    print(f"  Earned: {format_minor(summary.total_income_minor, base)} across {summary.income_count} incomes")
    print(f"  Net: {format_minor(summary.net_minor, base)}")
    if summary.top_category is not None:
        print(
            f"  Top category: {summary.top_category.category_name} "
            f"({format_minor(summary.top_category.total_minor, base)})"
        )
    if summary.biggest_expense is not None:
        print(
            f"  Biggest expense: {summary.biggest_expense.title} "
            f"({format_minor(summary.biggest_expense.amount_minor, base)})"
        )
    if summary.top_spend_day is not None:
        print(
            f"  Top spending day: {summary.top_spend_day.bucket} "
            f"({format_minor(summary.top_spend_day.total_minor, base)})"
        )


def handle_migrate(db_path: Path) -> None:
    ledger = Ledger(SQLiteStorage(db_path))
    try:
        applied = ledger.migrate()
        version = ledger.storage.user_version()
    finally:
        ledger.close()
    if applied:
        print(f"Applied migrations: {', '.join(str(v) for v in applied)} (schema version {version})")
    else:
        print(f"Schema is up to date (version {version})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Worthy ledger CLI")
    parser.add_argument(
        "--db",
        dest="db_path",
        type=Path,
        default=None,
        help="SQLite database file (defaults to WORTHY_DB_PATH or data/worthy.db)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="entity", required=True)

    expense_parser = subparsers.add_parser("expense", help="Manage expenses")
    expense_sub = expense_parser.add_subparsers(dest="command", required=True)

    expense_add = expense_sub.add_parser("add", help="Add a new expense")
    expense_add.add_argument("title")
    expense_add.add_argument("amount", type=_parse_amount)
    expense_add.add_argument("--category", required=True, help="Category name or id")
    expense_add.add_argument("--account", help="Account name or id (defaults to the last one used)")
    expense_add.add_argument("--currency")
    expense_add.add_argument("--date", type=_parse_datetime)
    expense_add.add_argument("--worth", type=int, help="How worth it, 0 (regret) to 100")
    expense_add.add_argument("--notes")

    expense_list = expense_sub.add_parser("list", help="List expenses")
    expense_list.add_argument("--category")
    expense_list.add_argument("--account")
    expense_list.add_argument("--start", type=_parse_datetime)
    expense_list.add_argument("--end", type=_parse_datetime)
    expense_list.add_argument("--limit", type=int)

    expense_edit = expense_sub.add_parser("edit", help="Edit an existing expense")
    expense_edit.add_argument("id")
    expense_edit.add_argument("--title")
    expense_edit.add_argument("--amount", type=_parse_amount)
    expense_edit.add_argument("--category")
    expense_edit.add_argument("--account")
    expense_edit.add_argument("--currency")
    expense_edit.add_argument("--date", type=_parse_datetime)
    expense_edit.add_argument("--worth", type=int)
    expense_edit.add_argument("--notes")

    expense_delete = expense_sub.add_parser("delete", help="Delete an expense")
    expense_delete.add_argument("id")

    income_parser = subparsers.add_parser("income", help="Manage incomes")
    income_sub = income_parser.add_subparsers(dest="command", required=True)

    income_add = income_sub.add_parser("add", help="Add a new income")
    income_add.add_argument("source")
    income_add.add_argument("amount", type=_parse_amount)
    income_add.add_argument("--account", help="Account name or id (defaults to the last one used)")
    income_add.add_argument("--currency")
    income_add.add_argument("--date", type=_parse_datetime)
    income_add.add_argument("--hours", help="Hours worked for this income")
    income_add.add_argument("--notes")

    income_list = income_sub.add_parser("list", help="List incomes")
    income_list.add_argument("--account")
    income_list.add_argument("--start", type=_parse_datetime)
    income_list.add_argument("--end", type=_parse_datetime)
    income_list.add_argument("--limit", type=int)

    income_edit = income_sub.add_parser("edit", help="Edit an existing income")
    income_edit.add_argument("id")
    income_edit.add_argument("--source")
    income_edit.add_argument("--amount", type=_parse_amount)
    income_edit.add_argument("--account")
    income_edit.add_argument("--currency")
    income_edit.add_argument("--date", type=_parse_datetime)
    income_edit.add_argument("--hours")
    income_edit.add_argument("--notes")

    income_delete = income_sub.add_parser("delete", help="Delete an income")
    income_delete.add_argument("id")

    account_parser = subparsers.add_parser("account", help="Manage accounts")
    account_sub = account_parser.add_subparsers(dest="command", required=True)

    account_add = account_sub.add_parser("add", help="Add an account")
    account_add.add_argument("name")
    account_add.add_argument("--type", choices=sorted(ACCOUNT_TYPES), default="cash")
    account_add.add_argument("--currency")
    account_add.add_argument("--starting", type=_parse_signed_amount, help="Starting balance")

    account_list = account_sub.add_parser("list", help="List accounts")
    account_list.add_argument("--all", action="store_true", help="Include archived accounts")

    account_archive = account_sub.add_parser("archive", help="Archive an account")
    account_archive.add_argument("account", help="Account name or id")

    transfer_parser = subparsers.add_parser("transfer", help="Move money between accounts")
    transfer_sub = transfer_parser.add_subparsers(dest="command", required=True)

    transfer_add = transfer_sub.add_parser("add", help="Record a transfer")
    transfer_add.add_argument("source", help="Source account name or id")
    transfer_add.add_argument("target", help="Destination account name or id")
    transfer_add.add_argument("amount", type=_parse_amount)
    transfer_add.add_argument("--date", type=_parse_datetime)
    transfer_add.add_argument("--notes")

    transfer_list = transfer_sub.add_parser("list", help="List transfers")
    transfer_list.add_argument("--limit", type=int)

    balance_parser = subparsers.add_parser("balance", help="Show account balances")
    balance_parser.add_argument("--currency", help="Report the total in this currency")

    wrap_parser = subparsers.add_parser("wrap", help="Summarise a past period")
    wrap_parser.add_argument("--period", choices=WRAP_PERIODS, default="month")
    wrap_parser.add_argument("--start", type=_parse_datetime)
    wrap_parser.add_argument("--end", type=_parse_datetime)

    subparsers.add_parser("migrate", help="Apply pending schema migrations")

    return parser


HANDLERS = {
    "expense": handle_expense,
    "income": handle_income,
    "account": handle_account,
    "transfer": handle_transfer,
    "balance": handle_balance,
    "wrap": handle_wrap,
}


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = load_config()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    db_path = args.db_path or config.db_path

    try:
        if args.entity == "migrate":
            handle_migrate(db_path)
        else:
            with Ledger.open(db_path, base_currency=config.base_currency) as ledger:
                HANDLERS[args.entity](args, ledger)
    except ValidationError as exc:
        print(f"Validation error: {exc}", file=sys.stderr)
        return 1
    except RecordNotFoundError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    except PersistenceError as exc:
        print(f"Storage error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
