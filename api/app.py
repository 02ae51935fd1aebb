"""Flask REST API exposing the Worthy ledger services."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from flask import Flask, jsonify, request
from flask_cors import CORS

from worthy.config import load_config
from worthy.exceptions import (
    PersistenceError,
    RecordNotFoundError,
    ReferentialIntegrityError,
    ValidationError,
)
from worthy.ledger import Ledger
from worthy.periods import PERIOD_CHOICES, WRAP_PERIODS, period_range


def create_app(db_path: Optional[Union[str, Path]] = None, ledger: Optional[Ledger] = None) -> Flask:
    app = Flask(__name__)
    config = load_config()

    if config.is_dev:
        CORS(app, resources={r"/*": {"origins": "*"}}, supports_credentials=True)
    elif config.allowed_origins:
        CORS(app, resources={r"/*": {"origins": config.allowed_origins}}, supports_credentials=True)
    else:
        CORS(app)

    if ledger is None:
        ledger = Ledger.open(db_path or config.db_path, base_currency=config.base_currency)
    app.extensions["worthy_ledger"] = ledger

    def _success(payload: Any, status: int = 200):
        if status == 204:
            return ("", status)
        return jsonify(payload), status

    def _items(records) -> Dict[str, Any]:
        return {"items": [record.to_dict() for record in records]}

    def _handle_error(exc: Exception, status: int, message: str):
        app.logger.error("%s: %s", message, exc)
        return jsonify({"error": message, "details": str(exc)}), status

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        return _handle_error(exc, 400, "Validation error")

    @app.errorhandler(ReferentialIntegrityError)
    def handle_integrity_error(exc: ReferentialIntegrityError):
        return _handle_error(exc, 409, "Referential integrity error")

    @app.errorhandler(RecordNotFoundError)
    def handle_not_found(exc: RecordNotFoundError):
        return _handle_error(exc, 404, "Record not found")

    @app.errorhandler(PersistenceError)
    def handle_persistence_error(exc: PersistenceError):
        return _handle_error(exc, 500, "Persistence error")

    def _json_body() -> Dict[str, Any]:
        if not request.is_json:
            raise ValidationError("Request content must be application/json")
        data = request.get_json(silent=True)
        if data is None:
            raise ValidationError("Malformed JSON body")
        if not isinstance(data, dict):
            raise ValidationError("JSON body must be an object")
        return data

    def _flag(name: str) -> bool:
        return request.args.get(name, "").lower() in {"1", "true", "yes"}

    def _optional_arg(name: str) -> Optional[str]:
        value = request.args.get(name)
        return value if value not in (None, "") else None

    def _list_filters() -> Dict[str, Any]:
        return {
            "start": _optional_arg("start"),
            "end": _optional_arg("end"),
            "limit": _optional_arg("limit"),
            "include_archived": _flag("include_archived"),
        }

    def _range() -> Tuple[object, object]:
        """Explicit ``start``/``end`` or the calendar ``period`` (default month) containing now."""
        start, end = _optional_arg("start"), _optional_arg("end")
        if start is not None and end is not None:
            return start, end
        period = request.args.get("period", "month")
        if period not in PERIOD_CHOICES:
            raise ValidationError(f"period must be one of: {', '.join(PERIOD_CHOICES)}")
        return period_range(period=period)

    # Accounts ---------------------------------------------------------------
    @app.get("/accounts")
    def list_accounts():
        return _success(_items(ledger.accounts.list(include_archived=_flag("include_archived"))))

    @app.post("/accounts")
    def create_account():
        account = ledger.accounts.add(_json_body())
        return _success(account.to_dict(), 201)

    @app.get("/accounts/<account_id>")
    def get_account(account_id: str):
        return _success(ledger.accounts.get(account_id).to_dict())

    @app.put("/accounts/<account_id>")
    def update_account(account_id: str):
        return _success(ledger.accounts.update(account_id, _json_body()).to_dict())

    @app.post("/accounts/<account_id>/archive")
    def archive_account(account_id: str):
        return _success(ledger.accounts.archive(account_id).to_dict())

    @app.post("/accounts/<account_id>/restore")
    def restore_account(account_id: str):
        return _success(ledger.accounts.restore(account_id).to_dict())

    @app.delete("/accounts/<account_id>")
    def delete_account(account_id: str):
        ledger.accounts.delete(account_id)
        return _success({}, 204)

    # Categories -------------------------------------------------------------
    @app.get("/categories")
    def list_categories():
        return _success(_items(ledger.categories.list(include_archived=_flag("include_archived"))))

    @app.post("/categories")
    def create_category():
        category = ledger.categories.add(_json_body())
        return _success(category.to_dict(), 201)

    @app.put("/categories/<category_id>")
    def update_category(category_id: str):
        return _success(ledger.categories.update(category_id, _json_body()).to_dict())

    @app.post("/categories/reorder")
    def reorder_categories():
        payload = _json_body()
        order = payload.get("order") if isinstance(payload, dict) else None
        if not isinstance(order, list):
            raise ValidationError("order must be a list of {id, sort_order} objects")
        return _success(_items(ledger.categories.reorder(order)))

    @app.post("/categories/<category_id>/archive")
    def archive_category(category_id: str):
        return _success(ledger.categories.archive(category_id).to_dict())

    @app.post("/categories/<category_id>/restore")
    def restore_category(category_id: str):
        return _success(ledger.categories.restore(category_id).to_dict())

    @app.delete("/categories/<category_id>")
    def delete_category(category_id: str):
        ledger.categories.delete(category_id)
        return _success({}, 204)

    # Currencies -------------------------------------------------------------
    @app.get("/currencies")
    def list_currencies():
        return _success(
            {
                **_items(ledger.currencies.list(include_archived=_flag("include_archived"))),
                "base_currency": ledger.settings.base_currency(),
            }
        )

    @app.put("/currencies")
    def upsert_currency():
        return _success(ledger.currencies.upsert(_json_body()).to_dict())

    @app.post("/currencies/<code>/archive")
    def archive_currency(code: str):
        ledger.currencies.archive(code)
        return _success({}, 204)

    # Expenses ---------------------------------------------------------------
    @app.get("/expenses")
    def list_expenses():
        expenses = ledger.expenses.list(
            category_id=_optional_arg("category_id"),
            account_id=_optional_arg("account_id"),
            **_list_filters(),
        )
        return _success(_items(expenses))

    @app.post("/expenses")
    def create_expense():
        expense = ledger.expenses.add(_json_body())
        return _success(expense.to_dict(), 201)

    @app.get("/expenses/<expense_id>")
    def get_expense(expense_id: str):
        return _success(ledger.expenses.get(expense_id).to_dict())

    @app.put("/expenses/<expense_id>")
    def update_expense(expense_id: str):
        return _success(ledger.expenses.update(expense_id, _json_body()).to_dict())

    @app.delete("/expenses/<expense_id>")
    def delete_expense(expense_id: str):
        ledger.expenses.delete(expense_id)
        return _success({}, 204)

    # Incomes ----------------------------------------------------------------
    @app.get("/incomes")
    def list_incomes():
        incomes = ledger.incomes.list(account_id=_optional_arg("account_id"), **_list_filters())
        return _success(_items(incomes))

    @app.post("/incomes")
    def create_income():
        income = ledger.incomes.add(_json_body())
        return _success(income.to_dict(), 201)

    @app.get("/incomes/<income_id>")
    def get_income(income_id: str):
        return _success(ledger.incomes.get(income_id).to_dict())

    @app.put("/incomes/<income_id>")
    def update_income(income_id: str):
        return _success(ledger.incomes.update(income_id, _json_body()).to_dict())

    @app.delete("/incomes/<income_id>")
    def delete_income(income_id: str):
        ledger.incomes.delete(income_id)
        return _success({}, 204)

    # Transfers and feed -----------------------------------------------------
    @app.get("/transfers")
    def list_transfers():
        transfers = ledger.transfers.list(account_id=_optional_arg("account_id"), **_list_filters())
        return _success(_items(transfers))

    @app.post("/transfers")
    def create_transfer():
        transfer = ledger.transfers.add(_json_body())
        return _success(transfer.to_dict(), 201)

    @app.get("/transfers/<transfer_id>")
    def get_transfer(transfer_id: str):
        return _success(ledger.transfers.get(transfer_id).to_dict())

    @app.delete("/transfers/<transfer_id>")
    def delete_transfer(transfer_id: str):
        ledger.transfers.delete(transfer_id)
        return _success({}, 204)

    @app.get("/transactions")
    def list_transactions():
        return _success(_items(ledger.transactions.list(**_list_filters())))

    # Budgets ----------------------------------------------------------------
    @app.get("/budgets")
    def list_budgets():
        return _success(_items(ledger.budgets.list(include_archived=_flag("include_archived"))))

    @app.post("/budgets")
    def create_budget():
        budget = ledger.budgets.add(_json_body())
        return _success(budget.to_dict(), 201)

    @app.get("/budgets/<budget_id>")
    def get_budget(budget_id: str):
        return _success(ledger.budgets.get(budget_id).to_dict())

    @app.put("/budgets/<budget_id>")
    def update_budget(budget_id: str):
        return _success(ledger.budgets.update(budget_id, _json_body()).to_dict())

    @app.post("/budgets/<budget_id>/archive")
    def archive_budget(budget_id: str):
        return _success(ledger.budgets.archive(budget_id).to_dict())

    @app.get("/budgets/<budget_id>/progress")
    def budget_progress(budget_id: str):
        return _success(ledger.budgets.progress(budget_id).to_dict())

    # Savings and wishlist ---------------------------------------------------
    @app.get("/savings")
    def list_savings_buckets():
        return _success(_items(ledger.savings.list_buckets(include_archived=_flag("include_archived"))))

    @app.post("/savings")
    def create_savings_bucket():
        bucket = ledger.savings.add_bucket(_json_body())
        return _success(bucket.to_dict(), 201)

    @app.get("/savings/<bucket_id>")
    def get_savings_bucket(bucket_id: str):
        return _success(ledger.savings.get_bucket(bucket_id).to_dict())

    @app.post("/savings/<bucket_id>/archive")
    def archive_savings_bucket(bucket_id: str):
        return _success(ledger.savings.archive_bucket(bucket_id).to_dict())

    @app.delete("/savings/<bucket_id>")
    def delete_savings_bucket(bucket_id: str):
        ledger.savings.delete_bucket(bucket_id)
        return _success({}, 204)

    @app.get("/savings/<bucket_id>/contributions")
    def list_contributions(bucket_id: str):
        return _success(_items(ledger.savings.list_contributions(bucket_id)))

    @app.post("/savings/<bucket_id>/contributions")
    def create_contribution(bucket_id: str):
        contribution = ledger.savings.add_contribution({**_json_body(), "bucket_id": bucket_id})
        return _success(contribution.to_dict(), 201)

    @app.get("/wishlist")
    def list_wishlist():
        return _success(_items(ledger.wishlist.list(include_archived=_flag("include_archived"))))

    @app.post("/wishlist")
    def create_wishlist_item():
        item = ledger.wishlist.add(_json_body())
        return _success(item.to_dict(), 201)

    @app.get("/wishlist/<item_id>")
    def get_wishlist_item(item_id: str):
        return _success(ledger.wishlist.get(item_id).to_dict())

    @app.put("/wishlist/<item_id>")
    def update_wishlist_item(item_id: str):
        return _success(ledger.wishlist.update(item_id, _json_body()).to_dict())

    @app.post("/wishlist/<item_id>/archive")
    def archive_wishlist_item(item_id: str):
        return _success(ledger.wishlist.archive(item_id).to_dict())

    # Recurring rules and receipts -------------------------------------------
    @app.get("/recurring")
    def list_recurring_rules():
        return _success(_items(ledger.recurring.list(active_only=_flag("active_only"))))

    @app.post("/recurring")
    def create_recurring_rule():
        rule = ledger.recurring.add(_json_body())
        return _success(rule.to_dict(), 201)

    @app.get("/recurring/due")
    def due_recurring_rules():
        return _success(_items(ledger.recurring.due()))

    @app.get("/recurring/<rule_id>")
    def get_recurring_rule(rule_id: str):
        return _success(ledger.recurring.get(rule_id).to_dict())

    @app.put("/recurring/<rule_id>/active")
    def set_recurring_rule_active(rule_id: str):
        active = _json_body().get("active")
        if not isinstance(active, bool):
            raise ValidationError("active must be a boolean")
        return _success(ledger.recurring.set_active(rule_id, active).to_dict())

    @app.get("/receipts")
    def list_receipts():
        return _success(_items(ledger.receipts.list(status=_optional_arg("status"))))

    @app.post("/receipts")
    def create_receipt():
        receipt = ledger.receipts.add(_json_body())
        return _success(receipt.to_dict(), 201)

    @app.get("/receipts/<receipt_id>")
    def get_receipt(receipt_id: str):
        return _success(ledger.receipts.get(receipt_id).to_dict())

    @app.put("/receipts/<receipt_id>")
    def update_receipt(receipt_id: str):
        return _success(ledger.receipts.update(receipt_id, _json_body()).to_dict())

    @app.post("/receipts/<receipt_id>/link")
    def link_receipt(receipt_id: str):
        expense_id = _json_body().get("expense_id")
        if not isinstance(expense_id, str) or not expense_id:
            raise ValidationError("expense_id is required")
        return _success(ledger.receipts.link_expense(receipt_id, expense_id).to_dict())

    @app.delete("/receipts/<receipt_id>")
    def delete_receipt(receipt_id: str):
        ledger.receipts.delete(receipt_id)
        return _success({}, 204)

    # Settings ---------------------------------------------------------------
    @app.get("/settings")
    def get_settings():
        return _success(ledger.settings.get_all())

    @app.put("/settings")
    def update_settings():
        ledger.settings.set_many(_json_body())
        return _success(ledger.settings.get_all())

    @app.get("/settings/defaults/<kind>")
    def get_form_defaults(kind: str):
        return _success(ledger.settings.load_defaults(kind))

    @app.put("/settings/defaults/<kind>")
    def save_form_defaults(kind: str):
        ledger.settings.save_defaults(kind, _json_body())
        return _success(ledger.settings.load_defaults(kind))

    # Balances and analytics -------------------------------------------------
    @app.get("/balances")
    def balances():
        reporting = _optional_arg("currency")
        return _success(
            {
                **_items(ledger.balances.balances(include_archived=_flag("include_archived"))),
                "base_currency": ledger.settings.base_currency(),
                "total_minor": ledger.balances.portfolio_total(reporting),
                "total_currency": (reporting or ledger.settings.base_currency()).upper(),
            }
        )

    @app.get("/analytics/series")
    def analytics_series():
        start, end = _range()
        granularity = request.args.get("granularity", "day")
        kind = request.args.get("kind", "expense")
        if kind == "expense":
            points = ledger.analytics.expense_series(start, end, granularity)
        elif kind == "income":
            points = ledger.analytics.income_series(start, end, granularity)
        else:
            raise ValidationError("kind must be one of: expense, income")
        return _success(_items(points))

    @app.get("/analytics/categories")
    def analytics_categories():
        start, end = _range()
        return _success(_items(ledger.analytics.category_spend(start, end)))

    @app.get("/analytics/regret")
    def analytics_regret():
        start, end = _range()
        analytics = ledger.analytics
        return _success(
            {
                "by_category": [item.to_dict() for item in analytics.regret_by_category(start, end)],
                "histogram": [item.to_dict() for item in analytics.regret_histogram(start, end)],
                "most_regretted": [item.to_dict() for item in analytics.most_regretted(start, end)],
                "most_worth_it": [item.to_dict() for item in analytics.most_worth_it(start, end)],
            }
        )

    @app.get("/analytics/life-cost")
    def analytics_life_cost():
        start, end = _range()
        return _success(
            {
                "effective_rate": ledger.analytics.effective_hourly_rate().to_dict(),
                "hourly_rate_minor": ledger.analytics.hourly_rate(),
                "hours_per_day": ledger.settings.hours_per_day(),
                **_items(ledger.analytics.life_cost_by_category(start, end)),
            }
        )

    @app.get("/analytics/wrap")
    def analytics_wrap():
        start, end = _optional_arg("start"), _optional_arg("end")
        if start is not None and end is not None:
            return _success(ledger.analytics.wrap_summary(start, end).to_dict())
        period = request.args.get("period", "month")
        if period not in WRAP_PERIODS:
            raise ValidationError(f"period must be one of: {', '.join(WRAP_PERIODS)}")
        summary = ledger.analytics.wrap_for_period(period)
        ledger.settings.mark_viewed(period)
        return _success(summary.to_dict())

    return app


if __name__ == "__main__":
    create_app().run()
