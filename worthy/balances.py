"""Derived account balances and the portfolio total."""

from __future__ import annotations

from typing import List, Optional

from .currency import RateTable, between, to_base
from .models import Account, AccountBalance
from .services import AccountService, CurrencyService
from .storage import SQLiteStorage
from .validators import validate_currency


class BalanceService:
    """Recomputes balances from the ledger on every call; nothing is cached.

    balance = starting + incomes - expenses + transfers in - transfers out

    Expenses and incomes are converted straight into the account's currency with
    rate(entry) / rate(account). Transfers count at face value in both accounts.
    """

    def __init__(
        self, storage: SQLiteStorage, accounts: AccountService, currencies: CurrencyService
    ) -> None:
        self._storage = storage
        self._accounts = accounts
        self._currencies = currencies

    def account_balance(self, account_id: str, rates: Optional[RateTable] = None) -> int:
        account = self._accounts.get(account_id)
        return self._balance(account, rates or self._currencies.rate_table())

    def balances(self, include_archived: bool = False) -> List[AccountBalance]:
        rates = self._currencies.rate_table()
        results = []
        for account in self._accounts.list(include_archived=include_archived):
            balance = self._balance(account, rates)
            results.append(
                AccountBalance(
                    account_id=account.id,
                    name=account.name,
                    currency=account.currency,
                    balance_minor=balance,
                    balance_base_minor=to_base(balance, account.currency, rates, rates.base),
                )
            )
        return results

    def portfolio_total(self, reporting_currency: Optional[str] = None) -> int:
        """Sum of every live account's balance in the base (or given) currency."""
        rates = self._currencies.rate_table()
        total = sum(
            to_base(self._balance(account, rates), account.currency, rates, rates.base)
            for account in self._accounts.list()
        )
        if reporting_currency is None:
            return total
        target = validate_currency(reporting_currency, "reporting_currency")
        return between(total, rates.base, target, rates, rates.base)

    def _balance(self, account: Account, rates: RateTable) -> int:
        net = account.starting_balance_minor
        for table, sign in (("incomes", 1), ("expenses", -1)):
            rows = self._storage.query_all(
                f"""SELECT COALESCE(x.currency_code, ?) AS currency_code, SUM(x.amount_minor) AS total
                FROM {table} x
                WHERE x.account_id = ?
                GROUP BY COALESCE(x.currency_code, ?)""",
                (account.currency, account.id, account.currency),
            )
            for row in rows:
                net += sign * between(row["total"], row["currency_code"], account.currency, rates, rates.base)

        transfers_in = self._storage.scalar(
            "SELECT COALESCE(SUM(amount_minor), 0) FROM transfers WHERE to_account_id = ?", (account.id,)
        )
        transfers_out = self._storage.scalar(
            "SELECT COALESCE(SUM(amount_minor), 0) FROM transfers WHERE from_account_id = ?", (account.id,)
        )
        return net + transfers_in - transfers_out
