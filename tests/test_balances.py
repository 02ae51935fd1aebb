import pytest

from worthy.exceptions import RecordNotFoundError, ValidationError


class TestBalances:
    """Balances are recomputed from the ledger on every read."""

    def test_usd_cash_scenario(self, ledger, cash, food):
        ledger.expenses.add(
            {"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id, "slider_0_100": 30}
        )
        ledger.incomes.add({"source": "Paycheck", "amount_minor": 500000, "account_id": cash.id, "hours_worked": 40})

        assert ledger.balances.account_balance(cash.id) == 498500
        # The seeded Cash account is empty, so the portfolio equals the wallet.
        assert ledger.balances.portfolio_total() == 498500

    def test_balance_identity(self, ledger, food):
        account = ledger.accounts.add({"name": "Bank", "type": "bank", "starting_balance_minor": 10000})
        other = ledger.accounts.add({"name": "Savings", "type": "bank"})
        ledger.incomes.add({"source": "Salary", "amount_minor": 7000, "account_id": account.id})
        ledger.expenses.add({"title": "Rent", "amount_minor": 4000, "category_id": food.id, "account_id": account.id})
        ledger.transfers.add({"from_account_id": account.id, "to_account_id": other.id, "amount_minor": 2500})
        ledger.transfers.add({"from_account_id": other.id, "to_account_id": account.id, "amount_minor": 500})

        assert ledger.balances.account_balance(account.id) == 10000 + 7000 - 4000 + 500 - 2500
        assert ledger.balances.account_balance(other.id) == 2000

    def test_euro_wallet_scenario(self, ledger, euro, food):
        wallet = ledger.accounts.add({"name": "Euro Wallet", "type": "ewallet", "currency": "EUR"})
        ledger.expenses.add({"title": "Croissant", "amount_minor": 1000, "category_id": food.id, "account_id": wallet.id})

        (balance,) = [b for b in ledger.balances.balances() if b.account_id == wallet.id]
        assert balance.balance_minor == -1000
        assert balance.currency == "EUR"
        assert balance.balance_base_minor == -1100
        assert ledger.balances.portfolio_total() == -1100
        assert ledger.balances.portfolio_total("EUR") == -1000

    def test_cross_currency_transfer_lands_unconverted(self, ledger, euro):
        dollars = ledger.accounts.add({"name": "A", "currency": "USD", "starting_balance_minor": 5000})
        euros = ledger.accounts.add({"name": "B", "currency": "EUR"})

        ledger.transfers.add({"from_account_id": dollars.id, "to_account_id": euros.id, "amount_minor": 2000})

        assert ledger.balances.account_balance(dollars.id) == 3000
        assert ledger.balances.account_balance(euros.id) == 2000

    def test_entry_currency_override_converts_into_account_currency(self, ledger, euro, cash, food):
        ledger.expenses.add(
            {
                "title": "Museum",
                "amount_minor": 1000,
                "currency_code": "EUR",
                "category_id": food.id,
                "account_id": cash.id,
            }
        )
        assert ledger.balances.account_balance(cash.id) == -1100

    def test_missing_rate_fails_open(self, ledger, food):
        account = ledger.accounts.add({"name": "Pounds", "currency": "GBP"})
        ledger.expenses.add({"title": "Tea", "amount_minor": 400, "category_id": food.id, "account_id": account.id})

        assert ledger.balances.portfolio_total() == -400

    def test_archived_accounts_leave_the_portfolio(self, ledger, cash):
        ledger.incomes.add({"source": "Gift", "amount_minor": 900, "account_id": cash.id})
        ledger.accounts.archive(cash.id)

        assert ledger.balances.portfolio_total() == 0
        assert cash.id not in [b.account_id for b in ledger.balances.balances()]
        assert ledger.balances.account_balance(cash.id) == 900

    def test_unknown_account_and_reporting_currency(self, ledger):
        with pytest.raises(RecordNotFoundError):
            ledger.balances.account_balance("acct_missing")
        with pytest.raises(ValidationError):
            ledger.balances.portfolio_total("euros")
