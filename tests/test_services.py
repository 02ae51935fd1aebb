import pytest

from worthy.exceptions import RecordNotFoundError, ReferentialIntegrityError, ValidationError
from worthy.services import SettingKey, ThemeMode
from worthy.validators import MAX_INTEGER, MAX_TIMESTAMP_MS


class TestAccounts:
    """Account CRUD and archiving."""

    def test_add_applies_defaults(self, ledger):
        account = ledger.accounts.add({"name": "Bank"})

        assert account.id.startswith("acct_")
        assert account.type == "cash"
        assert account.currency == "USD"
        assert account.starting_balance_minor == 0
        assert account.updated_at == account.created_at

    def test_credit_account_may_start_negative(self, ledger):
        account = ledger.accounts.add({"name": "Card", "type": "credit", "starting_balance_minor": -5000})
        assert account.starting_balance_minor == -5000

    def test_invalid_payload_is_rejected(self, ledger):
        with pytest.raises(ValidationError):
            ledger.accounts.add({"name": "Bank", "type": "piggy"})
        with pytest.raises(ValidationError):
            ledger.accounts.add({"name": "Bank", "currency": "dollars"})
        with pytest.raises(ValidationError):
            ledger.accounts.add({"name": "Bank", "colour": "red"})

    def test_update_without_fields_is_a_no_op(self, ledger, cash):
        assert ledger.accounts.update(cash.id, {}) == cash

    def test_archived_account_is_hidden_but_retrievable(self, ledger, cash):
        ledger.accounts.archive(cash.id)

        assert cash.id not in [a.id for a in ledger.accounts.list()]
        assert cash.id in [a.id for a in ledger.accounts.list(include_archived=True)]
        assert ledger.accounts.get(cash.id).archived

        restored = ledger.accounts.restore(cash.id)
        assert not restored.archived

    def test_delete_is_restricted_while_referenced(self, ledger, cash, food):
        ledger.expenses.add({"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id})

        with pytest.raises(ReferentialIntegrityError):
            ledger.accounts.delete(cash.id)
        assert ledger.accounts.get(cash.id).id == cash.id

    def test_unknown_account(self, ledger):
        with pytest.raises(RecordNotFoundError):
            ledger.accounts.get("acct_missing")


class TestCategories:
    def test_seeded_categories_are_ordered(self, ledger):
        names = [category.name for category in ledger.categories.list()]
        assert names[:3] == ["Commute", "Entertainment", "Grocery"]
        assert len(names) == 8

    def test_new_category_goes_last(self, ledger, food):
        assert ledger.categories.list()[-1].id == food.id
        assert food.color == "#F28E2B"

    def test_reorder_applies_all_positions(self, ledger, food):
        first = ledger.categories.list()[0]
        ordered = ledger.categories.reorder([{"id": food.id, "sort_order": 0}, (first.id, 100)])

        assert ordered[0].id == food.id
        assert ordered[-1].id == first.id

    def test_reorder_with_unknown_id_rolls_back(self, ledger, food):
        before = [(c.id, c.sort_order) for c in ledger.categories.list()]

        with pytest.raises(RecordNotFoundError):
            ledger.categories.reorder([(food.id, 0), ("cat_missing", 1)])

        assert [(c.id, c.sort_order) for c in ledger.categories.list()] == before

    def test_null_sort_order_is_rejected(self, ledger, food):
        with pytest.raises(ValidationError):
            ledger.categories.update(food.id, {"sort_order": None})


class TestExpenses:
    def test_add_returns_view_with_joined_fields(self, ledger, cash, food, ms):
        expense = ledger.expenses.add(
            {
                "title": "Lunch",
                "amount_minor": 1500,
                "category_id": food.id,
                "account_id": cash.id,
                "date_ts": ms(2024, 3, 5),
                "slider_0_100": 30,
            }
        )

        assert expense.id.startswith("exp_")
        assert expense.category_name == "Food"
        assert expense.account_name == "Wallet"
        assert expense.effective_currency == "USD"
        assert ledger.expenses.get(expense.id) == expense

    def test_sentiment_defaults_to_neutral(self, ledger, cash, food):
        expense = ledger.expenses.add({"title": "Snack", "amount_minor": 300, "category_id": food.id, "account_id": cash.id})
        assert expense.slider_0_100 == 50

    @pytest.mark.parametrize("amount", [0, -1, "1.50", True, None])
    def test_rejects_invalid_amounts(self, ledger, cash, food, amount):
        with pytest.raises(ValidationError):
            ledger.expenses.add({"title": "Bad", "amount_minor": amount, "category_id": food.id, "account_id": cash.id})

    @pytest.mark.parametrize("amount", [MAX_INTEGER + 1, 2**70, -(2**70)])
    def test_rejects_amounts_beyond_integer_range(self, ledger, cash, food, amount):
        with pytest.raises(ValidationError):
            ledger.expenses.add({"title": "Bad", "amount_minor": amount, "category_id": food.id, "account_id": cash.id})

    def test_accepts_largest_integer_amount(self, ledger, cash, food):
        expense = ledger.expenses.add(
            {"title": "Yacht", "amount_minor": MAX_INTEGER, "category_id": food.id, "account_id": cash.id}
        )
        assert expense.amount_minor == MAX_INTEGER

    @pytest.mark.parametrize("when", [MAX_TIMESTAMP_MS + 1, 10**16, "10000000000000000", -1])
    def test_rejects_timestamps_outside_calendar_range(self, ledger, cash, food, when):
        with pytest.raises(ValidationError):
            ledger.expenses.add(
                {"title": "Bad", "amount_minor": 1, "category_id": food.id, "account_id": cash.id, "date_ts": when}
            )

    def test_latest_timestamp_stays_readable(self, ledger, cash, food):
        ledger.expenses.add(
            {"title": "Far off", "amount_minor": 100, "category_id": food.id, "account_id": cash.id, "date_ts": MAX_TIMESTAMP_MS}
        )

        (point,) = ledger.analytics.expense_series(0, MAX_TIMESTAMP_MS)
        assert point.bucket.startswith("9999-12-")
        assert ledger.analytics.wrap_summary(0, MAX_TIMESTAMP_MS).total_expense_minor == 100

    def test_stays_retrievable_after_references_are_archived(self, ledger, cash, food):
        expense = ledger.expenses.add({"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id})
        ledger.categories.archive(food.id)
        ledger.accounts.archive(cash.id)

        kept = ledger.expenses.get(expense.id)

        assert kept.id == expense.id
        assert kept.category_name == "Food"
        assert kept.account_name == "Wallet"
        assert ledger.expenses.list() == []
        assert [e.id for e in ledger.expenses.list(include_archived=True)] == [expense.id]

    def test_rejects_out_of_range_sentiment(self, ledger, cash, food):
        with pytest.raises(ValidationError):
            ledger.expenses.add(
                {"title": "Bad", "amount_minor": 1, "category_id": food.id, "account_id": cash.id, "slider_0_100": 101}
            )

    def test_rejects_missing_or_archived_references(self, ledger, cash, food):
        with pytest.raises(ReferentialIntegrityError):
            ledger.expenses.add({"title": "X", "amount_minor": 1, "category_id": "cat_missing", "account_id": cash.id})

        ledger.accounts.archive(cash.id)
        with pytest.raises(ReferentialIntegrityError):
            ledger.expenses.add({"title": "X", "amount_minor": 1, "category_id": food.id, "account_id": cash.id})

    def test_partial_update_touches_only_given_fields(self, ledger, cash, food):
        expense = ledger.expenses.add({"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id})

        updated = ledger.expenses.update(expense.id, {"amount_minor": 1800})

        assert updated.amount_minor == 1800
        assert updated.title == "Lunch"
        assert updated.date_ts == expense.date_ts
        assert ledger.expenses.update(expense.id, {}) == updated

    def test_list_filters_and_archive_exclusion(self, ledger, cash, food, ms):
        other = ledger.accounts.add({"name": "Bank", "type": "bank"})
        for day, account in ((1, cash), (2, other), (3, cash)):
            ledger.expenses.add(
                {
                    "title": f"Day {day}",
                    "amount_minor": 100 * day,
                    "category_id": food.id,
                    "account_id": account.id,
                    "date_ts": ms(2024, 3, day),
                }
            )

        assert [e.title for e in ledger.expenses.list()] == ["Day 3", "Day 2", "Day 1"]
        assert [e.title for e in ledger.expenses.list(account_id=cash.id)] == ["Day 3", "Day 1"]
        assert [e.title for e in ledger.expenses.list(start=ms(2024, 3, 2, 0), end=ms(2024, 3, 2, 23))] == ["Day 2"]
        assert len(ledger.expenses.list(limit=1)) == 1

        ledger.accounts.archive(other.id)
        assert [e.title for e in ledger.expenses.list()] == ["Day 3", "Day 1"]
        assert len(ledger.expenses.list(include_archived=True)) == 3

    def test_delete(self, ledger, cash, food):
        expense = ledger.expenses.add({"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id})
        ledger.expenses.delete(expense.id)
        with pytest.raises(RecordNotFoundError):
            ledger.expenses.get(expense.id)


class TestIncomesAndTransfers:
    def test_income_hours_are_optional(self, ledger, cash):
        paid = ledger.incomes.add({"source": "Paycheck", "amount_minor": 500000, "account_id": cash.id, "hours_worked": 40})
        gift = ledger.incomes.add({"source": "Gift", "amount_minor": 2000, "account_id": cash.id})

        assert paid.hours_worked == 40.0
        assert gift.hours_worked is None

    def test_negative_hours_rejected(self, ledger, cash):
        with pytest.raises(ValidationError):
            ledger.incomes.add({"source": "Gig", "amount_minor": 100, "account_id": cash.id, "hours_worked": -1})

    def test_transfer_requires_two_distinct_live_accounts(self, ledger, cash):
        with pytest.raises(ValidationError):
            ledger.transfers.add({"from_account_id": cash.id, "to_account_id": cash.id, "amount_minor": 100})

        other = ledger.accounts.add({"name": "Bank"})
        ledger.accounts.archive(other.id)
        with pytest.raises(ReferentialIntegrityError):
            ledger.transfers.add({"from_account_id": cash.id, "to_account_id": other.id, "amount_minor": 100})

    def test_transaction_feed_merges_newest_first(self, ledger, cash, food, ms):
        bank = ledger.accounts.add({"name": "Bank"})
        ledger.expenses.add(
            {"title": "Lunch", "amount_minor": 1500, "category_id": food.id, "account_id": cash.id, "date_ts": ms(2024, 3, 1)}
        )
        ledger.incomes.add({"source": "Paycheck", "amount_minor": 9000, "account_id": bank.id, "date_ts": ms(2024, 3, 3)})
        ledger.transfers.add(
            {"from_account_id": bank.id, "to_account_id": cash.id, "amount_minor": 2000, "date_ts": ms(2024, 3, 2)}
        )

        feed = ledger.transactions.list()

        assert [entry.type for entry in feed] == ["income", "transfer", "expense"]
        assert feed[1].from_account_name == "Bank"
        assert feed[2].category_name == "Food"
        assert ledger.transactions.first_date() == ms(2024, 3, 1)


class TestCurrenciesAndSettings:
    def test_base_currency_row_is_seeded_at_parity(self, ledger):
        usd = ledger.currencies.get("usd")
        assert usd.rate_to_base == 1

    def test_upsert_pins_base_currency_rate(self, ledger):
        usd = ledger.currencies.upsert({"code": "USD", "name": "US Dollar", "rate_to_base": 2})
        assert usd.rate_to_base == 1

    def test_base_currency_cannot_be_archived(self, ledger, euro):
        with pytest.raises(ValidationError):
            ledger.currencies.archive("USD")
        ledger.currencies.archive("EUR")
        assert [c.code for c in ledger.currencies.list()] == ["USD"]

    def test_switching_base_currency_pins_new_rate(self, ledger, euro):
        ledger.settings.set_base_currency("eur")

        assert ledger.settings.base_currency() == "EUR"
        assert ledger.currencies.get("EUR").rate_to_base == 1
        assert ledger.currencies.rate_table().base == "EUR"

    def test_typed_settings(self, ledger):
        assert ledger.settings.theme_mode() is ThemeMode.SYSTEM
        assert ledger.settings.hours_per_day() == 8
        assert ledger.settings.fixed_hourly_rate_minor() == 0

        ledger.settings.set_theme_mode("dark")
        ledger.settings.set_hours_per_day(6)
        ledger.settings.set_fixed_hourly_rate_minor(2500)

        assert ledger.settings.get(SettingKey.THEME_MODE) == "dark"
        assert ledger.settings.hours_per_day() == 6
        assert ledger.settings.fixed_hourly_rate_minor() == 2500

        with pytest.raises(ValidationError):
            ledger.settings.set_theme_mode("neon")
        with pytest.raises(ValidationError):
            ledger.settings.set_hours_per_day(25)

    def test_form_defaults_round_trip(self, ledger, cash):
        ledger.settings.save_defaults("expense", {"account_id": cash.id, "notes": "work"})
        ledger.settings.save_defaults("expense", {"account_id": None, "notes": None})

        defaults = ledger.settings.load_defaults("expense")
        assert defaults["account_id"] == cash.id
        assert defaults["notes"] == ""
        assert defaults["category_id"] is None

    def test_last_viewed_markers(self, ledger, ms):
        assert ledger.settings.last_viewed("month") is None

        ledger.settings.mark_viewed("month", ms(2024, 4, 1))
        ledger.settings.mark_viewed("year")

        assert ledger.settings.last_viewed("month") == ms(2024, 4, 1)
        assert ledger.settings.last_viewed("year") > ms(2024, 4, 1)
        assert ledger.settings.get("last_viewed_month") == str(ms(2024, 4, 1))
        with pytest.raises(ValidationError):
            ledger.settings.mark_viewed("week", 10**16)

    def test_seed_is_idempotent(self, ledger):
        assert ledger.seed() == []
        assert len(ledger.categories.list()) == 8
        assert [a.name for a in ledger.accounts.list()] == ["Cash"]
