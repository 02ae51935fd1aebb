import logging
from decimal import Decimal

import pytest

from worthy.currency import RateTable, between, format_minor, round_minor, to_base, to_minor
from worthy.exceptions import ValidationError


@pytest.fixture
def rates():
    return RateTable({"EUR": "1.10", "JPY": "0.0067", "USD": "3"}, base="USD")


class TestRateTable:
    def test_base_rate_is_always_one(self, rates):
        assert rates.rate("USD") == Decimal(1)
        assert rates.rate(None) == Decimal(1)

    def test_unknown_code_fails_open_and_is_recorded(self, rates, caplog):
        with caplog.at_level(logging.WARNING, logger="worthy.currency"):
            assert rates.rate("gbp") == Decimal(1)
            assert rates.rate("GBP") == Decimal(1)

        assert rates.missing == {"GBP"}
        assert len([r for r in caplog.records if "GBP" in r.getMessage()]) == 1
        assert "GBP" not in rates

    def test_float_rates_are_read_through_their_string_form(self):
        table = RateTable({"EUR": 1.1}, base="USD")
        assert table.rate("EUR") == Decimal("1.1")


class TestConversion:
    def test_to_base_is_identity_for_base_currency(self, rates):
        assert to_base(1234, "USD", rates, "USD") == 1234
        assert to_base(1234, None, rates, "USD") == 1234

    def test_euro_expense_converts_to_base(self, rates):
        assert to_base(1000, "EUR", rates, "USD") == 1100

    def test_half_up_rounding(self):
        table = RateTable({"XAU": "0.5"}, base="USD")
        assert to_base(3, "XAU", table, "USD") == 2
        assert to_base(-3, "XAU", table, "USD") == -2
        assert round_minor(Decimal("2.5")) == 3

    def test_conversion_is_monotonic_in_amount(self, rates):
        converted = [to_base(amount, "JPY", rates, "USD") for amount in range(0, 2000, 37)]
        assert converted == sorted(converted)

    def test_between_uses_ratio_of_rates(self, rates):
        assert between(1100, "USD", "EUR", rates, "USD") == 1000
        assert between(1000, "EUR", "USD", rates, "USD") == 1100

    def test_between_equal_rates_keeps_amount(self):
        table = RateTable({"EUR": "1.10", "XEU": "1.10"}, base="USD")
        assert between(777, "EUR", "XEU", table, "USD") == 777
        assert between(777, "EUR", "EUR", table, "USD") == 777


class TestMajorUnits:
    def test_to_minor_parses_major_amounts(self):
        assert to_minor("12.50") == 1250
        assert to_minor("1,000") == 100000
        assert to_minor("0.005") == 1

    def test_to_minor_rejects_garbage(self):
        with pytest.raises(ValidationError):
            to_minor("twelve")

    def test_format_minor(self):
        assert format_minor(1250, "USD") == "12.50 USD"
        assert format_minor(-1000, "EUR") == "-10.00 EUR"
