"""Exchange-rate tables and minor-unit conversion.

Amounts are integers in minor units; rates are applied as ``Decimal`` and the
product is rounded half-up once, so no float ever touches a currency amount.
"""

from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Dict, Iterable, Mapping, Optional, Set, Union

from .exceptions import ValidationError
from .models import Currency

logger = logging.getLogger(__name__)

ONE = Decimal(1)

RateLike = Union[Decimal, float, int, str]


def round_minor(value: Decimal) -> int:
    """Round a Decimal to the nearest integer minor unit, halves away from zero."""
    return int(value.quantize(ONE, rounding=ROUND_HALF_UP))


def _as_decimal(rate: RateLike) -> Decimal:
    # str() first so binary float noise from REAL columns is not carried over.
    return rate if isinstance(rate, Decimal) else Decimal(str(rate))


class RateTable:
    """Currency code to rate-to-base lookup.

    Lookups of unknown codes fail open with a rate of 1; each such code is
    recorded in ``missing`` and logged once so misconfiguration stays visible.
    """

    def __init__(self, rates: Optional[Mapping[str, RateLike]] = None, base: str = "USD") -> None:
        self.base = base.upper()
        self._rates: Dict[str, Decimal] = {
            code.upper(): _as_decimal(rate) for code, rate in (rates or {}).items()
        }
        # A stale non-1 row for the base currency must never leak into conversions.
        self._rates[self.base] = ONE
        self.missing: Set[str] = set()

    @classmethod
    def from_currencies(cls, currencies: Iterable[Currency], base: str) -> "RateTable":
        return cls({currency.code: currency.rate_to_base for currency in currencies}, base)

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.upper() in self._rates

    def rate(self, code: Optional[str]) -> Decimal:
        if not code:
            return ONE
        key = code.upper()
        if key == self.base:
            return ONE
        try:
            return self._rates[key]
        except KeyError:
            if key not in self.missing:
                self.missing.add(key)
                logger.warning("No exchange rate for %s; treating it as 1:1 with %s", key, self.base)
            return ONE


def to_base(amount_minor: int, currency_code: Optional[str], rates: RateTable, base_currency: str) -> int:
    """Convert an amount into base-currency minor units."""
    code = (currency_code or base_currency).upper()
    if code == base_currency.upper():
        return amount_minor
    return round_minor(Decimal(amount_minor) * rates.rate(code))


def to_base_exact(amount_minor: int, currency_code: Optional[str], rates: RateTable, base_currency: str) -> Decimal:
    """Unrounded base-currency value, for sums that are rounded once at the end."""
    code = (currency_code or base_currency).upper()
    if code == base_currency.upper():
        return Decimal(amount_minor)
    return Decimal(amount_minor) * rates.rate(code)


def between(
    amount_minor: int,
    from_code: Optional[str],
    to_code: Optional[str],
    rates: RateTable,
    base_currency: str,
) -> int:
    """Convert directly between two currencies using rate(from) / rate(to)."""
    base = base_currency.upper()
    from_rate = ONE if (from_code or base).upper() == base else rates.rate(from_code)
    to_rate = ONE if (to_code or base).upper() == base else rates.rate(to_code)
    if from_rate == to_rate:
        return amount_minor
    return round_minor(Decimal(amount_minor) * from_rate / to_rate)


MINOR_PER_MAJOR = Decimal(100)


def to_minor(amount: Union[str, int, Decimal]) -> int:
    """Parse a major-unit amount such as ``"12.50"`` into minor units."""
    try:
        value = Decimal(str(amount).strip().replace(",", ""))
    except InvalidOperation as exc:
        raise ValidationError(f"Invalid amount: {amount!r}") from exc
    if not value.is_finite():
        raise ValidationError(f"Invalid amount: {amount!r}")
    return round_minor(value * MINOR_PER_MAJOR)


def format_minor(amount_minor: int, currency_code: str) -> str:
    sign = "-" if amount_minor < 0 else ""
    major = Decimal(abs(amount_minor)) / MINOR_PER_MAJOR
    return f"{sign}{major:.2f} {currency_code}"
