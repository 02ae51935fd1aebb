"""Read-only aggregations over the ledger.

Every method takes an inclusive ``[start, end]`` range in epoch milliseconds,
reads the ledger afresh and converts amounts into the base currency. Events tied
to archived accounts or categories are left out. Empty ranges yield empty lists,
zeros and ``None`` rather than errors.
"""

from __future__ import annotations

import math
from collections import defaultdict
from dataclasses import asdict, dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .currency import RateTable, round_minor, to_base, to_base_exact
from .exceptions import ValidationError
from .models import now_ms
from .periods import wrap_period_range, wrap_title
from .services import CurrencyService, SettingsService
from .storage import SQLiteStorage
from .validators import validate_timestamp

GRANULARITY_FORMATS = {"day": "%Y-%m-%d", "month": "%Y-%m"}
HOURLY_RATE_WINDOW_MS = 30 * 24 * 60 * 60 * 1000
NEUTRAL_SENTIMENT = 50
TOP_TITLES_LIMIT = 5

# Upper bounds (exclusive) of the sentiment buckets; the last bucket is open-ended.
REGRET_BUCKETS: Tuple[Tuple[str, str, Optional[int]], ...] = (
    ("total_regret", "Total regret", 20),
    ("mostly_regret", "Mostly regret", 40),
    ("mixed", "Mixed", 60),
    ("worth_it", "Worth it", 80),
    ("absolutely_worth_it", "Absolutely worth it", None),
)


@dataclass(frozen=True)
class SeriesPoint:
    bucket: str
    total_minor: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CategorySpend:
    category_id: str
    category_name: str
    category_color: str
    category_icon: str
    total_minor: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CategoryRegret:
    category_id: str
    category_name: str
    avg_regret: float
    total_spent: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class TitleRegret:
    title: str
    avg_regret: float
    total_spent: int
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RegretBucket:
    key: str
    label: str
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class HourlyRate:
    """Derived earnings per hour; ``rate_minor`` is None when no hours were logged."""

    rate_minor: Optional[int]
    total_hours: float
    total_income_minor: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CategoryLifeCost:
    category_id: str
    category_name: str
    total_minor: int
    hours: Optional[float]
    label: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class BiggestExpense:
    id: str
    title: str
    date_ts: int
    category_name: str
    category_color: str
    category_icon: str
    amount_minor: int


@dataclass(frozen=True)
class WrapSummary:
    start: int
    end: int
    total_expense_minor: int = 0
    total_income_minor: int = 0
    expense_count: int = 0
    income_count: int = 0
    top_category: Optional[CategorySpend] = None
    biggest_expense: Optional[BiggestExpense] = None
    top_spend_day: Optional[SeriesPoint] = None
    title: Optional[str] = None

    @property
    def net_minor(self) -> int:
        return self.total_income_minor - self.total_expense_minor

    def to_dict(self) -> Dict[str, Any]:
        payload = asdict(self)
        payload["net_minor"] = self.net_minor
        return payload


def regret_bucket_key(score: Optional[int]) -> str:
    value = NEUTRAL_SENTIMENT if score is None else score
    for key, _label, upper in REGRET_BUCKETS:
        if upper is None or value < upper:
            return key
    return REGRET_BUCKETS[-1][0]


def life_cost_hours(amount_minor: int, hourly_rate_minor: Optional[int]) -> Optional[Decimal]:
    """Hours of work an amount represents; None without a positive rate."""
    if not hourly_rate_minor or hourly_rate_minor <= 0:
        return None
    return Decimal(amount_minor) / Decimal(hourly_rate_minor)


def format_life_cost(
    amount_minor: int, hourly_rate_minor: Optional[int], hours_per_day: int = 8
) -> Optional[str]:
    """Display label such as ``45m``, ``3h 20m``, ``4.5d`` or ``1.2y``."""
    hours = life_cost_hours(amount_minor, hourly_rate_minor)
    if hours is None:
        return None
    per_day = Decimal(hours_per_day if hours_per_day > 0 else 8)

    if hours < 1:
        minutes = max(1, _round(hours * 60))
        return "1h" if minutes == 60 else f"{minutes}m"
    if hours < per_day:
        whole = int(math.floor(hours))
        minutes = _round((hours - whole) * 60)
        if minutes == 60:
            whole, minutes = whole + 1, 0
        return f"{whole}h {minutes}m" if minutes else f"{whole}h"
    days = hours / per_day
    if days < 365:
        return f"{_one_decimal(days)}d"
    return f"{_one_decimal(days / 365)}y"


def _round(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _one_decimal(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def _mean(values: Iterable[int]) -> float:
    values = list(values)
    return sum(values) / len(values) if values else 0.0


class AnalyticsService:
    """Time series, category breakdowns, sentiment and life-cost statistics."""

    def __init__(
        self, storage: SQLiteStorage, currencies: CurrencyService, settings: SettingsService
    ) -> None:
        self._storage = storage
        self._currencies = currencies
        self._settings = settings

    # Series -----------------------------------------------------------------
    def expense_series(self, start: object, end: object, granularity: str = "day") -> List[SeriesPoint]:
        return self._series(self._expense_rows(start, end), granularity)

    def income_series(self, start: object, end: object, granularity: str = "day") -> List[SeriesPoint]:
        return self._series(self._income_rows(start, end), granularity)

    def _series(self, loaded: Tuple[list, RateTable], granularity: str) -> List[SeriesPoint]:
        try:
            fmt = GRANULARITY_FORMATS[granularity]
        except KeyError as exc:
            raise ValidationError("granularity must be one of: day, month") from exc
        rows, rates = loaded
        buckets: Dict[str, Decimal] = defaultdict(Decimal)
        for row in rows:
            # Local calendar, not UTC.
            key = datetime.fromtimestamp(row["date_ts"] / 1000).strftime(fmt)
            buckets[key] += to_base_exact(row["amount_minor"], row["currency_code"], rates, rates.base)
        return [SeriesPoint(bucket=key, total_minor=round_minor(buckets[key])) for key in sorted(buckets)]

    # Categories -------------------------------------------------------------
    def category_spend(self, start: object, end: object) -> List[CategorySpend]:
        rows, rates = self._expense_rows(start, end)
        totals: Dict[str, Decimal] = defaultdict(Decimal)
        meta: Dict[str, Any] = {}
        for row in rows:
            totals[row["category_id"]] += to_base_exact(
                row["amount_minor"], row["currency_code"], rates, rates.base
            )
            meta[row["category_id"]] = row
        spend = [
            CategorySpend(
                category_id=category_id,
                category_name=meta[category_id]["category_name"],
                category_color=meta[category_id]["category_color"],
                category_icon=meta[category_id]["category_icon"],
                total_minor=round_minor(total),
            )
            for category_id, total in totals.items()
        ]
        return sorted(spend, key=lambda item: (-item.total_minor, item.category_name))

    # Sentiment --------------------------------------------------------------
    def regret_by_category(self, start: object, end: object) -> List[CategoryRegret]:
        rows, rates = self._expense_rows(start, end)
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for row in rows:
            grouped[row["category_id"]].append(row)
        results = [
            CategoryRegret(
                category_id=category_id,
                category_name=items[0]["category_name"],
                avg_regret=_mean(_score(item) for item in items),
                total_spent=self._total(items, rates),
            )
            for category_id, items in grouped.items()
        ]
        return sorted(results, key=lambda item: (item.avg_regret, item.category_name))

    def regret_histogram(self, start: object, end: object) -> List[RegretBucket]:
        rows, _rates = self._expense_rows(start, end)
        counts: Dict[str, int] = {key: 0 for key, _label, _upper in REGRET_BUCKETS}
        for row in rows:
            counts[regret_bucket_key(row["slider_0_100"])] += 1
        return [RegretBucket(key=key, label=label, count=counts[key]) for key, label, _upper in REGRET_BUCKETS]

    def most_regretted(self, start: object, end: object, limit: int = TOP_TITLES_LIMIT) -> List[TitleRegret]:
        return self._by_title(start, end)[:limit]

    def most_worth_it(self, start: object, end: object, limit: int = TOP_TITLES_LIMIT) -> List[TitleRegret]:
        titles = sorted(self._by_title(start, end), key=lambda item: (-item.avg_regret, item.title))
        return titles[:limit]

    def _by_title(self, start: object, end: object) -> List[TitleRegret]:
        rows, rates = self._expense_rows(start, end)
        grouped: Dict[str, List[Any]] = defaultdict(list)
        for row in rows:
            grouped[row["title"]].append(row)
        results = [
            TitleRegret(
                title=title,
                avg_regret=_mean(_score(item) for item in items),
                total_spent=self._total(items, rates),
                count=len(items),
            )
            for title, items in grouped.items()
        ]
        return sorted(results, key=lambda item: (item.avg_regret, item.title))

    # Life cost --------------------------------------------------------------
    def effective_hourly_rate(self, now: Optional[int] = None) -> HourlyRate:
        """Income per hour worked over the trailing 30 days."""
        since = (now if now is not None else now_ms()) - HOURLY_RATE_WINDOW_MS
        rates = self._currencies.rate_table()
        rows = self._storage.query_all(
            """SELECT i.amount_minor, i.hours_worked, COALESCE(i.currency_code, a.currency) AS currency_code
            FROM incomes i
            JOIN accounts a ON a.id = i.account_id
            WHERE i.date_ts >= ? AND i.hours_worked IS NOT NULL AND i.hours_worked > 0
              AND a.archived_at IS NULL""",
            (since,),
        )
        total_income = sum(
            (to_base_exact(row["amount_minor"], row["currency_code"], rates, rates.base) for row in rows),
            Decimal(0),
        )
        total_hours = sum((Decimal(str(row["hours_worked"])) for row in rows), Decimal(0))
        if not total_hours:
            return HourlyRate(rate_minor=None, total_hours=0.0, total_income_minor=round_minor(total_income))
        return HourlyRate(
            rate_minor=round_minor(total_income / total_hours),
            total_hours=float(total_hours),
            total_income_minor=round_minor(total_income),
        )

    def hourly_rate(self, now: Optional[int] = None) -> Optional[int]:
        """The fixed hourly rate setting when set, otherwise the derived rate."""
        fixed = self._settings.fixed_hourly_rate_minor()
        if fixed > 0:
            return fixed
        return self.effective_hourly_rate(now).rate_minor

    def life_cost(self, amount_minor: int, now: Optional[int] = None) -> Optional[str]:
        return format_life_cost(amount_minor, self.hourly_rate(now), self._settings.hours_per_day())

    def life_cost_by_category(self, start: object, end: object, now: Optional[int] = None) -> List[CategoryLifeCost]:
        rate = self.hourly_rate(now)
        hours_per_day = self._settings.hours_per_day()
        results = []
        for spend in self.category_spend(start, end):
            hours = life_cost_hours(spend.total_minor, rate)
            results.append(
                CategoryLifeCost(
                    category_id=spend.category_id,
                    category_name=spend.category_name,
                    total_minor=spend.total_minor,
                    hours=float(hours) if hours is not None else None,
                    label=format_life_cost(spend.total_minor, rate, hours_per_day),
                )
            )
        return results

    # Wrap -------------------------------------------------------------------
    def wrap_summary(self, start: object, end: object) -> WrapSummary:
        """Period recap; a period without data yields zeros and Nones."""
        expense_rows, rates = self._expense_rows(start, end)
        income_rows, _ = self._income_rows(start, end)
        start_ms, end_ms = self._range(start, end)

        biggest = None
        if expense_rows:
            # First occurrence wins on ties so the result is stable.
            row = max(
                expense_rows,
                key=lambda item: to_base(item["amount_minor"], item["currency_code"], rates, rates.base),
            )
            biggest = BiggestExpense(
                id=row["id"],
                title=row["title"],
                date_ts=row["date_ts"],
                category_name=row["category_name"],
                category_color=row["category_color"],
                category_icon=row["category_icon"],
                amount_minor=to_base(row["amount_minor"], row["currency_code"], rates, rates.base),
            )

        categories = self.category_spend(start, end)
        days = self._series((expense_rows, rates), "day")
        top_day = max(days, key=lambda point: point.total_minor) if days else None

        return WrapSummary(
            start=start_ms,
            end=end_ms,
            total_expense_minor=self._total(expense_rows, rates),
            total_income_minor=self._total(income_rows, rates),
            expense_count=len(expense_rows),
            income_count=len(income_rows),
            top_category=categories[0] if categories else None,
            biggest_expense=biggest,
            top_spend_day=top_day,
        )

    def wrap_for_period(self, period: str, reference: Optional[datetime] = None) -> WrapSummary:
        """Recap of the previous week, month, quarter or year relative to ``reference``."""
        start, end = wrap_period_range(period, reference)
        summary = self.wrap_summary(start, end)
        return replace(summary, title=wrap_title(period, start))

    # Loading ----------------------------------------------------------------
    def _range(self, start: object, end: object) -> Tuple[int, int]:
        start_ms = validate_timestamp(start, "start")
        end_ms = validate_timestamp(end, "end")
        if end_ms < start_ms:
            raise ValidationError("end must not be earlier than start")
        return start_ms, end_ms

    def _expense_rows(self, start: object, end: object) -> Tuple[list, RateTable]:
        start_ms, end_ms = self._range(start, end)
        rows = self._storage.query_all(
            """SELECT e.id, e.title, e.amount_minor, e.date_ts, e.slider_0_100, e.category_id,
              c.name AS category_name, c.color AS category_color, c.icon AS category_icon,
              COALESCE(e.currency_code, a.currency) AS currency_code
            FROM expenses e
            JOIN categories c ON c.id = e.category_id
            JOIN accounts a ON a.id = e.account_id
            WHERE e.date_ts BETWEEN ? AND ? AND c.archived_at IS NULL AND a.archived_at IS NULL
            ORDER BY e.date_ts ASC, e.rowid ASC""",
            (start_ms, end_ms),
        )
        return rows, self._currencies.rate_table()

    def _income_rows(self, start: object, end: object) -> Tuple[list, RateTable]:
        start_ms, end_ms = self._range(start, end)
        rows = self._storage.query_all(
            """SELECT i.id, i.source, i.amount_minor, i.date_ts, i.hours_worked,
              COALESCE(i.currency_code, a.currency) AS currency_code
            FROM incomes i
            JOIN accounts a ON a.id = i.account_id
            WHERE i.date_ts BETWEEN ? AND ? AND a.archived_at IS NULL
            ORDER BY i.date_ts ASC, i.rowid ASC""",
            (start_ms, end_ms),
        )
        return rows, self._currencies.rate_table()

    @staticmethod
    def _total(rows: Iterable[Any], rates: RateTable) -> int:
        return round_minor(
            sum(
                (to_base_exact(row["amount_minor"], row["currency_code"], rates, rates.base) for row in rows),
                Decimal(0),
            )
        )


def _score(row: Any) -> int:
    value = row["slider_0_100"]
    return NEUTRAL_SENTIMENT if value is None else value
