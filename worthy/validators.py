"""Validation helpers shared across ledger services."""

from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Iterable, Mapping, Optional

from .exceptions import ValidationError
from .models import parse_datetime, to_millis

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")

ACCOUNT_TYPES = {"cash", "bank", "ewallet", "credit"}
PERIOD_TYPES = {"week", "month", "year"}
RECURRING_ENTITY_TYPES = {"expense", "income"}
RECEIPT_STATUSES = {"pending", "processed"}

SENTIMENT_MIN = 0
SENTIMENT_MAX = 100

# SQLite INTEGER is a signed 64-bit value.
MAX_INTEGER = 2**63 - 1
MIN_INTEGER = -(2**63)
# Last millisecond of 9999-12-30 UTC, so local-time conversion stays within year 9999 in every zone.
MAX_TIMESTAMP_MS = 253402214399999


def reject_unknown_fields(payload: Mapping[str, object], allowed: Iterable[str]) -> None:
    unknown = sorted(set(payload) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown field(s): {', '.join(unknown)}")


def parse_minor_amount(raw: object, field: str, *, allow_zero: bool = False, allow_negative: bool = False) -> int:
    """Convert raw input to an integer amount of minor units."""
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be an integer amount of minor units")
    if isinstance(raw, int):
        amount = raw
    elif isinstance(raw, str) and raw.strip().lstrip("-").isdigit():
        amount = int(raw.strip())
    else:
        raise ValidationError(f"{field} must be an integer amount of minor units")

    if amount > MAX_INTEGER or amount < MIN_INTEGER:
        raise ValidationError(f"{field} is out of range")
    if amount < 0 and not allow_negative:
        raise ValidationError(f"{field} must not be negative")
    if amount == 0 and not (allow_zero or allow_negative):
        raise ValidationError(f"{field} must be greater than zero")
    return amount


def parse_optional_minor_amount(raw: object, field: str) -> Optional[int]:
    if raw is None:
        return None
    return parse_minor_amount(raw, field, allow_zero=True)


def parse_rate(raw: object, field: str = "rate_to_base") -> Decimal:
    """Parse a strictly positive exchange rate."""
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be a numeric value")
    try:
        rate = Decimal(str(raw))
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError(f"{field} must be a numeric value") from exc
    if not rate.is_finite() or rate <= 0:
        raise ValidationError(f"{field} must be greater than zero")
    return rate


def parse_hours(raw: object, field: str = "hours_worked") -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool):
        raise ValidationError(f"{field} must be a numeric value")
    try:
        hours = Decimal(str(raw))
    except (InvalidOperation, TypeError) as exc:
        raise ValidationError(f"{field} must be a numeric value") from exc
    if not hours.is_finite() or hours < 0:
        raise ValidationError(f"{field} must not be negative")
    # Hours are not money; two decimals keep stored values tidy.
    return float(hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def validate_sentiment(raw: object, field: str = "slider_0_100") -> int:
    if isinstance(raw, bool) or not isinstance(raw, (int, float, str)):
        raise ValidationError(f"{field} must be a number between {SENTIMENT_MIN} and {SENTIMENT_MAX}")
    try:
        value = Decimal(str(raw))
    except InvalidOperation as exc:
        raise ValidationError(f"{field} must be a number") from exc
    if not value.is_finite() or value < SENTIMENT_MIN or value > SENTIMENT_MAX:
        raise ValidationError(f"{field} must be between {SENTIMENT_MIN} and {SENTIMENT_MAX}")
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def validate_currency(code: object, field: str = "currency") -> str:
    if not isinstance(code, str):
        raise ValidationError(f"{field} must be a 3-letter ISO 4217 code")
    canonical = code.strip().upper()
    if not CURRENCY_PATTERN.fullmatch(canonical):
        raise ValidationError(f"{field} must be a 3-letter ISO 4217 code")
    return canonical


def validate_optional_currency(code: object, field: str = "currency_code") -> Optional[str]:
    if code is None or (isinstance(code, str) and not code.strip()):
        return None
    return validate_currency(code, field)


def validate_required_str(value: object, field: str, max_length: int) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    trimmed = value.strip()
    if not trimmed:
        raise ValidationError(f"{field} cannot be empty")
    if len(trimmed) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return trimmed


def validate_optional_str(value: object, field: str, max_length: int) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return validate_required_str(value, field, max_length)


def validate_color(value: object, field: str = "color") -> str:
    color = validate_required_str(value, field, 7)
    if not COLOR_PATTERN.fullmatch(color):
        raise ValidationError(f"{field} must be a hex color like #4E79A7")
    return color.upper()


def validate_timestamp(value: object, field: str) -> int:
    """Normalise a datetime, ISO 8601 string or epoch-millisecond integer to milliseconds."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a timestamp")
    if isinstance(value, datetime):
        millis = to_millis(value)
    elif isinstance(value, int):
        millis = value
    elif isinstance(value, str):
        stripped = value.strip()
        if stripped.isdigit():
            millis = int(stripped)
        else:
            try:
                millis = to_millis(parse_datetime(stripped))
            except ValueError as exc:
                raise ValidationError(f"{field} must be an ISO 8601 datetime or epoch milliseconds") from exc
    else:
        raise ValidationError(f"{field} must be a datetime, ISO 8601 string or epoch milliseconds")

    if millis < 0:
        raise ValidationError(f"{field} must not be negative")
    if millis > MAX_TIMESTAMP_MS:
        raise ValidationError(f"{field} must not be later than year 9999")
    return millis


def validate_optional_timestamp(value: object, field: str) -> Optional[int]:
    if value is None:
        return None
    return validate_timestamp(value, field)


def validate_enum(value: object, field: str, allowed: Iterable[str]) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    canonical = value.strip().lower()
    if canonical not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")
    return canonical


def validate_optional_int(value: object, field: str) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{field} must be an integer") from exc
    if number > MAX_INTEGER or number < MIN_INTEGER:
        raise ValidationError(f"{field} is out of range")
    return number


def validate_identifier(value: object, field: str) -> str:
    return validate_required_str(value, field, 64)
