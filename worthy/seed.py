"""First-run defaults for an empty ledger."""

from __future__ import annotations

import logging
from typing import Dict, List

from .models import now_ms
from .services import DEFAULT_HOURS_PER_DAY, SettingKey, ThemeMode, new_id
from .storage import SQLiteStorage
from .validators import validate_currency

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: List[Dict[str, str]] = [
    {"name": "Commute", "icon": "map", "color": "#4E79A7"},
    {"name": "Entertainment", "icon": "film", "color": "#A0CBE8"},
    {"name": "Grocery", "icon": "shopping-cart", "color": "#59A14F"},
    {"name": "Take out", "icon": "coffee", "color": "#F28E2B"},
    {"name": "Rent", "icon": "home", "color": "#E15759"},
    {"name": "Bills", "icon": "file-text", "color": "#76B7B2"},
    {"name": "Subscriptions", "icon": "repeat", "color": "#EDC949"},
    {"name": "Misc", "icon": "grid", "color": "#B07AA1"},
]

DEFAULT_ACCOUNT_NAME = "Cash"


def _is_empty(storage: SQLiteStorage, table: str) -> bool:
    return not storage.scalar(f"SELECT COUNT(*) FROM {table}")


def seed_defaults(storage: SQLiteStorage, base_currency: str = "USD") -> List[str]:
    """Populate empty tables with defaults and return the names of the tables seeded.

    Each table is only touched while it is empty, so running this again is a no-op.
    """
    base = validate_currency(base_currency, "base_currency")
    seeded: List[str] = []
    with storage.transaction() as tx:
        now = now_ms()
        if _is_empty(tx, "settings"):
            for key, value in (
                (SettingKey.BASE_CURRENCY.value, base),
                (SettingKey.THEME_MODE.value, ThemeMode.SYSTEM.value),
                (SettingKey.HOURS_PER_DAY.value, str(DEFAULT_HOURS_PER_DAY)),
                (SettingKey.FIXED_HOURLY_RATE_MINOR.value, "0"),
            ):
                tx.execute("INSERT INTO settings (key, value) VALUES (?, ?)", (key, value))
            seeded.append("settings")
        else:
            base = (
                tx.scalar("SELECT value FROM settings WHERE key = ?", (SettingKey.BASE_CURRENCY.value,))
                or base
            ).upper()

        if _is_empty(tx, "currencies"):
            tx.execute(
                "INSERT INTO currencies (code, name, symbol, rate_to_base, created_at) VALUES (?, ?, ?, ?, ?)",
                (base, base, None, 1, now),
            )
            seeded.append("currencies")

        if _is_empty(tx, "categories"):
            for position, category in enumerate(DEFAULT_CATEGORIES, start=1):
                tx.execute(
                    """INSERT INTO categories (id, name, icon, color, sort_order, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (new_id("cat_"), category["name"], category["icon"], category["color"], position, now, now),
                )
            seeded.append("categories")

        if _is_empty(tx, "accounts"):
            tx.execute(
                """INSERT INTO accounts (id, name, type, currency, starting_balance_minor, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)""",
                (new_id("acct_"), DEFAULT_ACCOUNT_NAME, "cash", base, 0, now, now),
            )
            seeded.append("accounts")

    if seeded:
        logger.info("Seeded defaults: %s", ", ".join(seeded))
    return seeded
