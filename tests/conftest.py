from datetime import datetime, timedelta

import pytest

from api.app import create_app
from worthy.ledger import Ledger
from worthy.models import to_millis


@pytest.fixture
def ledger():
    ledger = Ledger.open(":memory:", base_currency="USD")
    yield ledger
    ledger.close()


@pytest.fixture
def ms():
    """Epoch milliseconds for a local wall-clock time."""

    def _ms(year, month, day, hour=12, minute=0):
        return to_millis(datetime(year, month, day, hour, minute))

    return _ms


@pytest.fixture
def recent_ms():
    """Epoch milliseconds a given number of days before now."""

    def _recent(days=1):
        return to_millis(datetime.now() - timedelta(days=days))

    return _recent


@pytest.fixture
def cash(ledger):
    return ledger.accounts.add({"name": "Wallet", "currency": "USD"})


@pytest.fixture
def food(ledger):
    return ledger.categories.add({"name": "Food", "icon": "coffee", "color": "#F28E2B"})


@pytest.fixture
def euro(ledger):
    return ledger.currencies.upsert({"code": "EUR", "name": "Euro", "symbol": "€", "rate_to_base": "1.10"})


@pytest.fixture
def app(ledger):
    app = create_app(ledger=ledger)
    app.config.update(TESTING=True)
    return app


@pytest.fixture
def client(app):
    return app.test_client()
