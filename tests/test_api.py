import threading

import pytest


@pytest.fixture
def account_id(client):
    response = client.post("/accounts", json={"name": "Wallet", "currency": "USD"})
    assert response.status_code == 201
    return response.get_json()["id"]


@pytest.fixture
def category_id(client):
    response = client.post("/categories", json={"name": "Food"})
    assert response.status_code == 201
    return response.get_json()["id"]


class TestLedgerEndpoints:
    def test_expense_lifecycle(self, client, account_id, category_id):
        created = client.post(
            "/expenses",
            json={"title": "Lunch", "amount_minor": 1500, "category_id": category_id, "account_id": account_id},
        )
        assert created.status_code == 201
        expense_id = created.get_json()["id"]

        updated = client.put(f"/expenses/{expense_id}", json={"slider_0_100": 20})
        assert updated.status_code == 200
        assert updated.get_json()["slider_0_100"] == 20

        listing = client.get("/expenses", query_string={"account_id": account_id}).get_json()
        assert [item["id"] for item in listing["items"]] == [expense_id]

        assert client.delete(f"/expenses/{expense_id}").status_code == 204
        assert client.get(f"/expenses/{expense_id}").status_code == 404

    def test_validation_error_is_400(self, client, account_id, category_id):
        response = client.post(
            "/expenses",
            json={"title": "Lunch", "amount_minor": -5, "category_id": category_id, "account_id": account_id},
        )
        assert response.status_code == 400
        assert response.get_json()["error"] == "Validation error"

    def test_out_of_range_values_are_400(self, client, account_id, category_id):
        payload = {"title": "Lunch", "amount_minor": 2**70, "category_id": category_id, "account_id": account_id}
        assert client.post("/expenses", json=payload).status_code == 400

        payload.update(amount_minor=1500, date_ts=10**16)
        response = client.post("/expenses", json=payload)
        assert response.status_code == 400
        assert response.get_json()["error"] == "Validation error"

        assert client.get("/expenses", query_string={"limit": str(2**70)}).status_code == 400

    def test_requests_from_another_thread(self, client, account_id):
        statuses = []

        def fetch():
            statuses.append(client.get("/accounts").status_code)
            statuses.append(client.post("/accounts", json={"name": "Bank", "type": "bank"}).status_code)

        worker = threading.Thread(target=fetch)
        worker.start()
        worker.join()

        assert statuses == [200, 201]
        names = [item["name"] for item in client.get("/accounts").get_json()["items"]]
        assert "Bank" in names

    def test_non_json_body_is_rejected(self, client):
        response = client.post("/accounts", data="name=Wallet")
        assert response.status_code == 400

    def test_referential_error_is_409(self, client, account_id, category_id):
        client.post(
            "/expenses",
            json={"title": "Lunch", "amount_minor": 1500, "category_id": category_id, "account_id": account_id},
        )
        assert client.delete(f"/accounts/{account_id}").status_code == 409

        response = client.post(
            "/expenses",
            json={"title": "Lunch", "amount_minor": 1500, "category_id": "cat_missing", "account_id": account_id},
        )
        assert response.status_code == 409

    def test_transfers_and_feed(self, client, account_id):
        other = client.post("/accounts", json={"name": "Bank", "type": "bank"}).get_json()["id"]
        response = client.post(
            "/transfers", json={"from_account_id": account_id, "to_account_id": other, "amount_minor": 700}
        )
        assert response.status_code == 201

        feed = client.get("/transactions").get_json()["items"]
        assert [entry["type"] for entry in feed] == ["transfer"]

    def test_category_reorder(self, client, category_id):
        response = client.post("/categories/reorder", json={"order": [{"id": category_id, "sort_order": 0}]})
        assert response.status_code == 200
        assert response.get_json()["items"][0]["id"] == category_id

        missing = client.post("/categories/reorder", json={"order": [{"id": "cat_missing", "sort_order": 0}]})
        assert missing.status_code == 404


class TestReportingEndpoints:
    def test_balances_report_portfolio_total(self, client, account_id, category_id):
        client.put("/currencies", json={"code": "EUR", "name": "Euro", "rate_to_base": 1.1})
        client.post("/incomes", json={"source": "Paycheck", "amount_minor": 500000, "account_id": account_id})
        client.post(
            "/expenses",
            json={"title": "Lunch", "amount_minor": 1500, "category_id": category_id, "account_id": account_id},
        )

        payload = client.get("/balances").get_json()

        assert payload["base_currency"] == "USD"
        assert payload["total_minor"] == 498500
        wallet = [item for item in payload["items"] if item["account_id"] == account_id][0]
        assert wallet["balance_minor"] == 498500
        assert client.get("/balances", query_string={"currency": "EUR"}).get_json()["total_minor"] == 453182

    def test_analytics_endpoints(self, client, account_id, category_id):
        client.post(
            "/expenses",
            json={
                "title": "Lunch",
                "amount_minor": 1500,
                "category_id": category_id,
                "account_id": account_id,
                "slider_0_100": 30,
            },
        )

        series = client.get("/analytics/series", query_string={"period": "month"}).get_json()["items"]
        assert sum(point["total_minor"] for point in series) == 1500

        regret = client.get("/analytics/regret").get_json()
        buckets = {bucket["key"]: bucket["count"] for bucket in regret["histogram"]}
        assert buckets["mostly_regret"] == 1
        assert regret["most_regretted"][0]["title"] == "Lunch"

        categories = client.get("/analytics/categories").get_json()["items"]
        assert categories[0]["category_name"] == "Food"

        life_cost = client.get("/analytics/life-cost").get_json()
        assert life_cost["hourly_rate_minor"] is None
        assert life_cost["items"][0]["label"] is None

    def test_wrap_and_bad_period(self, client, ledger):
        wrap = client.get("/analytics/wrap", query_string={"period": "year"})
        assert wrap.status_code == 200
        assert wrap.get_json()["expense_count"] == 0
        assert ledger.settings.last_viewed("year") is not None
        assert ledger.settings.last_viewed("month") is None

        assert client.get("/analytics/wrap", query_string={"period": "decade"}).status_code == 400
        assert client.get("/analytics/series", query_string={"kind": "transfers"}).status_code == 400

    def test_settings_update(self, client):
        response = client.put("/settings", json={"theme_mode": "dark", "base_currency": "eur"})
        assert response.status_code == 200
        settings = response.get_json()
        assert settings["theme_mode"] == "dark"
        assert settings["base_currency"] == "EUR"
