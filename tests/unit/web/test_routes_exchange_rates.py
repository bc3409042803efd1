"""Tests for priceledger.web.routes.exchange_rates."""

from decimal import Decimal
from uuid import uuid4


class TestConvert:
    """Tests for GET /api/exchange-rates/convert."""

    def test_direct_pair(self, client):
        response = client.get(
            "/api/exchange-rates/convert",
            params={"amount": "100", "from": "cny", "to": "IDR", "as_of": "2024-05-01T00:00:00Z"},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["from_currency"] == "CNY"
        assert Decimal(str(data["converted"])) == Decimal("1540000")
        assert Decimal(str(data["rate"])) == Decimal("15400")

    def test_reverse_pair_divides(self, client):
        data = client.get(
            "/api/exchange-rates/convert",
            params={"amount": "1540000", "from": "IDR", "to": "CNY", "as_of": "2024-05-01T00:00:00Z"},
        ).json()

        assert Decimal(str(data["converted"])) == Decimal("100.00")

    def test_before_rate_exists(self, client):
        response = client.get(
            "/api/exchange-rates/convert",
            params={"amount": "1", "from": "CNY", "to": "IDR", "as_of": "2023-01-01T00:00:00Z"},
        )

        assert response.status_code == 404

    def test_unknown_pair_never_falls_back(self, client):
        response = client.get(
            "/api/exchange-rates/convert", params={"amount": "1", "from": "EUR", "to": "USD"}
        )

        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"


class TestLink:
    """Tests for GET /api/exchange-rates/link."""

    def test_cny_primary(self, client):
        data = client.get(
            "/api/exchange-rates/link",
            params={"currency": "CNY", "exchange_rate": "2200", "amount": "10"},
        ).json()

        assert data["linked_currency"] == "IDR"
        assert Decimal(str(data["linked_amount"])) == Decimal("22000")

    def test_idr_primary_rounds_cny(self, client):
        data = client.get(
            "/api/exchange-rates/link",
            params={
                "currency": "IDR",
                "exchange_rate": "2200",
                "amount": "10000",
                "linkage_mode": "primary_is_idr",
            },
        ).json()

        assert Decimal(str(data["linked_amount"])) == Decimal("4.55")

    def test_secondary_edit_derives_nothing(self, client):
        data = client.get(
            "/api/exchange-rates/link",
            params={"currency": "IDR", "exchange_rate": "2200", "amount": "10000"},
        ).json()

        assert data["linked_amount"] is None

    def test_zero_rate(self, client):
        response = client.get(
            "/api/exchange-rates/link",
            params={"currency": "CNY", "exchange_rate": "0", "amount": "10"},
        )

        assert response.status_code == 422


class TestCurrentRates:
    """Tests for GET /api/exchange-rates."""

    def test_lists_rate_in_force(self, client):
        response = client.get("/api/exchange-rates", params={"as_of": "2024-05-01T00:00:00Z"})

        assert response.status_code == 200
        pairs = [(r["from_currency"], r["to_currency"]) for r in response.json()]
        assert pairs == [("CNY", "IDR"), ("USD", "IDR")]

    def test_filter_by_pair(self, client):
        data = client.get(
            "/api/exchange-rates", params={"from_currency": "USD", "as_of": "2024-05-01T00:00:00Z"}
        ).json()

        assert len(data) == 1
        assert Decimal(str(data[0]["rate"])) == Decimal("15400")

    def test_nothing_before_first_rate(self, client):
        data = client.get("/api/exchange-rates", params={"as_of": "2023-01-01T00:00:00Z"}).json()

        assert data == []


class TestRateHistory:
    """Tests for GET /api/exchange-rates/history."""

    def test_paginated(self, client):
        response = client.get("/api/exchange-rates/history", params={"page": 1, "size": 1})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert data["pages"] == 2
        assert len(data["items"]) == 1

    def test_invalid_page(self, client):
        response = client.get("/api/exchange-rates/history", params={"page": 0})

        assert response.status_code == 422


class TestCreateRate:
    """Tests for POST /api/exchange-rates."""

    def test_create_closes_previous_rate(self, client):
        response = client.post(
            "/api/exchange-rates",
            json={
                "from_currency": "cny",
                "to_currency": "IDR",
                "rate": "15500",
                "effective_from": "2024-07-01T00:00:00Z",
                "change_reason": "July fixing",
            },
        )

        assert response.status_code == 201
        created = response.json()
        assert created["from_currency"] == "CNY"
        assert created["effective_to"] is None

        history = client.get(
            "/api/exchange-rates/history", params={"from_currency": "CNY", "to_currency": "IDR"}
        ).json()
        previous = history["items"][1]
        assert Decimal(str(previous["rate"])) == Decimal("15400")
        assert previous["effective_to"].startswith("2024-07-01T00:00:00")

        converted = client.get(
            "/api/exchange-rates/convert",
            params={"amount": "1", "from": "CNY", "to": "IDR", "as_of": "2024-08-01T00:00:00Z"},
        ).json()
        assert Decimal(str(converted["converted"])) == Decimal("15500")

    def test_duplicate_start_conflicts(self, client):
        response = client.post(
            "/api/exchange-rates",
            json={
                "from_currency": "CNY",
                "to_currency": "IDR",
                "rate": "15500",
                "effective_from": "2024-01-01T00:00:00Z",
            },
        )

        assert response.status_code == 409
        assert response.json()["error"] == "ConflictError"

    def test_non_positive_rate(self, client):
        response = client.post(
            "/api/exchange-rates",
            json={"from_currency": "CNY", "to_currency": "IDR", "rate": "0"},
        )

        assert response.status_code == 422

    def test_same_currency(self, client):
        response = client.post(
            "/api/exchange-rates",
            json={"from_currency": "CNY", "to_currency": "CNY", "rate": "1"},
        )

        assert response.status_code == 422

    def test_window_must_be_ordered(self, client):
        response = client.post(
            "/api/exchange-rates",
            json={
                "from_currency": "EUR",
                "to_currency": "CNY",
                "rate": "7.85",
                "effective_from": "2024-07-01T00:00:00Z",
                "effective_to": "2024-06-01T00:00:00Z",
            },
        )

        assert response.status_code == 422


class TestUpdateRate:
    """Tests for PUT /api/exchange-rates/{rate_id}."""

    def test_update_rate_value(self, client, rate_provider):
        rate_id = rate_provider.records[0].id

        response = client.put(
            f"/api/exchange-rates/{rate_id}", json={"rate": "15450", "change_reason": "correction"}
        )

        assert response.status_code == 200
        data = response.json()
        assert Decimal(str(data["rate"])) == Decimal("15450")
        assert data["change_reason"] == "correction"

    def test_unknown_rate(self, client):
        response = client.put(f"/api/exchange-rates/{uuid4()}", json={"rate": "1"})

        assert response.status_code == 404

    def test_empty_body(self, client, rate_provider):
        response = client.put(f"/api/exchange-rates/{rate_provider.records[0].id}", json={})

        assert response.status_code == 422
