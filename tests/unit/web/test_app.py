"""Tests for priceledger.web.app - middleware and error mapping."""


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_request_id_echoed(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


def test_request_id_generated(client):
    response = client.get("/health")

    assert response.headers["X-Request-ID"]
