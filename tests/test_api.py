"""
Tests for the /api/v1 HTTP surface.
"""

import pytest

from conftest import TOKEN
from evmpay.api import create_app
from evmpay.errors import Communicate


@pytest.fixture
def client(gateway):
    app = create_app(gateway)
    app.config["TESTING"] = True
    return app.test_client()


class TestCreate:

    def test_create_native(self, client, clock):
        resp = client.post("/api/v1/invoices", json={"amount": "1000", "expires_in_seconds": 60})
        assert resp.status_code == 201
        body = resp.get_json()
        assert body["ok"] is True
        assert len(body["id"]) == 64
        assert body["invoice"]["amount"] == "1000"
        assert body["invoice"]["token_address"] is None
        assert body["invoice"]["expires"] == int(clock()) + 60
        assert "wallet" not in body["invoice"]

    def test_zero_amount_and_digit_strings(self, client):
        resp = client.post("/api/v1/invoices", json={"amount": 0, "expires_in_seconds": "30"})
        assert resp.status_code == 201
        assert resp.get_json()["invoice"]["amount"] == "0"

    def test_create_token_with_message(self, client):
        resp = client.post("/api/v1/invoices", json={
            "amount": 5, "token_address": TOKEN.lower(), "message": "0xcafe",
        })
        body = resp.get_json()
        assert resp.status_code == 201
        assert body["invoice"]["token_address"] == TOKEN
        assert body["invoice"]["message"] == "0xcafe"

    @pytest.mark.parametrize("payload,error", [
        ({}, "invalid_amount"),
        ({"amount": "ten"}, "invalid_amount"),
        ({"amount": -1}, "invalid_amount"),
        ({"amount": 2 ** 256}, "invalid_amount"),
        ({"amount": 1.9}, "invalid_amount"),
        ({"amount": True}, "invalid_amount"),
        ({"amount": "1e3"}, "invalid_amount"),
        ({"amount": "-5"}, "invalid_amount"),
        ({"amount": None}, "invalid_amount"),
        ({"amount": 1, "expires_in_seconds": -5}, "invalid_expiry"),
        ({"amount": 1, "expires_in_seconds": 60.5}, "invalid_expiry"),
        ({"amount": 1, "token_address": "0x12"}, "invalid_token_address"),
        ({"amount": 1, "message": "zz"}, "invalid_message"),
    ])
    def test_bad_requests(self, client, payload, error):
        resp = client.post("/api/v1/invoices", json=payload)
        body = resp.get_json()
        assert resp.status_code == 400
        assert body["ok"] is False
        assert body["error"] == error


class TestRead:

    def test_get_by_id(self, client):
        created = client.post("/api/v1/invoices", json={"amount": 7}).get_json()
        resp = client.get(f"/api/v1/invoices/{created['id']}")
        assert resp.status_code == 200
        assert resp.get_json()["invoice"]["to"] == created["invoice"]["to"]

    def test_unknown_id(self, client):
        resp = client.get("/api/v1/invoices/" + "0" * 64)
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "not_found"

    def test_list_and_latest(self, client):
        first = client.post("/api/v1/invoices", json={"amount": 1}).get_json()["id"]
        second = client.post("/api/v1/invoices", json={"amount": 2}).get_json()["id"]

        listing = client.get("/api/v1/invoices").get_json()
        assert listing["count"] == 2
        assert [item["id"] for item in listing["invoices"]] == [first, second]

        latest = client.get("/api/v1/invoices/latest").get_json()
        assert latest["id"] == second

    def test_latest_when_empty(self, client):
        assert client.get("/api/v1/invoices/latest").status_code == 404

    def test_store_outage(self, client, gateway):
        def down():
            raise Communicate("db gone")
        gateway.store.get_all = down
        resp = client.get("/api/v1/invoices")
        assert resp.status_code == 503
        assert resp.get_json()["error"] == "store_unavailable"


class TestHealth:

    def test_health(self, client):
        body = client.get("/api/v1/health").get_json()
        assert body["ok"] is True
        assert body["gateway"] == "test-gateway"
        assert body["polling"] is False
