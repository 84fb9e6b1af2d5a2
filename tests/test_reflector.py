"""
Tests for settlement notification sinks.
"""

import queue

import pytest
import requests

from evmpay import reflector as reflector_module
from evmpay.invoice import Invoice
from evmpay.reflector import CallbackReflector, QueueReflector, WebhookReflector, deliver
from evmpay.wallet import issue


class _Response:
    def __init__(self, status_code=200):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


@pytest.fixture
def settled():
    address, key = issue()
    return Invoice(
        to=address, wallet=key, amount=5, message=b"\x01\x02",
        paid_at_timestamp=1_700_000_000, expires=1_700_003_600,
        receipt={"status": 1}, hash="0x" + "cd" * 32,
    )


class _Sent(list):
    status_code = 200


@pytest.fixture
def webhook_calls(monkeypatch):
    calls = _Sent()

    def fake_post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        return _Response(calls.status_code)

    monkeypatch.setattr(reflector_module.requests, "post", fake_post)
    return calls


class TestQueueReflector:

    def test_pushes_pair(self, settled):
        r = QueueReflector()
        assert deliver(r, "id-1", settled)
        key, invoice = r.queue.get_nowait()
        assert key == "id-1"
        assert invoice is settled

    def test_full_queue_is_reported(self, settled):
        r = QueueReflector(queue.Queue(maxsize=1))
        assert deliver(r, "id-1", settled)
        assert not deliver(r, "id-2", settled)
        assert r.queue.qsize() == 1


class TestCallbackReflector:

    def test_invokes_callback(self, settled):
        seen = []
        assert deliver(CallbackReflector(lambda k, inv: seen.append((k, inv.amount))), "id-1", settled)
        assert seen == [("id-1", 5)]

    def test_callback_error_returns_false(self, settled):
        def boom(key, invoice):
            raise RuntimeError("nope")
        assert not deliver(CallbackReflector(boom), "id-1", settled)


class TestWebhookReflector:

    def test_settled_payload(self, webhook_calls, settled):
        assert deliver(WebhookReflector("http://hooks.local/paid", timeout=3), "id-1", settled)
        [call] = webhook_calls
        assert call["url"] == "http://hooks.local/paid"
        assert call["timeout"] == 3
        body = call["json"]
        assert body["event"] == "invoice_settled"
        assert body["id"] == "id-1"
        assert body["invoice"]["amount"] == "5"
        assert body["invoice"]["message"] == "0x0102"
        assert "wallet" not in body["invoice"]

    def test_failed_sweep_event(self, webhook_calls, settled):
        settled.receipt = None
        settled.hash = None
        deliver(WebhookReflector("http://hooks.local/paid"), "id-1", settled)
        assert webhook_calls[0]["json"]["event"] == "invoice_sweep_failed"

    def test_wallet_only_when_enabled(self, webhook_calls, settled):
        deliver(WebhookReflector("http://hooks.local/paid", include_wallet=True), "id-1", settled)
        assert webhook_calls[0]["json"]["invoice"]["wallet"] == settled.wallet.hex()

    def test_http_error_returns_false(self, webhook_calls, settled):
        webhook_calls.status_code = 500
        assert not deliver(WebhookReflector("http://hooks.local/paid"), "id-1", settled)

    def test_connection_error_returns_false(self, monkeypatch, settled):
        def refuse(*args, **kwargs):
            raise requests.ConnectionError("refused")
        monkeypatch.setattr(reflector_module.requests, "post", refuse)
        assert not deliver(WebhookReflector("http://hooks.local/paid"), "id-1", settled)
