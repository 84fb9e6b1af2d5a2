"""
Reflectors hand settled invoices to the integrating application.

Delivery is best-effort: the poller logs a failed delivery and moves on, it
never retries and never waits on a slow consumer.
"""
from __future__ import annotations

import logging
import queue
from typing import Callable, Optional, Tuple

import requests

from .invoice import Invoice

logger = logging.getLogger(__name__)

Settled = Tuple[str, Invoice]


class Reflector:
    def send(self, key: str, invoice: Invoice) -> None:
        raise NotImplementedError


class QueueReflector(Reflector):
    """
    Pushes (invoice_id, Invoice) onto a queue; unbounded unless a bounded queue
    is passed in, in which case a full queue drops the notification.
    """

    def __init__(self, q: Optional["queue.Queue[Settled]"] = None):
        self.queue: "queue.Queue[Settled]" = q if q is not None else queue.Queue()

    def send(self, key: str, invoice: Invoice) -> None:
        self.queue.put_nowait((key, invoice))


class CallbackReflector(Reflector):
    def __init__(self, callback: Callable[[str, Invoice], None]):
        self.callback = callback

    def send(self, key: str, invoice: Invoice) -> None:
        self.callback(key, invoice)


class WebhookReflector(Reflector):
    """
    POSTs the invoice as JSON. The private key is only included when
    include_wallet is set, which is the sole way a webhook consumer can recover
    funds from an invoice that arrived without a receipt.
    """

    def __init__(self, url: str, timeout: float = 5, include_wallet: bool = False):
        self.url = url
        self.timeout = timeout
        self.include_wallet = include_wallet

    def send(self, key: str, invoice: Invoice) -> None:
        payload = {
            "event": "invoice_settled" if invoice.receipt is not None else "invoice_sweep_failed",
            "id": key,
            "invoice": invoice.to_public_dict(include_wallet=self.include_wallet),
        }
        resp = requests.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()


def deliver(reflector: Reflector, key: str, invoice: Invoice) -> bool:
    try:
        reflector.send(key, invoice)
        return True
    except queue.Full:
        logger.error("Failed sending invoice %s: reflector queue is full", key)
    except Exception as exc:
        logger.error("Failed sending invoice %s: %s", key, exc)
    return False
