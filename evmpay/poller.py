from __future__ import annotations

import logging
import threading
import time
from enum import Enum
from typing import Callable, List, Optional, Tuple

from .errors import LedgerError, NotFound, StoreError, TransferError
from .invoice import Invoice
from .reflector import Reflector, deliver

logger = logging.getLogger(__name__)


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    EXPIRED = "expired"
    SETTLED = "settled"
    SETTLEMENT_FAILED = "settlement_failed"


class Poller:
    """
    Sequential reconciliation of stored invoices against the chain.

    One invoice at a time, sleeping invoice_delay after each so the RPC
    provider's rate limits are respected. Nothing is kept between passes; every
    pass starts from store.get_all().

    An invoice whose payment is detected is deleted whatever the sweep outcome.
    A failed sweep is reported once through the reflector without a receipt and
    is not retried from the store.
    """

    def __init__(
        self,
        store,
        ledger,
        engine,
        reflector: Reflector,
        invoice_delay: float = 1.0,
        poller_delay: float = 10.0,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.store = store
        self.ledger = ledger
        self.engine = engine
        self.reflector = reflector
        self.invoice_delay = invoice_delay
        self.poller_delay = poller_delay
        self._clock = clock
        self._stop = threading.Event()
        self._sleep = sleep if sleep is not None else self._stop.wait

    def now(self) -> int:
        return int(self._clock())

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run_forever(self) -> None:
        logger.info("Starting polling payments")
        while not self.stopped:
            try:
                self.run_pass()
            except Exception:
                logger.exception("Reconciliation pass failed")
            if self.stopped:
                break
            self._sleep(self.poller_delay)
        logger.info("Polling stopped")

    def run_pass(self) -> List[Tuple[str, InvoiceStatus]]:
        try:
            invoices = self.store.get_all()
        except StoreError as exc:
            logger.error("Could not get all invoices, skipping pass: %s", exc)
            return []

        logger.info("Pending invoices: %d", len(invoices))
        outcomes = []
        for key, invoice in invoices:
            if self.stopped:
                break
            outcomes.append((key, self.process(key, invoice)))
            self._sleep(self.invoice_delay)
        return outcomes

    def process(self, key: str, invoice: Invoice) -> InvoiceStatus:
        if invoice.is_expired(self.now()):
            logger.info("Invoice %s expired", key)
            self._delete(key)
            return InvoiceStatus.EXPIRED

        try:
            paid = self.is_paid(invoice)
        except LedgerError as exc:
            logger.error("Failed to check balance of %s: %s", invoice.to, exc)
            return InvoiceStatus.PENDING
        if not paid:
            return InvoiceStatus.PENDING

        detected_at = self.now()
        logger.info("Payment detected for invoice %s, starting transfer to treasury", key)
        status = InvoiceStatus.SETTLED
        try:
            invoice.hash, invoice.receipt = self.engine.sweep(invoice)
        except TransferError as exc:
            logger.error("Could not transfer paid invoice %s to treasury: %s", key, exc)
            status = InvoiceStatus.SETTLEMENT_FAILED
        if not invoice.method.is_native:
            # only native value is swept
            logger.warning(
                "Invoice %s was paid in token %s; the tokens stay at %s and must be recovered with the invoice key",
                key, invoice.method.token_address, invoice.to,
            )

        self._delete(key)
        invoice.paid_at_timestamp = detected_at
        deliver(self.reflector, key, invoice)
        return status

    def is_paid(self, invoice: Invoice) -> bool:
        if invoice.method.is_native:
            balance = self.ledger.native_balance(invoice.to)
        else:
            balance = self.ledger.token_balance(invoice.method.token_address, invoice.to)
        return balance >= invoice.amount

    def _delete(self, key: str) -> None:
        try:
            self.store.delete(key)
        except NotFound:
            logger.warning("Invoice %s was already removed", key)
        except StoreError as exc:
            logger.error("Could not remove invoice %s: %s", key, exc)
