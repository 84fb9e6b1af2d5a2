from __future__ import annotations

import logging
import threading
import time
from typing import Callable, List, Optional, Tuple

from . import wallet
from .config import GatewayConfig
from .invoice import Invoice, PaymentMethod, make_invoice_id
from .ledger import LedgerGateway
from .poller import Poller
from .reflector import QueueReflector, Reflector, WebhookReflector
from .store import InvoiceStore, make_store
from .transfers import SweepEngine

logger = logging.getLogger(__name__)


class PaymentGateway:
    """
    Public entry point: create and look up invoices, start the poller.

    Invoice creation is safe from any thread while the poller runs; the store
    serializes access and new keys are never visible to a pass in progress.
    """

    def __init__(
        self,
        ledger,
        store: InvoiceStore,
        engine: SweepEngine,
        reflector: Reflector,
        name: str = "evmpay",
        invoice_delay: float = 1.0,
        poller_delay: float = 10.0,
        clock: Callable[[], float] = time.time,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.name = name
        self.ledger = ledger
        self.store = store
        self.engine = engine
        self.reflector = reflector
        self._clock = clock
        self.poller = Poller(
            store, ledger, engine, reflector,
            invoice_delay=invoice_delay, poller_delay=poller_delay, clock=clock, sleep=sleep,
        )
        self._thread: Optional[threading.Thread] = None

    @classmethod
    def from_config(cls, cfg: GatewayConfig, reflector: Optional[Reflector] = None) -> "PaymentGateway":
        ledger = LedgerGateway.connect(cfg.rpc_url, timeout=cfg.rpc_timeout)
        engine = SweepEngine(
            ledger,
            cfg.treasury_address,
            transaction_type=cfg.transaction_type,
            min_confirmations=cfg.min_confirmations,
            confirmation_timeout=cfg.confirmation_timeout,
            transfer_gas_limit=cfg.transfer_gas_limit,
            fee_retry_max=cfg.fee_retry_max,
            fee_retry_delay=cfg.fee_retry_delay_seconds,
        )
        if reflector is None:
            if cfg.webhook_url:
                reflector = WebhookReflector(cfg.webhook_url, include_wallet=cfg.webhook_include_wallet)
            else:
                reflector = QueueReflector()
        return cls(
            ledger,
            make_store(cfg.database_url),
            engine,
            reflector,
            name=cfg.name,
            invoice_delay=cfg.invoice_delay_seconds,
            poller_delay=cfg.poller_delay_seconds,
        )

    def new_invoice(
        self,
        amount: int,
        method: Optional[PaymentMethod] = None,
        message: bytes = b"",
        expires_in_seconds: int = 3600,
    ) -> Tuple[str, Invoice]:
        """
        Issue a fresh deposit address and store a pending invoice for it.

        amount is in the smallest unit of the payment method (wei, or token
        base units). message is stored as-is and handed back on settlement.
        """
        if expires_in_seconds < 0:
            raise ValueError("expires_in_seconds must be >= 0")
        address, key = wallet.issue()
        invoice = Invoice(
            to=address,
            wallet=key,
            amount=amount,
            method=method or PaymentMethod.native(),
            message=bytes(message),
            paid_at_timestamp=0,
            expires=int(self._clock()) + int(expires_in_seconds),
        )
        invoice_id = make_invoice_id(address, int(self._clock() * 1000))
        self.store.set(invoice_id, invoice)
        logger.info("Created invoice %s for %s (expires %s)", invoice_id, address, invoice.expires)
        return invoice_id, invoice

    def get_invoice(self, invoice_id: str) -> Invoice:
        return self.store.get(invoice_id)

    def get_all_invoices(self) -> List[Tuple[str, Invoice]]:
        return self.store.get_all()

    def get_last_invoice(self) -> Tuple[str, Invoice]:
        return self.store.get_latest()

    def poll_payments(self) -> threading.Thread:
        """Start the reconciliation loop in a daemon thread (once)."""
        if self._thread is not None and self._thread.is_alive():
            return self._thread
        self._thread = threading.Thread(target=self.poller.run_forever, name=f"{self.name}-poller", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = None) -> None:
        self.poller.stop()
        if self._thread is not None:
            self._thread.join(timeout)
