from .errors import (
    ChainIdUnavailable,
    Communicate,
    ConfirmationTimeout,
    DeserializeError,
    FeeEstimationExhausted,
    GatewayError,
    LedgerError,
    NotFound,
    NothingToSweep,
    SerializeError,
    StoreError,
    SubmissionFailed,
    TransactionBuildFailed,
    TransferError,
)
from .gateway import PaymentGateway
from .invoice import Invoice, PaymentMethod, ZeroizedKey
from .ledger import LedgerGateway
from .poller import InvoiceStatus, Poller
from .reflector import CallbackReflector, QueueReflector, Reflector, WebhookReflector
from .store import InvoiceStore, MemoryInvoiceStore, SqlInvoiceStore, make_store
from .transfers import SweepEngine, TransactionType

__version__ = "0.1.0"
