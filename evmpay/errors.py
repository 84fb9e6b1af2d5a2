from __future__ import annotations


class GatewayError(Exception):
    """Base class for every error raised by evmpay."""


# ---------------- Store ---------------- #

class StoreError(GatewayError):
    pass


class NotFound(StoreError):
    def __init__(self, key: str = ""):
        super().__init__(f"No matches found: {key}" if key else "No matches found")
        self.key = key


class Communicate(StoreError):
    """The backing store could not be reached or refused the operation."""


class SerializeError(StoreError):
    pass


class DeserializeError(StoreError):
    pass


# ---------------- Ledger ---------------- #

class LedgerError(GatewayError):
    pass


class LedgerUnreachable(LedgerError):
    """Transport failure talking to the RPC node."""


class MalformedResponse(LedgerError):
    pass


class LedgerRejected(LedgerError):
    """The node answered with a JSON-RPC error."""


class LedgerTimeout(LedgerError):
    pass


# ---------------- Transfers ---------------- #

class TransferError(GatewayError):
    pass


class ChainIdUnavailable(TransferError):
    pass


class FeeEstimationExhausted(TransferError):
    pass


class TransactionBuildFailed(TransferError):
    pass


class NothingToSweep(TransactionBuildFailed):
    """Balance does not cover the gas reserve; nothing was submitted."""


class SubmissionFailed(TransferError):
    pass


class ConfirmationTimeout(TransferError):
    pass
