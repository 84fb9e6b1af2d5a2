"""
Sweeps paid invoices to the treasury.

The value moved is always the address's balance at sweep time minus the
worst-case gas cost, floored at zero. Sweeping an already emptied address
therefore raises NothingToSweep instead of submitting anything.
"""
from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from eth_utils import ValidationError
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_fixed
from web3 import Web3

from .errors import (
    ChainIdUnavailable,
    ConfirmationTimeout,
    FeeEstimationExhausted,
    LedgerError,
    NothingToSweep,
    SubmissionFailed,
    TransactionBuildFailed,
)
from .invoice import Invoice
from .wallet import restore

logger = logging.getLogger(__name__)


class TransactionType(str, Enum):
    LEGACY = "legacy"
    EIP1559 = "eip1559"


class FeeSamplesUnavailable(Exception):
    """Latest block had no base fee or no fee-market transactions to average."""


def compute_sweep_value(balance: int, gas_limit: int, fee_per_gas: int) -> int:
    return max(int(balance) - int(gas_limit) * int(fee_per_gas), 0)


def average_fee_samples(samples: List[Tuple[int, int]]) -> Tuple[int, int]:
    count = len(samples)
    return sum(s[0] for s in samples) // count, sum(s[1] for s in samples) // count


def estimate_fee_market_fees(ledger) -> Tuple[int, int, int]:
    """Returns (base_fee, estimated_max_fee, estimated_priority_fee)."""
    base_fee = ledger.latest_base_fee()
    if base_fee is None:
        raise FeeSamplesUnavailable("No base fee in block")
    samples = ledger.recent_block_fee_samples()
    if not samples:
        raise FeeSamplesUnavailable("No fee-market transactions in block")
    max_fee, priority_fee = average_fee_samples(samples)
    return base_fee, max_fee, priority_fee


def estimate_fee_market_fees_with_retry(
    ledger,
    max_retries: int,
    delay_seconds: float,
    sleep: Callable[[float], None] = time.sleep,
) -> Tuple[int, int, int]:
    """One attempt plus up to max_retries retries, delay_seconds apart."""
    retrying = Retrying(
        reraise=True,
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_fixed(delay_seconds),
        retry=retry_if_exception_type(FeeSamplesUnavailable),
        sleep=sleep,
    )
    try:
        return retrying(estimate_fee_market_fees, ledger)
    except FeeSamplesUnavailable as exc:
        raise FeeEstimationExhausted(f"{exc} (gave up after {max_retries + 1} attempts)") from exc
    except LedgerError as exc:
        raise FeeEstimationExhausted(f"Could not read fee data: {exc}") from exc


class SweepEngine:
    def __init__(
        self,
        ledger,
        treasury_address: str,
        transaction_type: TransactionType = TransactionType.LEGACY,
        min_confirmations: int = 1,
        confirmation_timeout: float = 300,
        transfer_gas_limit: Optional[int] = None,
        fee_retry_max: int = 3,
        fee_retry_delay: float = 2.0,
        poll_latency: float = 5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not Web3.is_address(treasury_address):
            raise ValueError(f"Invalid treasury address: {treasury_address}")
        self.ledger = ledger
        self.treasury_address = Web3.to_checksum_address(treasury_address)
        self.transaction_type = TransactionType(transaction_type)
        self.min_confirmations = min_confirmations
        self.confirmation_timeout = confirmation_timeout
        self.transfer_gas_limit = transfer_gas_limit
        self.fee_retry_max = fee_retry_max
        self.fee_retry_delay = fee_retry_delay
        self.poll_latency = poll_latency
        self._sleep = sleep

    def sweep(self, invoice: Invoice) -> Tuple[str, Dict[str, Any]]:
        """Sign, submit and confirm the sweep. Returns (tx_hash, receipt)."""
        account = restore(invoice.wallet)
        tx = self.draft_sweep(invoice)
        logger.info("Sweeping %s wei from %s to %s", tx["value"], invoice.to, self.treasury_address)
        return self._transmit(account, tx)

    def draft_sweep(self, invoice: Invoice) -> Dict[str, Any]:
        """Unsigned sweep transaction for the invoice's current balance."""
        chain_id = self._chain_id()
        try:
            balance = self.ledger.native_balance(invoice.to)
            nonce = self.ledger.transaction_count(invoice.to)
        except LedgerError as exc:
            raise TransactionBuildFailed(f"Could not read sender state: {exc}") from exc

        if self.transaction_type is TransactionType.EIP1559:
            tx = self._fee_market_tx(invoice.to, chain_id, nonce, balance)
        else:
            tx = self._legacy_tx(invoice.to, chain_id, nonce, balance)

        if tx["value"] == 0:
            raise NothingToSweep(f"Balance {balance} of {invoice.to} does not cover gas reserve")
        return tx

    def _chain_id(self) -> int:
        try:
            return self.ledger.chain_id()
        except LedgerError as exc:
            logger.error("Could not get chain id: %s", exc)
            raise ChainIdUnavailable(str(exc)) from exc

    def _gas_limit(self, sender: str, nonce: int, fees: Dict[str, Any]) -> int:
        if self.transfer_gas_limit:
            return int(self.transfer_gas_limit)
        draft = {"from": sender, "to": self.treasury_address, "value": 0, "nonce": nonce}
        draft.update(fees)
        try:
            return self.ledger.estimate_gas(draft)
        except LedgerError as exc:
            logger.error("Gas estimation failed: %s", exc)
            raise FeeEstimationExhausted(f"Gas estimation failed: {exc}") from exc

    def _legacy_tx(self, sender: str, chain_id: int, nonce: int, balance: int) -> Dict[str, Any]:
        try:
            gas_price = self.ledger.gas_price()
        except LedgerError as exc:
            logger.error("Could not get gas price (maybe chain uses EIP-1559?): %s", exc)
            raise FeeEstimationExhausted(f"Could not get gas price: {exc}") from exc
        gas_limit = self._gas_limit(sender, nonce, {"gasPrice": gas_price, "chainId": chain_id})
        return {
            "to": self.treasury_address,
            "value": compute_sweep_value(balance, gas_limit, gas_price),
            "gas": gas_limit,
            "gasPrice": gas_price,
            "nonce": nonce,
            "chainId": chain_id,
            "data": b"",
        }

    def _fee_market_tx(self, sender: str, chain_id: int, nonce: int, balance: int) -> Dict[str, Any]:
        base_fee, est_max_fee, est_priority_fee = estimate_fee_market_fees_with_retry(
            self.ledger, self.fee_retry_max, self.fee_retry_delay, sleep=self._sleep
        )
        max_fee_per_gas = max(est_max_fee, base_fee + est_priority_fee)
        gas_limit = self._gas_limit(sender, nonce, {
            "type": 2,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": est_priority_fee,
            "chainId": chain_id,
        })
        return {
            "type": 2,
            "to": self.treasury_address,
            "value": compute_sweep_value(balance, gas_limit, max_fee_per_gas),
            "gas": gas_limit,
            "maxFeePerGas": max_fee_per_gas,
            "maxPriorityFeePerGas": est_priority_fee,
            "nonce": nonce,
            "chainId": chain_id,
            "data": b"",
            "accessList": [],
        }

    def _transmit(self, account, tx: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
        try:
            signed = account.sign_transaction(tx)
        except (ValidationError, ValueError, TypeError) as exc:
            raise TransactionBuildFailed(f"Could not sign sweep: {exc}") from exc

        try:
            tx_hash = self.ledger.submit_raw(signed.raw_transaction)
        except LedgerError as exc:
            logger.error("Transaction send failed: %s", exc)
            raise SubmissionFailed(str(exc)) from exc

        try:
            receipt = self.ledger.await_confirmation(
                tx_hash, self.min_confirmations, self.confirmation_timeout, self.poll_latency
            )
        except LedgerError as exc:
            logger.error("Error waiting for confirmations of %s: %s", tx_hash, exc)
            raise ConfirmationTimeout(f"{tx_hash}: {exc}") from exc

        if receipt.get("status") != 1:
            raise SubmissionFailed(f"Sweep {tx_hash} reverted")
        return tx_hash, receipt
