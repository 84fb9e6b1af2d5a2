from __future__ import annotations

import functools
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import requests
from web3 import Web3
from web3.exceptions import BlockNotFound, TimeExhausted, TransactionNotFound, Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from .errors import LedgerError, LedgerRejected, LedgerTimeout, LedgerUnreachable, MalformedResponse

logger = logging.getLogger(__name__)


ERC20_ABI = [
    {"constant": True, "inputs": [], "name": "decimals", "outputs": [{"name": "", "type": "uint8"}], "type": "function"},
    {"constant": True, "inputs": [{"name": "", "type": "address"}], "name": "balanceOf", "outputs": [{"name": "", "type": "uint256"}], "type": "function"},
]


def _ledger_call(fn):
    """Translate transport and node errors into the LedgerError family."""

    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except LedgerError:
            raise
        except (requests.exceptions.RequestException, ConnectionError, TimeoutError) as exc:
            raise LedgerUnreachable(f"{fn.__name__}: {exc}") from exc
        except (KeyError, TypeError, BlockNotFound) as exc:
            raise MalformedResponse(f"{fn.__name__}: {exc}") from exc
        except (ValueError, Web3Exception) as exc:
            # web3 surfaces JSON-RPC error replies as ValueError / Web3Exception
            raise LedgerRejected(f"{fn.__name__}: {exc}") from exc

    return wrapper


def _plain(value: Any) -> Dict[str, Any]:
    """AttributeDict/HexBytes receipt -> JSON-compatible dict."""
    return json.loads(Web3.to_json(value))


@dataclass
class LedgerGateway:
    w3: Web3

    @staticmethod
    def connect(rpc_url: str, timeout: int = 60) -> "LedgerGateway":
        w3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        # PoA chains (BSC, Polygon, most testnets) carry oversized extraData
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        return LedgerGateway(w3=w3)

    @_ledger_call
    def native_balance(self, address: str) -> int:
        return int(self.w3.eth.get_balance(Web3.to_checksum_address(address)))

    @_ledger_call
    def token_balance(self, token_address: str, holder: str) -> int:
        token = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        return int(token.functions.balanceOf(Web3.to_checksum_address(holder)).call())

    @_ledger_call
    def chain_id(self) -> int:
        return int(self.w3.eth.chain_id)

    @_ledger_call
    def gas_price(self) -> int:
        return int(self.w3.eth.gas_price)

    @_ledger_call
    def latest_base_fee(self) -> Optional[int]:
        block = self.w3.eth.get_block("latest")
        base_fee = block.get("baseFeePerGas")
        return int(base_fee) if base_fee is not None else None

    @_ledger_call
    def recent_block_fee_samples(self) -> List[Tuple[int, int]]:
        """(maxFeePerGas, maxPriorityFeePerGas) of every fee-market tx in the latest block."""
        block = self.w3.eth.get_block("latest", full_transactions=True)
        samples = []
        for tx in block["transactions"]:
            max_fee = tx.get("maxFeePerGas")
            priority = tx.get("maxPriorityFeePerGas")
            if max_fee is None or priority is None:
                continue
            samples.append((int(max_fee), int(priority)))
        return samples

    @_ledger_call
    def transaction_count(self, address: str) -> int:
        return int(self.w3.eth.get_transaction_count(Web3.to_checksum_address(address)))

    @_ledger_call
    def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(self.w3.eth.estimate_gas(tx))

    @_ledger_call
    def submit_raw(self, raw_tx: bytes) -> str:
        return Web3.to_hex(self.w3.eth.send_raw_transaction(raw_tx))

    @_ledger_call
    def await_confirmation(
        self,
        tx_hash: str,
        min_confirmations: int = 1,
        timeout: float = 300,
        poll_latency: float = 5,
    ) -> Dict[str, Any]:
        deadline = time.monotonic() + timeout
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=poll_latency)
        except TimeExhausted as exc:
            raise LedgerTimeout(f"no receipt for {tx_hash} after {timeout}s") from exc

        mined_in = int(receipt["blockNumber"])
        while True:
            depth = int(self.w3.eth.block_number) - mined_in + 1
            if depth >= min_confirmations:
                break
            if time.monotonic() >= deadline:
                raise LedgerTimeout(f"{tx_hash} has {depth}/{min_confirmations} confirmations")
            time.sleep(poll_latency)

        # re-read in case of a reorg while waiting
        if min_confirmations > 1:
            try:
                receipt = self.w3.eth.get_transaction_receipt(tx_hash)
            except TransactionNotFound as exc:
                raise LedgerTimeout(f"{tx_hash} dropped while waiting for confirmations") from exc
        logger.info("Transaction confirmed: %s (block %s)", tx_hash, receipt["blockNumber"])
        return _plain(receipt)
