"""
Pytest configuration and fixtures for evmpay tests.
"""

import os
import sys
from collections import Counter

import pytest
from eth_account import Account
from web3 import Web3

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from evmpay.gateway import PaymentGateway
from evmpay.reflector import QueueReflector
from evmpay.store import MemoryInvoiceStore, SqlInvoiceStore
from evmpay.transfers import SweepEngine

TREASURY = Web3.to_checksum_address("0x" + "11" * 20)
TOKEN = Web3.to_checksum_address("0x" + "22" * 20)
CHAIN_ID = 1337
START = 1_700_000_000.0


class FakeLedger:
    """
    In-memory chain. Balances are plain dicts, every call is counted and any
    method can be made to raise by putting an exception in `fail`.
    """

    def __init__(self):
        self.balances = {}
        self.token_balances = {}
        self.chain = CHAIN_ID
        self.price = 10
        self.base_fee = 100
        self.fee_samples = [(300, 20), (500, 40)]
        self.gas = 21000
        self.nonces = {}
        self.receipt_status = 1
        self.submitted = []
        self.confirmations = []
        self.fail = {}
        self.calls = Counter()
        self.estimates = []

    def _check(self, name):
        self.calls[name] += 1
        exc = self.fail.get(name)
        if exc is not None:
            raise exc

    def fund(self, address, wei):
        self.balances[Web3.to_checksum_address(address)] = wei

    def native_balance(self, address):
        self._check("native_balance")
        return self.balances.get(Web3.to_checksum_address(address), 0)

    def token_balance(self, token_address, holder):
        self._check("token_balance")
        return self.token_balances.get((token_address, Web3.to_checksum_address(holder)), 0)

    def chain_id(self):
        self._check("chain_id")
        return self.chain

    def gas_price(self):
        self._check("gas_price")
        return self.price

    def latest_base_fee(self):
        self._check("latest_base_fee")
        return self.base_fee

    def recent_block_fee_samples(self):
        self._check("recent_block_fee_samples")
        return list(self.fee_samples)

    def transaction_count(self, address):
        self._check("transaction_count")
        return self.nonces.get(Web3.to_checksum_address(address), 0)

    def estimate_gas(self, tx):
        self._check("estimate_gas")
        self.estimates.append(dict(tx))
        return self.gas

    def submit_raw(self, raw_tx):
        self._check("submit_raw")
        sender = Account.recover_transaction(raw_tx)
        self.submitted.append(bytes(raw_tx))
        # a plain transfer burns its full gas limit, so the sweep empties the address
        self.balances[sender] = 0
        self.nonces[sender] = self.nonces.get(sender, 0) + 1
        return Web3.to_hex(Web3.keccak(raw_tx))

    def await_confirmation(self, tx_hash, min_confirmations=1, timeout=300, poll_latency=5):
        self._check("await_confirmation")
        self.confirmations.append((tx_hash, min_confirmations, timeout))
        return {"status": self.receipt_status, "transactionHash": tx_hash, "blockNumber": 1}


class ManualClock:
    def __init__(self, start=START):
        self.t = start

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


class RecordingSleep:
    def __init__(self):
        self.calls = []

    def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def engine(ledger, sleep):
    return SweepEngine(ledger, TREASURY, fee_retry_delay=2.0, sleep=sleep)


@pytest.fixture
def reflector():
    return QueueReflector()


@pytest.fixture(params=["memory", "sql"])
def store(request, tmp_path):
    """Both store backends; tests using this run once per backend."""
    if request.param == "memory":
        return MemoryInvoiceStore()
    return SqlInvoiceStore(f"sqlite:///{tmp_path / 'invoices.db'}")


@pytest.fixture
def gateway(ledger, engine, reflector, clock, sleep):
    return PaymentGateway(
        ledger,
        MemoryInvoiceStore(),
        engine,
        reflector,
        name="test-gateway",
        invoice_delay=1.0,
        poller_delay=10.0,
        clock=clock,
        sleep=sleep,
    )


def drain(q):
    items = []
    while not q.empty():
        items.append(q.get_nowait())
    return items
