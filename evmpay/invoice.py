from __future__ import annotations

import copy
import hashlib
import hmac
import time
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Optional

from web3 import Web3

MAX_UINT256 = 2 ** 256 - 1


class ZeroizedKey:
    """
    DANGER: holds raw private key bytes.

    The bytes live in a mutable buffer that is overwritten with zeros on wipe(),
    when used as a context manager, and when the object is garbage collected.
    Anything derived from it (bytes(key), an eth_account LocalAccount) is an
    ordinary immutable copy and is not covered.
    """

    __slots__ = ("_buf",)

    def __init__(self, data: bytes):
        self._buf = bytearray(data)

    def __bytes__(self) -> bytes:
        return bytes(self._buf)

    def __len__(self) -> int:
        return len(self._buf)

    def hex(self) -> str:
        return "0x" + self._buf.hex()

    @property
    def wiped(self) -> bool:
        return not any(self._buf)

    def wipe(self) -> None:
        self._buf[:] = bytes(len(self._buf))

    def copy(self) -> "ZeroizedKey":
        return ZeroizedKey(self._buf)

    def __enter__(self) -> "ZeroizedKey":
        return self

    def __exit__(self, *exc) -> None:
        self.wipe()

    def __del__(self):
        try:
            self.wipe()
        except AttributeError:
            pass

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ZeroizedKey):
            return NotImplemented
        return hmac.compare_digest(bytes(self._buf), bytes(other._buf))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ZeroizedKey(<{len(self._buf)} bytes>)"


@dataclass(frozen=True)
class PaymentMethod:
    """Native gas token when token_address is None, otherwise an ERC-20 token."""

    token_address: Optional[str] = None

    @classmethod
    def native(cls) -> "PaymentMethod":
        return cls(None)

    @classmethod
    def token(cls, address: str) -> "PaymentMethod":
        if not Web3.is_address(address):
            raise ValueError(f"invalid token address: {address}")
        return cls(Web3.to_checksum_address(address))

    @property
    def is_native(self) -> bool:
        return self.token_address is None


@dataclass
class Invoice:
    # Recipient address (the ephemeral wallet)
    to: str
    # Only copy of the key able to move funds out of `to`
    wallet: ZeroizedKey
    amount: int
    method: PaymentMethod = field(default_factory=PaymentMethod.native)
    message: bytes = b""
    paid_at_timestamp: int = 0
    expires: int = 0
    receipt: Optional[Dict[str, Any]] = None
    hash: Optional[str] = None

    def __post_init__(self):
        if not 0 <= int(self.amount) <= MAX_UINT256:
            raise ValueError("amount must fit in uint256")
        self.amount = int(self.amount)

    @property
    def is_pending(self) -> bool:
        return self.paid_at_timestamp == 0

    def is_expired(self, now: int) -> bool:
        return self.is_pending and now > self.expires

    def copy(self) -> "Invoice":
        return replace(self, wallet=self.wallet.copy(), receipt=copy.deepcopy(self.receipt))

    def to_public_dict(self, include_wallet: bool = False) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "to": self.to,
            "amount": str(self.amount),
            "token_address": self.method.token_address,
            "message": "0x" + self.message.hex(),
            "paid_at_timestamp": self.paid_at_timestamp,
            "expires": self.expires,
            "receipt": self.receipt,
            "hash": self.hash,
        }
        if include_wallet:
            data["wallet"] = self.wallet.hex()
        return data


def unix_millis() -> int:
    return int(time.time() * 1000)


def make_invoice_id(address: str, millis: Optional[int] = None) -> str:
    """SHA-256 over address + creation time in milliseconds."""
    if millis is None:
        millis = unix_millis()
    return hashlib.sha256(f"{address}{millis}".encode("utf-8")).hexdigest()
