"""
Binary record format for persisted invoices.

Each invoice is an RLP list, so every field carries its own length prefix and
the record can be decoded without an external schema. Optional fields are
encoded as empty byte strings.
"""
from __future__ import annotations

import json

import rlp
from rlp.exceptions import RLPException
from rlp.sedes import big_endian_int, binary
from web3 import Web3

from .errors import DeserializeError, SerializeError
from .invoice import Invoice, PaymentMethod, ZeroizedKey

RECORD_VERSION = 1


class InvoiceRecord(rlp.Serializable):
    fields = [
        ("version", big_endian_int),
        ("to", binary),
        ("wallet", binary),
        ("amount", big_endian_int),
        ("token_address", binary),
        ("message", binary),
        ("paid_at_timestamp", big_endian_int),
        ("expires", big_endian_int),
        ("receipt", binary),
        ("hash", binary),
    ]


def _address_bytes(address: str) -> bytes:
    return bytes.fromhex(Web3.to_checksum_address(address)[2:])


def _address_str(raw: bytes) -> str:
    if len(raw) != 20:
        raise DeserializeError(f"address field has {len(raw)} bytes")
    return Web3.to_checksum_address("0x" + raw.hex())


def encode_invoice(invoice: Invoice) -> bytes:
    try:
        record = InvoiceRecord(
            version=RECORD_VERSION,
            to=_address_bytes(invoice.to),
            wallet=bytes(invoice.wallet),
            amount=invoice.amount,
            token_address=_address_bytes(invoice.method.token_address) if invoice.method.token_address else b"",
            message=bytes(invoice.message),
            paid_at_timestamp=int(invoice.paid_at_timestamp),
            expires=int(invoice.expires),
            receipt=json.dumps(invoice.receipt, sort_keys=True).encode("utf-8") if invoice.receipt is not None else b"",
            hash=invoice.hash.encode("utf-8") if invoice.hash else b"",
        )
        return rlp.encode(record)
    except (RLPException, TypeError, ValueError) as exc:
        raise SerializeError(f"Could not serialize invoice: {exc}") from exc


def decode_invoice(data: bytes) -> Invoice:
    try:
        record = rlp.decode(bytes(data), sedes=InvoiceRecord)
    except RLPException as exc:
        raise DeserializeError(f"Could not deserialize binary data: {exc}") from exc

    if record.version != RECORD_VERSION:
        raise DeserializeError(f"Unsupported record version {record.version}")
    if not record.wallet:
        raise DeserializeError("Record carries no key material")

    try:
        receipt = json.loads(record.receipt.decode("utf-8")) if record.receipt else None
        tx_hash = record.hash.decode("utf-8") if record.hash else None
    except (UnicodeDecodeError, ValueError) as exc:
        raise DeserializeError(f"Corrupt receipt data: {exc}") from exc

    method = PaymentMethod(_address_str(record.token_address)) if record.token_address else PaymentMethod.native()
    try:
        return Invoice(
            to=_address_str(record.to),
            wallet=ZeroizedKey(record.wallet),
            amount=record.amount,
            method=method,
            message=record.message,
            paid_at_timestamp=record.paid_at_timestamp,
            expires=record.expires,
            receipt=receipt,
            hash=tx_hash,
        )
    except ValueError as exc:
        raise DeserializeError(str(exc)) from exc
