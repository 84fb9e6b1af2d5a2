from __future__ import annotations

from typing import Tuple

from eth_account import Account
from eth_utils import ValidationError

from .errors import TransactionBuildFailed
from .invoice import ZeroizedKey


def issue() -> Tuple[str, ZeroizedKey]:
    """Generate a single-use keypair for one invoice (os.urandom backed)."""
    acct = Account.create()
    return acct.address, ZeroizedKey(acct.key)


def restore(key: ZeroizedKey):
    """Rebuild the signing account for a stored key."""
    try:
        return Account.from_key(bytes(key))
    except (ValidationError, ValueError, TypeError) as exc:
        raise TransactionBuildFailed(f"Invalid invoice key: {exc}") from exc
