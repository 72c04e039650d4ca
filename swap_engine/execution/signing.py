from __future__ import annotations

import base64
import binascii
import contextlib
import json

from solders.keypair import Keypair
from solders.transaction import VersionedTransaction


def parse_private_key(raw: str) -> Keypair:
    value = raw.strip()

    if value.startswith("["):
        arr = json.loads(value)
        if not isinstance(arr, list):
            raise ValueError("PRIVATE_KEY JSON must be an integer array.")
        return Keypair.from_bytes(bytes(arr))

    with contextlib.suppress(Exception):
        return Keypair.from_base58_string(value)

    raise ValueError("Unsupported PRIVATE_KEY format.")


def decode_transaction(encoded: str) -> VersionedTransaction:
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as error:
        raise ValueError(f"Transaction is not valid base64: {error}") from error
    return VersionedTransaction.from_bytes(raw)


def transaction_signature(encoded: str) -> str | None:
    """First signature of a signed transaction, or None if it cannot be decoded."""
    try:
        transaction = decode_transaction(encoded)
    except Exception:
        return None
    if not transaction.signatures:
        return None
    return str(transaction.signatures[0])


class KeypairSigner:
    """Signs aggregator-built transactions with a local keypair."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_private_key(cls, raw: str) -> "KeypairSigner":
        return cls(parse_private_key(raw))

    @property
    def public_key(self) -> str:
        return str(self._keypair.pubkey())

    async def sign(self, unsigned_transaction: str) -> str:
        unsigned = decode_transaction(unsigned_transaction)
        signed = VersionedTransaction(unsigned.message, [self._keypair])
        return base64.b64encode(bytes(signed)).decode("ascii")
