"""
Credential providers.

The engine never holds keys on its own behalf: callers hand a signer to each
operation. A signer exposes its address and signs chain-native transactions.
"""

import base64
from typing import Any, Protocol, runtime_checkable

from algosdk import account, error, mnemonic
from algosdk.atomic_transaction_composer import AccountTransactionSigner
from algosdk.transaction import SignedTransaction, Transaction
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from eth_account import Account
from eth_account.signers.local import LocalAccount


ALGORAND_SEED_LENGTH = 32
ALGORAND_SECRET_KEY_LENGTH = 64


@runtime_checkable
class Signer(Protocol):
    """Per-chain credential: sign(transaction) -> signed payload."""

    @property
    def address(self) -> str:
        ...

    def sign(self, transaction: Any) -> Any:
        ...


class EVMAccountSigner:
    """Signs EVM transaction dicts with a local eth_account key."""

    def __init__(self, private_key: str) -> None:
        self._account: LocalAccount = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    def sign(self, transaction: dict[str, Any]) -> bytes:
        """Sign a transaction dict and return the raw RLP bytes."""
        signed = self._account.sign_transaction(transaction)
        return bytes(signed.raw_transaction)

    def __repr__(self) -> str:
        return f"EVMAccountSigner({self.address})"


def _public_key(seed: bytes) -> bytes:
    key = Ed25519PrivateKey.from_private_bytes(seed)
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)


class AlgorandAccountSigner:
    """Signs Algorand transactions with an account key through algosdk."""

    def __init__(self, private_key: str) -> None:
        """
        Args:
            private_key: base64 of the 64-byte key (32-byte seed + public key),
                the format algosdk and goal export
        """
        raw = base64.b64decode(private_key)
        if len(raw) != ALGORAND_SECRET_KEY_LENGTH:
            raise ValueError("Algorand private key must decode to 64 bytes")
        if _public_key(raw[:ALGORAND_SEED_LENGTH]) != raw[ALGORAND_SEED_LENGTH:]:
            raise ValueError("Algorand private key does not match its public key")
        self._private_key = private_key
        self._address = account.address_from_private_key(private_key)
        self._signer = AccountTransactionSigner(private_key)

    @classmethod
    def from_mnemonic(cls, words: str) -> "AlgorandAccountSigner":
        """
        Build a signer from a 25-word account mnemonic.

        Raises:
            ValueError: If the mnemonic has the wrong length, an unknown
                word or a bad checksum
        """
        try:
            private_key = mnemonic.to_private_key(words)
        except (error.WrongMnemonicLengthError, error.WrongChecksumError) as exc:
            raise ValueError(f"Invalid Algorand mnemonic: {exc}") from exc
        return cls(private_key)

    @classmethod
    def from_seed(cls, seed: bytes) -> "AlgorandAccountSigner":
        """Build a signer from a raw 32-byte Ed25519 seed."""
        return cls(base64.b64encode(seed + _public_key(seed)).decode())

    @classmethod
    def generate(cls) -> "AlgorandAccountSigner":
        """Create a signer for a fresh random account."""
        private_key, _ = account.generate_account()
        return cls(private_key)

    @property
    def address(self) -> str:
        return self._address

    def to_mnemonic(self) -> str:
        return mnemonic.from_private_key(self._private_key)

    def sign(self, transaction: Transaction) -> SignedTransaction:
        return self._signer.sign_transactions([transaction], [0])[0]

    def __repr__(self) -> str:
        return f"AlgorandAccountSigner({self.address})"
