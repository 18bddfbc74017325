"""Wallet capabilities used by the SDK.

Key management stays outside the SDK: callers hand in anything that can
sign typed data and, for settlement, transactions.
"""

from typing import Any, Dict, Protocol

from eth_account import Account


class TypedDataSigner(Protocol):
    """Protocol for signers that can sign EIP-712 typed data."""

    async def get_address(self) -> str:
        """Get the signer's address."""
        ...

    async def sign_typed_data(self, params: Dict[str, Any]) -> str:
        """Sign EIP-712 typed data.

        Args:
            params: Dict with domain, types, primaryType, and message

        Returns:
            Signature as hex string
        """
        ...


class TransactionSigner(TypedDataSigner, Protocol):
    """Protocol for signers that can also sign raw transactions."""

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        """Sign a transaction dict and return the raw transaction as hex."""
        ...


class LocalAccountSigner:
    """TransactionSigner backed by an in-process eth_account key."""

    def __init__(self, private_key: str):
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def get_address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, params: Dict[str, Any]) -> str:
        signed = self._account.sign_typed_data(
            domain_data=params["domain"],
            message_types=params["types"],
            message_data=params["message"],
        )
        return "0x" + bytes(signed.signature).hex()

    async def sign_transaction(self, tx: Dict[str, Any]) -> str:
        signed = self._account.sign_transaction(tx)
        return "0x" + bytes(signed.raw_transaction).hex()
