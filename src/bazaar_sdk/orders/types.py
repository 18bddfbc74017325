"""Order Types for the Bazaar Swap protocol.

User-facing types for order creation, signing and settlement.
"""

from dataclasses import dataclass, replace
from enum import Enum

# Zero address (open orders, no affiliate)
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

# Zero bytes32 (unsigned orders)
ZERO_BYTES32 = "0x" + "00" * 32


class AssetKind(str, Enum):
    """Asset class of an order leg, identified by its ERC-165 interface id."""

    ERC20 = "0x36372b07"
    ERC721 = "0x80ac58cd"
    ERC1155 = "0xd9b67a26"

    @property
    def is_nft(self) -> bool:
        return self is not AssetKind.ERC20

    @classmethod
    def parse(cls, value: str) -> "AssetKind":
        """Resolve a kind from its selector or its name (case-insensitive)."""
        text = str(value).strip().lower()
        for kind in cls:
            if text in (kind.value, kind.name.lower()):
                return kind
        raise ValueError(f"Unknown asset kind: {value}")


@dataclass(frozen=True)
class Party:
    """One leg of an order."""

    wallet: str
    """Wallet giving this leg (zero address for an open sender)."""

    token: str
    """Token contract address."""

    kind: AssetKind
    """Asset class of the token."""

    id: int
    """Token identifier (always 0 for ERC20)."""

    amount: int
    """Quantity in token base units (conventionally 1 for ERC721)."""


@dataclass(frozen=True)
class Order:
    """A signed, single-intent exchange of two legs.

    ``chain_id`` and ``swap_contract`` are part of the EIP-712 domain and bind
    the signature to exactly one settlement deployment.
    """

    chain_id: int
    swap_contract: str
    nonce: int
    expiry: int
    """Unix seconds; unusable once now >= expiry."""

    protocol_fee: int
    """Fee in basis points recorded at signing time."""

    signer: Party
    sender: Party
    affiliate_wallet: str = ZERO_ADDRESS
    affiliate_amount: int = 0
    v: int = 0
    r: str = ZERO_BYTES32
    s: str = ZERO_BYTES32

    @property
    def is_open(self) -> bool:
        """True when any wallet may act as sender."""
        return self.sender.wallet.lower() == ZERO_ADDRESS

    @property
    def is_signed(self) -> bool:
        return self.v != 0 and self.r != ZERO_BYTES32

    def with_signature(self, v: int, r: str, s: str) -> "Order":
        return replace(self, v=v, r=r, s=s)


# EIP-712 types for Swap orders
ORDER_TYPES = {
    "Order": [
        {"name": "nonce", "type": "uint256"},
        {"name": "expiry", "type": "uint256"},
        {"name": "protocolFee", "type": "uint256"},
        {"name": "signer", "type": "Party"},
        {"name": "sender", "type": "Party"},
        {"name": "affiliateWallet", "type": "address"},
        {"name": "affiliateAmount", "type": "uint256"},
    ],
    "Party": [
        {"name": "wallet", "type": "address"},
        {"name": "token", "type": "address"},
        {"name": "kind", "type": "bytes4"},
        {"name": "id", "type": "uint256"},
        {"name": "amount", "type": "uint256"},
    ],
}
