"""Order Signing for the Bazaar Swap protocol.

Provides EIP-712 signing functions that work with various wallet types:
- eth_account.Account (direct signing with a private key)
- Any TypedDataSigner (agent wallets, connected browser wallets, etc.)
"""

import time
from typing import Any, Dict, Optional, Tuple, TypedDict

from eth_account import Account
from eth_account.messages import encode_typed_data
from eth_utils import is_address, to_checksum_address

from ..wallet import TypedDataSigner
from .types import ORDER_TYPES, AssetKind, Order, Party, ZERO_ADDRESS

# Swap protocol domain
DOMAIN_NAME = "SWAP"
DOMAIN_VERSION = "4.2"

# Expiry bounds
MIN_EXPIRY_SECONDS = 60  # 1 minute
MAX_EXPIRY_SECONDS = 30 * 86400  # 30 days


class EIP712Domain(TypedDict):
    """EIP-712 domain separator."""

    name: str
    version: str
    chainId: int
    verifyingContract: str


def create_eip712_domain(
    swap_contract: str,
    chain_id: int,
    name: str = DOMAIN_NAME,
    version: str = DOMAIN_VERSION,
) -> EIP712Domain:
    """Create EIP-712 domain for a Swap deployment.

    Args:
        swap_contract: Address of the settlement contract
        chain_id: Chain ID (8453 for Base)

    Returns:
        EIP-712 domain dictionary

    Raises:
        ValueError: If the contract address is invalid
    """
    if not is_address(swap_contract):
        raise ValueError(f"Invalid swap contract address: {swap_contract}")

    return {
        "name": name,
        "version": version,
        "chainId": chain_id,
        "verifyingContract": to_checksum_address(swap_contract),
    }


def create_party(
    wallet: str,
    token: str,
    amount: int,
    kind: AssetKind = AssetKind.ERC20,
    token_id: int = 0,
) -> Party:
    """Create a validated order leg.

    Raises:
        ValueError: If an address is invalid or the amounts do not fit the kind
    """
    if not is_address(wallet):
        raise ValueError(f"Invalid wallet address: {wallet}")
    if not is_address(token):
        raise ValueError(f"Invalid token address: {token}")
    if amount < 0 or token_id < 0:
        raise ValueError("Amount and id must be non-negative")
    if kind is AssetKind.ERC20 and token_id != 0:
        raise ValueError("ERC20 legs must have id 0")

    return Party(
        wallet=to_checksum_address(wallet),
        token=to_checksum_address(token),
        kind=kind,
        id=token_id,
        amount=amount,
    )


def create_order(
    swap_contract: str,
    chain_id: int,
    nonce: int,
    protocol_fee: int,
    signer: Party,
    sender: Party,
    expiry_seconds: int = 3600,
    expiry: Optional[int] = None,
) -> Order:
    """Create an unsigned order.

    Args:
        swap_contract: Settlement contract the order is bound to
        chain_id: Chain ID
        nonce: Signer nonce (must be unused)
        protocol_fee: Live protocol fee in basis points
        signer: Leg given by the signer
        sender: Leg given by the sender (zero wallet for an open order)
        expiry_seconds: Seconds from now until expiry (default: 1 hour)
        expiry: Absolute expiry, overrides expiry_seconds

    Returns:
        Order with an empty signature

    Raises:
        ValueError: If the contract address is invalid or expiry is out of bounds
    """
    if not is_address(swap_contract):
        raise ValueError(f"Invalid swap contract address: {swap_contract}")

    if expiry is None:
        if expiry_seconds < MIN_EXPIRY_SECONDS:
            raise ValueError(
                f"Expiry too short: {expiry_seconds}s. Minimum: {MIN_EXPIRY_SECONDS}s"
            )
        if expiry_seconds > MAX_EXPIRY_SECONDS:
            raise ValueError(
                f"Expiry too long: {expiry_seconds}s. Maximum: {MAX_EXPIRY_SECONDS}s"
            )
        expiry = int(time.time()) + expiry_seconds

    return Order(
        chain_id=chain_id,
        swap_contract=to_checksum_address(swap_contract),
        nonce=nonce,
        expiry=expiry,
        protocol_fee=protocol_fee,
        signer=signer,
        sender=sender,
        affiliate_wallet=ZERO_ADDRESS,
        affiliate_amount=0,
    )


def _party_message(party: Party) -> Dict[str, Any]:
    return {
        "wallet": party.wallet,
        "token": party.token,
        "kind": bytes.fromhex(party.kind.value[2:]),
        "id": party.id,
        "amount": party.amount,
    }


def order_message(order: Order) -> Dict[str, Any]:
    """EIP-712 message body for an order."""
    return {
        "nonce": order.nonce,
        "expiry": order.expiry,
        "protocolFee": order.protocol_fee,
        "signer": _party_message(order.signer),
        "sender": _party_message(order.sender),
        "affiliateWallet": order.affiliate_wallet,
        "affiliateAmount": order.affiliate_amount,
    }


def split_signature(signature: str) -> Tuple[int, str, str]:
    """Split a 65-byte signature into (v, r, s).

    Raises:
        ValueError: If the signature is not 65 bytes
    """
    raw = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
    if len(raw) != 65:
        raise ValueError(f"Invalid signature length: {len(raw)}")
    v = raw[64]
    if v < 27:
        v += 27
    return v, "0x" + raw[:32].hex(), "0x" + raw[32:64].hex()


def join_signature(order: Order) -> str:
    r = bytes.fromhex(order.r[2:])
    s = bytes.fromhex(order.s[2:])
    return "0x" + (r + s + bytes([order.v])).hex()


def sign_order(
    private_key: str,
    order: Order,
    domain_name: str = DOMAIN_NAME,
    domain_version: str = DOMAIN_VERSION,
) -> Order:
    """Sign an order with EIP-712 using a private key.

    Use this when you have direct access to a private key.

    Args:
        private_key: Private key (hex string with or without 0x prefix)
        order: Order to sign; its signer wallet must match the key

    Returns:
        The order with v, r and s filled in

    Raises:
        ValueError: If the key does not belong to the signer wallet
    """
    account = Account.from_key(private_key)
    if account.address.lower() != order.signer.wallet.lower():
        raise ValueError(
            f"Key for {account.address} cannot sign for {order.signer.wallet}"
        )

    domain = create_eip712_domain(
        order.swap_contract, order.chain_id, domain_name, domain_version
    )
    signed_message = account.sign_typed_data(
        domain_data=domain,
        message_types=ORDER_TYPES,
        message_data=order_message(order),
    )

    return order.with_signature(
        v=signed_message.v,
        r="0x" + signed_message.r.to_bytes(32, "big").hex(),
        s="0x" + signed_message.s.to_bytes(32, "big").hex(),
    )


async def sign_order_with_signer(
    signer: TypedDataSigner,
    order: Order,
    domain_name: str = DOMAIN_NAME,
    domain_version: str = DOMAIN_VERSION,
) -> Order:
    """Sign an order with EIP-712 using any compatible signer.

    Use this when working with agent wallets, connected browser wallets,
    or anything that implements the TypedDataSigner protocol.

    Args:
        signer: Signer that implements TypedDataSigner protocol
        order: Order to sign

    Returns:
        The order with v, r and s filled in
    """
    domain = create_eip712_domain(
        order.swap_contract, order.chain_id, domain_name, domain_version
    )

    signature = await signer.sign_typed_data(
        {
            "domain": domain,
            "types": ORDER_TYPES,
            "primaryType": "Order",
            "message": order_message(order),
        }
    )

    v, r, s = split_signature(signature)
    return order.with_signature(v=v, r=r, s=s)


def recover_order_signer(
    order: Order,
    domain_name: str = DOMAIN_NAME,
    domain_version: str = DOMAIN_VERSION,
) -> str:
    """Recover the address that signed an order."""
    domain = create_eip712_domain(
        order.swap_contract, order.chain_id, domain_name, domain_version
    )
    signable_message = encode_typed_data(
        domain_data=domain,
        message_types=ORDER_TYPES,
        message_data=order_message(order),
    )
    return Account.recover_message(
        signable_message,
        vrs=(order.v, int(order.r, 16), int(order.s, 16)),
    )


def verify_order_signature(
    order: Order,
    expected_signer: Optional[str] = None,
    domain_name: str = DOMAIN_NAME,
    domain_version: str = DOMAIN_VERSION,
) -> bool:
    """Verify an order signature locally (for EOA signatures).

    Note: This only works for EOA signatures. Contract wallets are verified
    on-chain by the settlement contract's check().

    Args:
        order: Signed order
        expected_signer: Expected signer address (default: order.signer.wallet)

    Returns:
        True if signature is valid and from the expected signer
    """
    expected = expected_signer or order.signer.wallet
    try:
        recovered = recover_order_signer(order, domain_name, domain_version)
    except Exception:
        return False
    return recovered.lower() == expected.lower()
