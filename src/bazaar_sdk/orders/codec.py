"""Compressed wire format for Bazaar orders.

An order travels as a comma-joined positional field list compressed with
lz-string's URI-safe alphabet. Field order is fixed:

    chainId, swapContract, nonce, expiry,
    signerWallet, signerToken, signerAmount, protocolFee,
    senderWallet, senderToken, senderAmount, v, r, s

followed, for non-ERC20 legs, by signerKind, signerId, senderKind, senderId.
"""

import re
from typing import Any, Dict, List, Mapping, Optional
from urllib.parse import quote

from eth_utils import is_address, to_checksum_address
from lzstring import LZString

from ..errors import MalformedPayload
from .signing import split_signature
from .types import AssetKind, Order, Party, ZERO_ADDRESS

# Marker that introduces a compressed order on its own line in a post
PAYLOAD_MARKER = "GBZ1"

BASE_FIELD_COUNT = 14
EXTENDED_FIELD_COUNT = 18

_PAYLOAD_LINE = re.compile(
    rf"^{PAYLOAD_MARKER}:([A-Za-z0-9+\-$]+)\r?$",
    re.MULTILINE,
)

_lz = LZString()


def _is_plain(party: Party) -> bool:
    return party.kind is AssetKind.ERC20 and party.id == 0


def order_to_fields(order: Order) -> List[str]:
    """Positional string fields for an order."""
    fields = [
        str(order.chain_id),
        order.swap_contract,
        str(order.nonce),
        str(order.expiry),
        order.signer.wallet,
        order.signer.token,
        str(order.signer.amount),
        str(order.protocol_fee),
        order.sender.wallet,
        order.sender.token,
        str(order.sender.amount),
        str(order.v),
        order.r,
        order.s,
    ]
    if not (_is_plain(order.signer) and _is_plain(order.sender)):
        fields += [
            order.signer.kind.value,
            str(order.signer.id),
            order.sender.kind.value,
            str(order.sender.id),
        ]
    return fields


def encode_order(order: Order) -> str:
    """Compress an order into its URL-safe wire string.

    Raises:
        ValueError: If the order carries an affiliate, which the format cannot hold
    """
    if order.affiliate_amount or order.affiliate_wallet.lower() != ZERO_ADDRESS:
        raise ValueError("Orders with an affiliate cannot be compressed")
    for value in order_to_fields(order):
        if "," in value:
            raise ValueError(f"Field contains a separator: {value}")
    return _lz.compressToEncodedURIComponent(",".join(order_to_fields(order)))


def _address(value: str, name: str) -> str:
    if not is_address(value):
        raise MalformedPayload(f"Invalid {name}: {value}")
    return to_checksum_address(value)


def _integer(value: str, name: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise MalformedPayload(f"Invalid {name}: {value}")
    if number < 0:
        raise MalformedPayload(f"Invalid {name}: {value}")
    return number


def _bytes32(value: str, name: str) -> str:
    if not re.fullmatch(r"0x[0-9a-fA-F]{64}", value):
        raise MalformedPayload(f"Invalid {name}: {value}")
    return value.lower()


def _kind(value: str, name: str) -> AssetKind:
    try:
        return AssetKind.parse(value)
    except ValueError:
        raise MalformedPayload(f"Invalid {name}: {value}")


def decode_order(compressed: str) -> Order:
    """Decompress a wire string back into an order.

    Raises:
        MalformedPayload: If decompression fails or the field count is wrong
    """
    try:
        csv = _lz.decompressFromEncodedURIComponent(compressed.strip())
    except Exception as e:
        raise MalformedPayload(f"Invalid compressed order: {e}") from e
    if not csv:
        raise MalformedPayload("Invalid compressed order")

    s = csv.split(",")
    if len(s) not in (BASE_FIELD_COUNT, EXTENDED_FIELD_COUNT):
        raise MalformedPayload(
            f"Malformed order payload: expected {BASE_FIELD_COUNT} or "
            f"{EXTENDED_FIELD_COUNT} fields, got {len(s)}"
        )

    signer_kind, signer_id = AssetKind.ERC20, 0
    sender_kind, sender_id = AssetKind.ERC20, 0
    if len(s) == EXTENDED_FIELD_COUNT:
        signer_kind = _kind(s[14], "signerKind")
        signer_id = _integer(s[15], "signerId")
        sender_kind = _kind(s[16], "senderKind")
        sender_id = _integer(s[17], "senderId")

    return Order(
        chain_id=_integer(s[0], "chainId"),
        swap_contract=_address(s[1], "swapContract"),
        nonce=_integer(s[2], "nonce"),
        expiry=_integer(s[3], "expiry"),
        protocol_fee=_integer(s[7], "protocolFee"),
        signer=Party(
            wallet=_address(s[4], "signerWallet"),
            token=_address(s[5], "signerToken"),
            kind=signer_kind,
            id=signer_id,
            amount=_integer(s[6], "signerAmount"),
        ),
        sender=Party(
            wallet=_address(s[8], "senderWallet"),
            token=_address(s[9], "senderToken"),
            kind=sender_kind,
            id=sender_id,
            amount=_integer(s[10], "senderAmount"),
        ),
        v=_integer(s[11], "v"),
        r=_bytes32(s[12], "r"),
        s=_bytes32(s[13], "s"),
    )


def extract_compressed_order(text: str) -> Optional[str]:
    """Find a ``GBZ1:<compressed>`` line in free-form text.

    The marker must start a line and the encoded value must be the rest of
    that line.
    """
    match = _PAYLOAD_LINE.search(text or "")
    return match.group(1) if match else None


def payload_line(compressed: str) -> str:
    return f"{PAYLOAD_MARKER}:{compressed}"


def order_link(base: str, compressed: str) -> str:
    """Link to an order under a web base.

    ``/#/order/`` style bases get the order appended; other bases get it as an
    ``order`` query parameter.
    """
    encoded = quote(compressed, safe="")
    if "/#/order/" in base:
        return f"{base}{encoded}"
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}order={encoded}"


def _party_to_json(party: Party) -> Dict[str, str]:
    return {
        "wallet": party.wallet,
        "token": party.token,
        "kind": party.kind.value,
        "id": str(party.id),
        "amount": str(party.amount),
    }


def order_to_json(order: Order) -> Dict[str, Any]:
    """Typed-data message of an order with integers as strings.

    Chain id, settlement contract and signature travel beside it.
    """
    return {
        "nonce": str(order.nonce),
        "expiry": str(order.expiry),
        "protocolFee": str(order.protocol_fee),
        "signer": _party_to_json(order.signer),
        "sender": _party_to_json(order.sender),
        "affiliateWallet": order.affiliate_wallet,
        "affiliateAmount": str(order.affiliate_amount),
    }


def _party_from_json(data: Mapping[str, Any], name: str) -> Party:
    try:
        return Party(
            wallet=_address(str(data.get("wallet") or ZERO_ADDRESS), f"{name}.wallet"),
            token=_address(str(data["token"]), f"{name}.token"),
            kind=_kind(str(data.get("kind") or AssetKind.ERC20.value), f"{name}.kind"),
            id=_integer(str(data.get("id", 0)), f"{name}.id"),
            amount=_integer(str(data["amount"]), f"{name}.amount"),
        )
    except (KeyError, TypeError, AttributeError) as e:
        raise MalformedPayload(f"Invalid {name} leg: {e}") from e


def order_from_json(
    data: Mapping[str, Any],
    chain_id: int,
    swap_contract: str,
    signature: Optional[str] = None,
) -> Order:
    """Rebuild an order from its JSON message.

    Raises:
        MalformedPayload: If a field is missing or invalid
    """
    try:
        order = Order(
            chain_id=chain_id,
            swap_contract=_address(swap_contract, "swapContract"),
            nonce=_integer(str(data["nonce"]), "nonce"),
            expiry=_integer(str(data["expiry"]), "expiry"),
            protocol_fee=_integer(str(data["protocolFee"]), "protocolFee"),
            signer=_party_from_json(data["signer"], "signer"),
            sender=_party_from_json(data["sender"], "sender"),
            affiliate_wallet=_address(
                str(data.get("affiliateWallet") or ZERO_ADDRESS), "affiliateWallet"
            ),
            affiliate_amount=_integer(str(data.get("affiliateAmount", 0)), "affiliateAmount"),
        )
    except (KeyError, TypeError) as e:
        raise MalformedPayload(f"Invalid order: {e}") from e

    if signature:
        try:
            v, r, s = split_signature(signature)
        except ValueError as e:
            raise MalformedPayload(f"Invalid signature: {e}") from e
        order = order.with_signature(v=v, r=r, s=s)
    return order
