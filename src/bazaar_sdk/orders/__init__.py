"""Bazaar Order Module.

Order types, the compressed wire format, EIP-712 signing and the fee and
amount arithmetic shared by every driver.

Example usage:
    ```python
    from bazaar_sdk.orders import (
        create_party,
        create_order,
        sign_order,
        encode_order,
        decode_order,
    )

    signer = create_party("0xMaker...", TOKEN_A, 1_500_000_000_000_000_000)
    sender = create_party(ZERO_ADDRESS, TOKEN_B, 300_000_000)
    order = create_order(SWAP, 8453, nonce, 50, signer, sender)

    signed = sign_order(private_key, order)
    compressed = encode_order(signed)
    assert decode_order(compressed) == signed
    ```
"""

from .types import (
    AssetKind,
    Party,
    Order,
    ORDER_TYPES,
    ZERO_ADDRESS,
    ZERO_BYTES32,
)
from .codec import (
    PAYLOAD_MARKER,
    encode_order,
    decode_order,
    extract_compressed_order,
    payload_line,
    order_link,
    order_to_json,
    order_from_json,
)
from .signing import (
    DOMAIN_NAME,
    DOMAIN_VERSION,
    create_eip712_domain,
    create_party,
    create_order,
    sign_order,
    sign_order_with_signer,
    recover_order_signer,
    verify_order_signature,
    split_signature,
    join_signature,
)
from .utils import (
    BPS_DENOMINATOR,
    calculate_fee,
    required_total,
    sender_total,
    parse_units,
    format_units,
    format_bps,
    generate_nonce,
    describe_amount,
    usd_value,
    short_address,
    compact_amount,
    format_token_amount,
    format_token_amount_parts,
)

__all__ = [
    # Types
    "AssetKind",
    "Party",
    "Order",
    "ORDER_TYPES",
    "ZERO_ADDRESS",
    "ZERO_BYTES32",
    # Codec
    "PAYLOAD_MARKER",
    "encode_order",
    "decode_order",
    "extract_compressed_order",
    "payload_line",
    "order_link",
    "order_to_json",
    "order_from_json",
    # Signing
    "DOMAIN_NAME",
    "DOMAIN_VERSION",
    "create_eip712_domain",
    "create_party",
    "create_order",
    "sign_order",
    "sign_order_with_signer",
    "recover_order_signer",
    "verify_order_signature",
    "split_signature",
    "join_signature",
    # Utils
    "BPS_DENOMINATOR",
    "calculate_fee",
    "required_total",
    "sender_total",
    "parse_units",
    "format_units",
    "format_bps",
    "generate_nonce",
    "describe_amount",
    "usd_value",
    "short_address",
    "compact_amount",
    "format_token_amount",
    "format_token_amount_parts",
]
