"""ABI helpers for the contracts the SDK talks to.

Calls are encoded with eth_abi and a keccak selector, the same way order ids
and typed data are hashed elsewhere in the SDK.
"""

from dataclasses import dataclass
from typing import Any, Optional, Tuple

from eth_abi import decode, encode
from eth_abi.exceptions import DecodingError
from eth_utils import keccak, to_checksum_address

from ..orders.types import Order, Party

PARTY_TUPLE = "(address,address,bytes4,uint256,uint256)"
ORDER_TUPLE = (
    f"(uint256,uint256,{PARTY_TUPLE},{PARTY_TUPLE},address,uint256,uint8,bytes32,bytes32)"
)


@dataclass(frozen=True)
class ContractFunction:
    """A contract function with its input and output ABI types."""

    name: str
    inputs: Tuple[str, ...] = ()
    outputs: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return keccak(text=self.signature)[:4]

    def encode(self, *args: Any) -> str:
        """Calldata as a 0x-prefixed hex string."""
        return "0x" + (self.selector + encode(list(self.inputs), list(args))).hex()

    def decode_args(self, data: str) -> Tuple[Any, ...]:
        """Decode calldata produced by encode()."""
        raw = bytes.fromhex(data[2:] if data.startswith("0x") else data)
        if raw[:4] != self.selector:
            raise ValueError(f"Calldata is not a call to {self.signature}")
        return decode(list(self.inputs), raw[4:])

    def decode(self, result: str) -> Tuple[Any, ...]:
        """Decode an eth_call result."""
        raw = bytes.fromhex(result[2:] if result.startswith("0x") else result)
        if not raw and self.outputs:
            raise ValueError(f"Empty result for {self.signature}")
        return decode(list(self.outputs), raw)

    def decode_single(self, result: str) -> Any:
        return self.decode(result)[0]


# ERC20
ERC20_SYMBOL = ContractFunction("symbol", (), ("string",))
ERC20_DECIMALS = ContractFunction("decimals", (), ("uint8",))
ERC20_BALANCE_OF = ContractFunction("balanceOf", ("address",), ("uint256",))
ERC20_ALLOWANCE = ContractFunction("allowance", ("address", "address"), ("uint256",))
ERC20_APPROVE = ContractFunction("approve", ("address", "uint256"), ("bool",))

# Wrapped native token
WETH_DEPOSIT = ContractFunction("deposit")

# ERC165 / ERC721 / ERC1155
SUPPORTS_INTERFACE = ContractFunction("supportsInterface", ("bytes4",), ("bool",))
ERC721_OWNER_OF = ContractFunction("ownerOf", ("uint256",), ("address",))
ERC721_GET_APPROVED = ContractFunction("getApproved", ("uint256",), ("address",))
IS_APPROVED_FOR_ALL = ContractFunction("isApprovedForAll", ("address", "address"), ("bool",))
SET_APPROVAL_FOR_ALL = ContractFunction("setApprovalForAll", ("address", "bool"))
ERC1155_BALANCE_OF = ContractFunction("balanceOf", ("address", "uint256"), ("uint256",))

# Swap
SWAP_PROTOCOL_FEE = ContractFunction("protocolFee", (), ("uint256",))
SWAP_PROTOCOL_FEE_WALLET = ContractFunction("protocolFeeWallet", (), ("address",))
SWAP_REQUIRED_SENDER_KIND = ContractFunction("requiredSenderKind", (), ("bytes4",))
SWAP_NONCE_USED = ContractFunction("nonceUsed", ("address", "uint256"), ("bool",))
SWAP_CHECK = ContractFunction("check", ("address", ORDER_TUPLE), ("bytes32[]",))
SWAP_SWAP = ContractFunction("swap", ("address", "uint256", ORDER_TUPLE))

# Uniswap V3 QuoterV2
QUOTE_EXACT_INPUT_SINGLE = ContractFunction(
    "quoteExactInputSingle",
    ("(address,address,uint256,uint24,uint160)",),
    ("uint256", "uint160", "uint32", "uint256"),
)

# Custom errors raised by Swap, used to decode simulation reverts
SWAP_ERRORS = (
    "AffiliateAmountInvalid()",
    "AmountOrIDInvalid(string)",
    "ChainIdChanged()",
    "FeeInvalid(uint256)",
    "FeeWalletInvalid()",
    "NonceAlreadyUsed(uint256)",
    "NonceTooLow()",
    "OrderExpired()",
    "RoyaltyExceedsMax(uint256)",
    "SenderInvalid()",
    "SenderTokenInvalid()",
    "SignatoryInvalid()",
    "SignatoryUnauthorized()",
    "SignatureInvalid()",
    "TokenKindUnknown()",
    "TransferFailed(address,address)",
    "Unauthorized()",
)
_ERROR_SELECTORS = {keccak(text=sig)[:4]: sig for sig in SWAP_ERRORS}

# Error(string) and Panic(uint256)
_REVERT_STRING = keccak(text="Error(string)")[:4]
_PANIC = keccak(text="Panic(uint256)")[:4]

# Error labels from check() that concern approvals rather than balances
ALLOWANCE_ERRORS = ("SignerAllowanceLow", "SenderAllowanceLow", "AllowanceLow")


def _party_tuple(party: Party) -> Tuple[Any, ...]:
    return (
        to_checksum_address(party.wallet),
        to_checksum_address(party.token),
        bytes.fromhex(party.kind.value[2:]),
        party.id,
        party.amount,
    )


def order_to_tuple(order: Order) -> Tuple[Any, ...]:
    """Order as the ABI tuple expected by check() and swap()."""
    return (
        order.nonce,
        order.expiry,
        _party_tuple(order.signer),
        _party_tuple(order.sender),
        to_checksum_address(order.affiliate_wallet),
        order.affiliate_amount,
        order.v,
        bytes.fromhex(order.r[2:]),
        bytes.fromhex(order.s[2:]),
    )


def decode_bytes32_label(value: bytes) -> str:
    """Decode a bytes32 error label, falling back to hex."""
    stripped = bytes(value).rstrip(b"\x00")
    try:
        text = stripped.decode("utf-8").strip()
    except UnicodeDecodeError:
        return "0x" + bytes(value).hex()
    if not text.isprintable():
        return "0x" + bytes(value).hex()
    return text


def decode_revert_reason(data: Any) -> Optional[str]:
    """Decode revert data into a readable reason.

    Returns None when the data is absent or matches no known error.
    """
    if isinstance(data, dict):
        data = data.get("data")
    if not isinstance(data, str) or not data.startswith("0x") or len(data) < 10:
        return None
    try:
        raw = bytes.fromhex(data[2:])
    except ValueError:
        return None
    selector, body = raw[:4], raw[4:]
    if selector == _REVERT_STRING:
        try:
            return decode(["string"], body)[0]
        except DecodingError:
            return None
    if selector == _PANIC:
        try:
            return f"Panic({decode(['uint256'], body)[0]})"
        except DecodingError:
            return None
    signature = _ERROR_SELECTORS.get(selector)
    if signature is None:
        return None
    return signature.split("(", 1)[0]


def is_allowance_error(label: str) -> bool:
    return any(name.lower() in label.lower() for name in ALLOWANCE_ERRORS)
