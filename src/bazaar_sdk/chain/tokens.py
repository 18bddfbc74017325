"""Token state reads: metadata, balances, allowances and kind detection."""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Mapping, Optional, Tuple

from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ..errors import ChainError
from ..orders.types import AssetKind, Party, ZERO_ADDRESS
from .abi import (
    ContractFunction,
    ERC20_ALLOWANCE,
    ERC20_BALANCE_OF,
    ERC20_DECIMALS,
    ERC20_SYMBOL,
    ERC721_GET_APPROVED,
    ERC721_OWNER_OF,
    ERC1155_BALANCE_OF,
    IS_APPROVED_FOR_ALL,
    SUPPORTS_INTERFACE,
)
from .rpc import RpcCall, RpcPool, RpcResult

logger = logging.getLogger(__name__)

DEFAULT_SYMBOL = "???"
DEFAULT_DECIMALS = 18


@dataclass
class TokenSnapshot:
    """ERC20 metadata and owner state, with the endpoint that served it."""

    token: str
    symbol: str
    decimals: int
    balance: Optional[int]
    """None when the balance read failed."""

    allowance: int
    endpoint: Optional[str]
    mode: str
    """"batch" or "sequential"."""


@dataclass
class LegState:
    """Owner state for one order leg, normalized across kinds."""

    symbol: str
    decimals: int
    balance: Optional[int]
    """Base units for ERC20/ERC1155; 1 if the owner holds an ERC721 id, else 0.
    None when the balance could not be read."""

    allowance: int
    """ERC20 allowance; for NFTs, the leg amount when approved, else 0."""

    approved_for_all: bool = False


def _decode(result: RpcResult, fn: ContractFunction, fallback: Any) -> Any:
    if not result.ok:
        return fallback
    try:
        return fn.decode_single(result.result)
    except (DecodingError, ValueError):
        return fallback


def _conflicts(
    known: Optional[Tuple[str, int]], symbol: str, decimals: int
) -> bool:
    if known is None:
        return False
    known_symbol, known_decimals = known
    return decimals != known_decimals or symbol.upper() != known_symbol.upper()


async def _read_sequential(
    pool: RpcPool, token: str, owner: str, spender: str
) -> TokenSnapshot:
    async def field(fn: ContractFunction, fallback: Any, *args: Any) -> Tuple[Any, Optional[str]]:
        try:
            response = await pool.eth_call(token, fn.encode(*args))
            return fn.decode_single(response.result), response.endpoint
        except (ChainError, DecodingError, ValueError) as e:
            logger.warning(f"{fn.name} read failed for {token}: {e}")
            return fallback, None

    symbol, endpoint = await field(ERC20_SYMBOL, DEFAULT_SYMBOL)
    decimals, _ = await field(ERC20_DECIMALS, DEFAULT_DECIMALS)
    balance, _ = await field(ERC20_BALANCE_OF, None, owner)
    allowance, _ = await field(ERC20_ALLOWANCE, 0, owner, spender)
    return TokenSnapshot(
        token=token,
        symbol=str(symbol),
        decimals=int(decimals),
        balance=None if balance is None else int(balance),
        allowance=int(allowance),
        endpoint=endpoint,
        mode="sequential",
    )


async def read_token(
    pool: RpcPool,
    token: str,
    owner: str,
    spender: str,
    known_tokens: Optional[Mapping[str, Tuple[str, int]]] = None,
) -> TokenSnapshot:
    """Read symbol, decimals, balance and allowance in one batch.

    A batch whose metadata contradicts a known token's constants is rejected
    and the fields are re-read one call at a time.

    Raises:
        ChainUnavailable: If no endpoint returned a well-formed batch
    """
    token = to_checksum_address(token)
    owner = to_checksum_address(owner)
    spender = to_checksum_address(spender)

    calls = [
        RpcCall("eth_call", [{"to": token, "data": fn.encode(*args)}, "latest"])
        for fn, args in (
            (ERC20_SYMBOL, ()),
            (ERC20_DECIMALS, ()),
            (ERC20_BALANCE_OF, (owner,)),
            (ERC20_ALLOWANCE, (owner, spender)),
        )
    ]
    response = await pool.batch(calls)
    results = response.results

    symbol = str(_decode(results[0], ERC20_SYMBOL, DEFAULT_SYMBOL))
    decimals = int(_decode(results[1], ERC20_DECIMALS, DEFAULT_DECIMALS))

    known = (known_tokens or {}).get(token.lower())
    if _conflicts(known, symbol, decimals):
        logger.warning(
            f"Batch from {response.endpoint} reported {symbol}/{decimals} for {token}, "
            f"expected {known}; re-reading sequentially"
        )
        return await _read_sequential(pool, token, owner, spender)

    balance = _decode(results[2], ERC20_BALANCE_OF, None)
    return TokenSnapshot(
        token=token,
        symbol=symbol,
        decimals=decimals,
        balance=None if balance is None else int(balance),
        allowance=int(_decode(results[3], ERC20_ALLOWANCE, 0)),
        endpoint=response.endpoint,
        mode="batch",
    )


async def is_approved_for_all(pool: RpcPool, token: str, owner: str, operator: str) -> bool:
    return bool(await pool.call(token, IS_APPROVED_FOR_ALL, owner, operator))


async def read_leg(
    pool: RpcPool,
    party: Party,
    owner: str,
    spender: str,
    known_tokens: Optional[Mapping[str, Tuple[str, int]]] = None,
) -> LegState:
    """Read what ``owner`` holds and has approved for one order leg."""
    if party.kind is AssetKind.ERC20:
        snapshot = await read_token(pool, party.token, owner, spender, known_tokens)
        return LegState(
            symbol=snapshot.symbol,
            decimals=snapshot.decimals,
            balance=snapshot.balance,
            allowance=snapshot.allowance,
        )

    async def symbol() -> str:
        try:
            return str(await pool.call(party.token, ERC20_SYMBOL))
        except (ChainError, DecodingError, ValueError):
            return "NFT"

    approved_for_all = await is_approved_for_all(pool, party.token, owner, spender)

    if party.kind is AssetKind.ERC721:
        holder, approved, label = await asyncio.gather(
            pool.call(party.token, ERC721_OWNER_OF, party.id),
            pool.call(party.token, ERC721_GET_APPROVED, party.id),
            symbol(),
        )
        owns = holder.lower() == owner.lower()
        token_approved = approved.lower() == spender.lower() and approved.lower() != ZERO_ADDRESS
        return LegState(
            symbol=label,
            decimals=0,
            balance=1 if owns else 0,
            allowance=party.amount if (approved_for_all or token_approved) else 0,
            approved_for_all=approved_for_all,
        )

    balance, label = await asyncio.gather(
        pool.call(party.token, ERC1155_BALANCE_OF, owner, party.id),
        symbol(),
    )
    return LegState(
        symbol=label,
        decimals=0,
        balance=int(balance),
        allowance=party.amount if approved_for_all else 0,
        approved_for_all=approved_for_all,
    )


async def detect_token_kind(pool: RpcPool, token: str) -> AssetKind:
    """Detect a token's kind via ERC-165; anything unrecognized is ERC20."""

    async def supports(kind: AssetKind) -> bool:
        try:
            return bool(
                await pool.call(token, SUPPORTS_INTERFACE, bytes.fromhex(kind.value[2:]))
            )
        except (ChainError, DecodingError, ValueError):
            return False

    is721, is1155 = await asyncio.gather(
        supports(AssetKind.ERC721), supports(AssetKind.ERC1155)
    )
    if is1155:
        return AssetKind.ERC1155
    if is721:
        return AssetKind.ERC721
    return AssetKind.ERC20


async def read_token_metadata(
    pool: RpcPool,
    token: str,
    known_tokens: Optional[Mapping[str, Tuple[str, int]]] = None,
) -> Tuple[str, int]:
    """Symbol and decimals of a token, with known tokens answered locally."""
    known = (known_tokens or {}).get(token.lower())
    if known is not None:
        return known

    async def field(fn: ContractFunction, fallback: Any) -> Any:
        try:
            return await pool.call(token, fn)
        except (ChainError, DecodingError, ValueError) as e:
            logger.warning(f"{fn.name} read failed for {token}: {e}")
            return fallback

    symbol, decimals = await asyncio.gather(
        field(ERC20_SYMBOL, DEFAULT_SYMBOL), field(ERC20_DECIMALS, DEFAULT_DECIMALS)
    )
    return str(symbol), int(decimals)
