"""Maker agent: create, approve, sign and write an order payload.

Signing key material comes from the environment and never touches the
payload file.

Usage:
    SIGNER_PRIVATE_KEY=0x... bazaar-maker \\
        --signer-token 0x... --signer-amount 1.5 \\
        --sender-token 0x... --sender-amount 300 --open
"""

import argparse
import asyncio
import json
import logging
import os
import sys
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from ..config import (
    CHAIN_ID_BASE,
    ResolvedBazaarConfig,
    config_from_env,
    resolve_config,
    resolve_swap_contract,
)
from ..errors import BazaarError, ExecutionError, MalformedPayload
from ..execution.machine import MakeResult, OrderExecution
from ..logging_config import setup_logging
from ..orders.codec import decode_order, order_from_json, order_to_json
from ..orders.signing import create_order, create_party, join_signature
from ..orders.types import AssetKind, Order, ZERO_ADDRESS
from ..orders.utils import generate_nonce, parse_units
from ..chain.abi import SWAP_PROTOCOL_FEE, SWAP_REQUIRED_SENDER_KIND
from ..chain.rpc import RpcPool
from ..chain.tokens import detect_token_kind, read_token_metadata
from ..chain.transactions import TransactionSender
from ..wallet import LocalAccountSigner

logger = logging.getLogger(__name__)

PAYLOAD_NOTE = "Send this JSON to the sender agent. Do not include private keys."


@dataclass
class MakerOptions:
    """What the maker wants to trade."""

    signer_token: str
    signer_amount: str
    """Human-readable amount for ERC20; quantity for ERC1155; ignored for ERC721."""

    sender_token: str
    sender_amount: str
    sender_wallet: Optional[str] = None
    """Restrict the order to this sender; None for an open order."""

    signer_id: int = 0
    sender_id: int = 0
    signer_kind: Optional[AssetKind] = None
    sender_kind: Optional[AssetKind] = None
    nonce: Optional[int] = None
    expiry: Optional[int] = None
    expiry_seconds: int = 3600


def _leg_amount(kind: AssetKind, amount: str, decimals: int) -> int:
    if kind is AssetKind.ERC20:
        return parse_units(amount, decimals)
    if kind is AssetKind.ERC721:
        return 1
    return int(amount)


def build_maker_payload(
    result: MakeResult,
    config: ResolvedBazaarConfig,
    required_sender_kind: AssetKind,
    signer_meta: Tuple[str, int],
    sender_meta: Tuple[str, int],
    created_at: Optional[str] = None,
) -> Dict[str, Any]:
    """Payload file contents for a signed order."""
    order = result.order
    created_at = created_at or datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return {
        "meta": {
            "chainId": order.chain_id,
            "rpc": config.rpc_urls[0],
            "verifyingContract": order.swap_contract,
            "requiredSenderKind": required_sender_kind.value,
            "protocolFeeBps": str(order.protocol_fee),
            "createdAt": created_at,
            "signerToken": {
                "address": order.signer.token,
                "symbol": signer_meta[0],
                "decimals": signer_meta[1],
            },
            "senderToken": {
                "address": order.sender.token,
                "symbol": sender_meta[0],
                "decimals": sender_meta[1],
            },
            "note": PAYLOAD_NOTE,
        },
        "order": order_to_json(order),
        "signature": join_signature(order),
        "compressedOrder": result.compressed,
        "orderPath": f"/order/{result.compressed}",
    }


def order_from_payload(
    payload: Mapping[str, Any], config: Optional[ResolvedBazaarConfig] = None
) -> Order:
    """
    Rebuild the signed order from a payload file.

    The settlement contract is the explicit override, then the payload's
    verifying contract, then the default for the sender kind.

    Raises:
        MalformedPayload: If the payload holds no usable order
    """
    meta = payload.get("meta") or {}
    if payload.get("order"):
        chain_id = int(meta.get("chainId") or CHAIN_ID_BASE)
        try:
            sender_kind = AssetKind.parse(payload["order"]["sender"].get("kind") or "erc20")
        except (KeyError, TypeError, AttributeError, ValueError) as e:
            raise MalformedPayload(f"Invalid sender leg: {e}") from e
        recorded = meta.get("verifyingContract") or meta.get("swapContract")
        if config is not None:
            swap = resolve_swap_contract(config, sender_kind, recorded)
        elif recorded:
            swap = recorded
        else:
            swap = resolve_swap_contract(resolve_config(), sender_kind)
        return order_from_json(payload["order"], chain_id, swap, payload.get("signature"))
    if payload.get("compressedOrder"):
        return decode_order(payload["compressedOrder"])
    raise MalformedPayload("Payload has neither an order nor a compressed order")


async def create_signed_order(
    pool: RpcPool,
    config: ResolvedBazaarConfig,
    transactions: TransactionSender,
    options: MakerOptions,
    now: Optional[int] = None,
) -> Tuple[MakeResult, Dict[str, Any]]:
    """
    Resolve kinds and the settlement contract, then approve, sign and compress.

    Returns:
        (MakeResult, payload file contents)

    Raises:
        ExecutionError: If the contract does not accept the sender kind
        OrderAlreadyTaken: If an explicit nonce is already consumed
    """
    signer_kind, sender_kind = await asyncio.gather(
        _kind(pool, options.signer_token, options.signer_kind),
        _kind(pool, options.sender_token, options.sender_kind),
    )
    swap = resolve_swap_contract(config, sender_kind)

    protocol_fee, required_raw = await asyncio.gather(
        pool.call(swap, SWAP_PROTOCOL_FEE),
        pool.call(swap, SWAP_REQUIRED_SENDER_KIND),
    )
    required_kind = AssetKind.parse("0x" + bytes(required_raw).hex())
    if required_kind is not sender_kind:
        raise ExecutionError(
            f"{swap} requires {required_kind.name} sender legs, got {sender_kind.name}"
        )

    signer_meta, sender_meta = await asyncio.gather(
        _metadata(pool, config, options.signer_token, signer_kind),
        _metadata(pool, config, options.sender_token, sender_kind),
    )

    address = transactions.address
    signer = create_party(
        address,
        options.signer_token,
        _leg_amount(signer_kind, options.signer_amount, signer_meta[1]),
        kind=signer_kind,
        token_id=options.signer_id,
    )
    sender = create_party(
        options.sender_wallet or ZERO_ADDRESS,
        options.sender_token,
        _leg_amount(sender_kind, options.sender_amount, sender_meta[1]),
        kind=sender_kind,
        token_id=options.sender_id,
    )

    now = int(time.time()) if now is None else now
    order = create_order(
        swap,
        config.chain_id,
        options.nonce or generate_nonce(now),
        int(protocol_fee),
        signer,
        sender,
        expiry=options.expiry or now + options.expiry_seconds,
    )

    execution = OrderExecution(pool, config, transactions)
    result = await execution.make(order)
    payload = build_maker_payload(result, config, required_kind, signer_meta, sender_meta)
    return result, payload


async def _kind(pool: RpcPool, token: str, explicit: Optional[AssetKind]) -> AssetKind:
    if explicit is not None:
        return explicit
    return await detect_token_kind(pool, token)


async def _metadata(
    pool: RpcPool, config: ResolvedBazaarConfig, token: str, kind: AssetKind
) -> Tuple[str, int]:
    symbol, decimals = await read_token_metadata(pool, token, config.known_tokens)
    return symbol, decimals if kind is AssetKind.ERC20 else 0


def _parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(description="Create and sign a Bazaar swap order")
    parser.add_argument("--signer-token", default=env.get("SIGNER_TOKEN"))
    parser.add_argument("--signer-amount", default=env.get("SIGNER_AMOUNT"))
    parser.add_argument("--signer-id", type=int, default=int(env.get("SIGNER_ID", "0")))
    parser.add_argument("--sender-token", default=env.get("SENDER_TOKEN"))
    parser.add_argument("--sender-amount", default=env.get("SENDER_AMOUNT"))
    parser.add_argument("--sender-id", type=int, default=int(env.get("SENDER_ID", "0")))
    parser.add_argument("--sender-wallet", default=env.get("SENDER_WALLET"))
    parser.add_argument(
        "--open",
        action="store_true",
        default=env.get("OPEN_ORDER", "").lower() in ("1", "true"),
        help="Let any wallet settle the order",
    )
    parser.add_argument("--nonce", type=int, default=int(env.get("NONCE", "0")) or None)
    parser.add_argument("--expiry", type=int, default=int(env.get("EXPIRY", "0")) or None)
    parser.add_argument(
        "--expiry-seconds", type=int, default=int(env.get("EXPIRY_SECONDS", "3600"))
    )
    parser.add_argument("--out", default=env.get("OUT_FILE", "order.json"))
    parser.add_argument("--log-level", default=env.get("LOG_LEVEL"))
    return parser


async def _run(args: argparse.Namespace, private_key: str) -> Dict[str, Any]:
    config = resolve_config(config_from_env())
    wallet = LocalAccountSigner(private_key)

    async with RpcPool(config.rpc_urls, timeout=config.request_timeout_seconds) as pool:
        transactions = TransactionSender.from_config(pool, wallet, wallet.address, config)
        options = MakerOptions(
            signer_token=args.signer_token,
            signer_amount=args.signer_amount,
            sender_token=args.sender_token,
            sender_amount=args.sender_amount,
            sender_wallet=None if args.open else args.sender_wallet,
            signer_id=args.signer_id,
            sender_id=args.sender_id,
            nonce=args.nonce,
            expiry=args.expiry,
            expiry_seconds=args.expiry_seconds,
        )
        result, payload = await create_signed_order(pool, config, transactions, options)

    for step, tx_hash in (("approve", result.approval_tx), ("wrap", result.wrap_tx)):
        if tx_hash:
            print(json.dumps({"step": step, "tx": tx_hash, "url": config.tx_url(tx_hash)}))

    with open(args.out, "w") as f:
        json.dump(payload, f, indent=2)

    order = result.order
    return {
        "step": "signed",
        "wrote": args.out,
        "compressedOrder": result.compressed,
        "signer": order.signer.wallet,
        "senderWallet": order.sender.wallet,
        "openOrder": order.is_open,
        "nonce": str(order.nonce),
        "expiry": order.expiry,
        "swapAddress": order.swap_contract,
    }


def main(argv: Optional[list] = None) -> int:
    load_dotenv()
    args = _parser().parse_args(argv)
    setup_logging(args.log_level)

    private_key = os.environ.get("SIGNER_PRIVATE_KEY")
    if not private_key:
        print("Missing SIGNER_PRIVATE_KEY", file=sys.stderr)
        return 1

    required = ("signer_token", "signer_amount", "sender_token", "sender_amount")
    missing = [name for name in required if not getattr(args, name)]
    if missing or (not args.open and not args.sender_wallet):
        print(
            "Missing one of --signer-token, --signer-amount, --sender-token, --sender-amount. "
            "Also need --sender-wallet unless --open",
            file=sys.stderr,
        )
        return 1

    try:
        summary = asyncio.run(_run(args, private_key))
    except (BazaarError, ValueError) as e:
        logger.error(f"Maker failed: {e}")
        print(json.dumps({"step": "failed", "error": str(e)}))
        return 1

    print(json.dumps(summary))
    return 0


if __name__ == "__main__":
    sys.exit(main())
