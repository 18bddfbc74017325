"""Taker agent: verify and settle a signed order.

Reads the order from a maker payload file, a compressed string, or free text
containing a ``GBZ1:`` line. Prints one JSON line per step and a final
summary with before/after balances.

Usage:
    SENDER_PRIVATE_KEY=0x... bazaar-taker --in order.json
    SENDER_PRIVATE_KEY=0x... bazaar-taker --order N4Igxg...
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv
from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ..config import ResolvedBazaarConfig, config_from_env, resolve_config
from ..errors import BazaarError, ChainError, MalformedPayload
from ..execution.machine import OrderExecution, SettlementResult
from ..logging_config import setup_logging
from ..orders.codec import decode_order, extract_compressed_order
from ..orders.types import AssetKind, Order, Party
from ..orders.utils import format_units
from ..chain.abi import ERC20_BALANCE_OF, SWAP_PROTOCOL_FEE_WALLET
from ..chain.rpc import RpcPool
from ..chain.tokens import read_leg, read_token_metadata
from ..chain.transactions import TransactionSender
from ..wallet import LocalAccountSigner
from .maker import order_from_payload

logger = logging.getLogger(__name__)


def load_order(
    payload: Optional[Mapping[str, Any]] = None,
    compressed: Optional[str] = None,
    text: Optional[str] = None,
    config: Optional[ResolvedBazaarConfig] = None,
) -> Order:
    """
    Load an order from whichever source was given.

    Raises:
        MalformedPayload: If no source holds a decodable order
    """
    if compressed:
        return decode_order(compressed)
    if text:
        found = extract_compressed_order(text)
        if not found:
            raise MalformedPayload("No GBZ1 order line found in text")
        return decode_order(found)
    if payload:
        return order_from_payload(payload, config)
    raise MalformedPayload("No order given")


async def _leg_balance(
    pool: RpcPool, config: ResolvedBazaarConfig, party: Party, owner: str
) -> Optional[int]:
    try:
        if party.kind is AssetKind.ERC20:
            return int(await pool.call(party.token, ERC20_BALANCE_OF, owner))
        leg = await read_leg(pool, party, owner, owner, config.known_tokens)
        return leg.balance
    except (ChainError, DecodingError, ValueError) as e:
        logger.warning(f"Balance read failed for {party.token}: {e}")
        return None


async def read_balances(
    pool: RpcPool,
    config: ResolvedBazaarConfig,
    order: Order,
    wallets: Mapping[str, str],
) -> Dict[str, Dict[str, Optional[str]]]:
    """Human-readable balances of both order tokens for each labelled wallet."""
    legs = (order.signer, order.sender)
    metas = await asyncio.gather(
        *(read_token_metadata(pool, leg.token, config.known_tokens) for leg in legs)
    )

    balances: Dict[str, Dict[str, Optional[str]]] = {}
    for label, wallet in wallets.items():
        amounts = await asyncio.gather(
            *(_leg_balance(pool, config, leg, wallet) for leg in legs)
        )
        entry: Dict[str, Optional[str]] = {"wallet": wallet}
        for leg, (symbol, decimals), amount in zip(legs, metas, amounts):
            decimals = decimals if leg.kind is AssetKind.ERC20 else 0
            entry[symbol] = None if amount is None else format_units(amount, decimals)
        balances[label] = entry
    return balances


async def settle_order(
    pool: RpcPool,
    config: ResolvedBazaarConfig,
    transactions: TransactionSender,
    order: Order,
    recipient: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Settle an order and summarize the outcome.

    Returns:
        Summary dict with tx hashes, amounts, fee and before/after balances

    Raises:
        BazaarError: Whatever the execution machine raised
    """
    wallets = {"sender": transactions.address, "signer": order.signer.wallet}
    before = await read_balances(pool, config, order, wallets)

    execution = OrderExecution(pool, config, transactions)
    settlement: SettlementResult = await execution.take(order, recipient=recipient)

    try:
        fee_wallet = to_checksum_address(
            await pool.call(order.swap_contract, SWAP_PROTOCOL_FEE_WALLET)
        )
    except (ChainError, DecodingError, ValueError) as e:
        logger.warning(f"protocolFeeWallet() unavailable: {e}")
        fee_wallet = None

    if fee_wallet:
        wallets["protocolFeeWallet"] = fee_wallet
    after = await read_balances(pool, config, order, wallets)

    check = settlement.check
    decimals = check.sender_leg.decimals
    return {
        "sender": transactions.address,
        "signer": order.signer.wallet,
        "recipient": settlement.recipient,
        "senderToken": order.sender.token,
        "signerToken": order.signer.token,
        "senderAmount": format_units(order.sender.amount, decimals),
        "feeAmount": format_units(check.fee_amount, decimals),
        "totalRequired": format_units(check.total_required, decimals),
        "protocolFeeWallet": fee_wallet,
        "swapAddress": order.swap_contract,
        "approveTx": settlement.approval_tx,
        "wrapTx": settlement.wrap_tx,
        "swapTx": settlement.tx_hash,
        "swapUrl": config.tx_url(settlement.tx_hash),
        "swapStatus": settlement.receipt.status,
        "gasUsed": settlement.receipt.gas_used,
        "gasLimit": settlement.gas.gas_limit,
        "estimatedGas": settlement.gas.estimated,
        "usedManualGasFallback": settlement.gas.used_fallback,
        "simulationInconclusive": settlement.simulation.inconclusive,
        "before": before,
        "after": after,
    }


def _parser() -> argparse.ArgumentParser:
    env = os.environ
    parser = argparse.ArgumentParser(description="Verify and settle a Bazaar swap order")
    source = parser.add_mutually_exclusive_group()
    source.add_argument("--in", dest="in_file", default=env.get("IN_FILE"))
    source.add_argument("--order", dest="compressed", default=env.get("COMPRESSED_ORDER"))
    source.add_argument("--text-file", dest="text_file", help="Post text with a GBZ1 line")
    parser.add_argument("--recipient", default=env.get("RECIPIENT"))
    parser.add_argument("--log-level", default=env.get("LOG_LEVEL"))
    return parser


async def _run(args: argparse.Namespace, private_key: str) -> Dict[str, Any]:
    config = resolve_config(config_from_env())

    payload = None
    text = None
    if args.in_file:
        with open(args.in_file) as f:
            payload = json.load(f)
    elif args.text_file:
        with open(args.text_file) as f:
            text = f.read()
    elif not args.compressed:
        with open("order.json") as f:
            payload = json.load(f)

    order = load_order(payload, args.compressed, text, config)
    wallet = LocalAccountSigner(private_key)

    async with RpcPool(config.rpc_urls, timeout=config.request_timeout_seconds) as pool:
        transactions = TransactionSender.from_config(pool, wallet, wallet.address, config)
        return await settle_order(pool, config, transactions, order, args.recipient)


def main(argv: Optional[list] = None) -> int:
    load_dotenv()
    args = _parser().parse_args(argv)
    setup_logging(args.log_level)

    private_key = os.environ.get("SENDER_PRIVATE_KEY")
    if not private_key:
        print("Missing SENDER_PRIVATE_KEY", file=sys.stderr)
        return 1

    try:
        summary = asyncio.run(_run(args, private_key))
    except (BazaarError, ValueError, OSError) as e:
        logger.error(f"Taker failed: {e}")
        print(json.dumps({"step": "failed", "error": str(e), "type": type(e).__name__}))
        return 1

    for step, key in (("approve", "approveTx"), ("wrap", "wrapTx"), ("swap", "swapTx")):
        if summary.get(key):
            print(json.dumps({"step": step, "tx": summary[key]}))
    print(json.dumps(summary, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
