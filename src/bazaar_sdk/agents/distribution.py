"""Distribution payloads for signed orders.

Turns a maker payload file into a short post: human-readable terms followed
by the ``GBZ1:<compressed>`` line any recipient can decode.

Usage:
    bazaar-cast --in order.json [--out cast.json]
"""

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from dotenv import load_dotenv

from ..config import MINIAPP_BASE, ORDER_WEB_BASE
from ..orders.codec import order_link, payload_line
from ..orders.types import Order
from ..orders.utils import calculate_fee, format_units, short_address
from .maker import order_from_payload


def _token_meta(meta: Mapping[str, Any], fallback_symbol: str) -> Dict[str, Any]:
    symbol = meta.get("symbol") or fallback_symbol
    decimals = meta.get("decimals")
    return {"symbol": symbol, "decimals": decimals if isinstance(decimals, int) else 18}


def build_cast_payload(
    order: Order,
    compressed: str,
    signer_token: Optional[Mapping[str, Any]] = None,
    sender_token: Optional[Mapping[str, Any]] = None,
    web_base: str = ORDER_WEB_BASE,
    miniapp_base: Optional[str] = MINIAPP_BASE,
) -> Dict[str, Any]:
    """
    Build the post text and structured payload for a signed order.

    Args:
        order: Signed order
        compressed: Its compressed wire form
        signer_token: {"symbol", "decimals"} of the signer token
        sender_token: {"symbol", "decimals"} of the sender token
        web_base: Order page base URL
        miniapp_base: Miniapp base URL, or None to omit the link

    Returns:
        {"text": str, "payload": dict}
    """
    signer_meta = _token_meta(signer_token or {}, "TOKEN_A")
    sender_meta = _token_meta(sender_token or {}, "TOKEN_B")

    signer_human = format_units(order.signer.amount, signer_meta["decimals"])
    sender_human = format_units(order.sender.amount, sender_meta["decimals"])
    fee = calculate_fee(order.sender.amount, order.protocol_fee)
    fee_human = format_units(fee, sender_meta["decimals"])
    total_human = format_units(order.sender.amount + fee, sender_meta["decimals"])

    expiry_iso = (
        datetime.fromtimestamp(order.expiry, tz=timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )
    order_url = order_link(web_base, compressed)
    miniapp_url = order_link(miniapp_base, compressed) if miniapp_base else None

    lines = [
        "AirSwap OTC order on Base",
        f"Offer: {signer_human} {signer_meta['symbol']}",
        f"For: {sender_human} {sender_meta['symbol']}",
        f"Protocol fee: {fee_human} {sender_meta['symbol']} ({order.protocol_fee} bps)",
        f"Total taker pays: {total_human} {sender_meta['symbol']}",
        f"Signer: {short_address(order.signer.wallet)}",
        f"Sender: {'OPEN' if order.is_open else short_address(order.sender.wallet)}",
        f"Expiry: {expiry_iso}",
    ]
    if miniapp_url:
        lines.append(f"Miniapp: {miniapp_url}")
    lines.append(f"AirSwap Web: {order_url}")
    lines.append(payload_line(compressed))

    payload = {
        "type": "airswap-order",
        "version": 1,
        "chainId": order.chain_id,
        "protocol": "airswap-swap",
        "side": {
            "signerGives": {
                "token": order.signer.token,
                "symbol": signer_meta["symbol"],
                "amount": str(order.signer.amount),
                "amountHuman": signer_human,
            },
            "senderGives": {
                "token": order.sender.token,
                "symbol": sender_meta["symbol"],
                "amount": str(order.sender.amount),
                "amountHuman": sender_human,
            },
        },
        "signerWallet": order.signer.wallet,
        "senderWallet": "OPEN" if order.is_open else order.sender.wallet,
        "expiry": {"unix": order.expiry, "iso": expiry_iso},
        "airswapWeb": {
            "compressedOrder": compressed,
            "orderPath": f"/order/{compressed}",
            "orderUrl": order_url,
        },
        "miniapp": {"orderUrl": miniapp_url},
    }

    return {"text": "\n".join(lines), "payload": payload}


def cast_from_maker_payload(
    maker_payload: Mapping[str, Any],
    web_base: str = ORDER_WEB_BASE,
    miniapp_base: Optional[str] = MINIAPP_BASE,
) -> Dict[str, Any]:
    """Build the post from a maker payload file's contents."""
    order = order_from_payload(maker_payload)
    meta = maker_payload.get("meta") or {}
    return build_cast_payload(
        order,
        maker_payload["compressedOrder"],
        signer_token=meta.get("signerToken"),
        sender_token=meta.get("senderToken"),
        web_base=web_base,
        miniapp_base=miniapp_base,
    )


def main(argv: Optional[list] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(description="Build a post for a signed order")
    parser.add_argument("--in", dest="in_file", default=os.environ.get("IN_FILE", "order.json"))
    parser.add_argument("--out", dest="out_file", default=os.environ.get("OUT_FILE"))
    parser.add_argument(
        "--web-base", default=os.environ.get("AIRSWAP_WEB_BASE", ORDER_WEB_BASE)
    )
    parser.add_argument("--miniapp-base", default=os.environ.get("MINIAPP_BASE", MINIAPP_BASE))
    args = parser.parse_args(argv)

    with open(args.in_file) as f:
        maker_payload = json.load(f)

    cast = cast_from_maker_payload(
        maker_payload, web_base=args.web_base, miniapp_base=args.miniapp_base or None
    )

    if args.out_file:
        with open(args.out_file, "w") as f:
            json.dump(cast, f, indent=2)
        print(json.dumps({"wrote": args.out_file}))
    else:
        json.dump(cast, sys.stdout, indent=2)
        print()
    return 0


if __name__ == "__main__":
    sys.exit(main())
