"""Maker + Taker Order Flow Example.

This example walks one order through its whole life on Base:
- The maker approves, signs and compresses an open order
- The order is posted as text with a GBZ1 line
- The taker decodes the post, runs the preflight checks and settles

Prerequisites:
1. pip install bazaar-sdk
2. Set environment variables (see below)
3. Fund the maker with the signer token and the taker with the sender
   token (plus ETH for gas on both)

Environment:
    MAKER_PRIVATE_KEY, TAKER_PRIVATE_KEY
    SIGNER_TOKEN, SIGNER_AMOUNT, SENDER_TOKEN, SENDER_AMOUNT
    RPC_URLS (optional, comma separated)

Usage:
    python maker_taker_flow.py
"""

import asyncio
import os
from dotenv import load_dotenv

load_dotenv()


async def main():
    # Import here to show what's needed
    from bazaar_sdk import (
        LocalAccountSigner,
        PrimaryAction,
        RpcPool,
        TradeSession,
        TransactionSender,
        build_cast_payload,
        config_from_env,
        resolve_config,
    )
    from bazaar_sdk.agents import MakerOptions, create_signed_order

    required = [
        "MAKER_PRIVATE_KEY",
        "TAKER_PRIVATE_KEY",
        "SIGNER_TOKEN",
        "SIGNER_AMOUNT",
        "SENDER_TOKEN",
        "SENDER_AMOUNT",
    ]
    missing = [var for var in required if not os.environ.get(var)]
    if missing:
        print(f"Missing required environment variables: {', '.join(missing)}")
        return

    print("=" * 60)
    print("  BAZAAR MAKER -> TAKER ORDER FLOW")
    print("=" * 60)

    config = resolve_config(config_from_env())
    pool = RpcPool(config.rpc_urls, timeout=config.request_timeout_seconds)

    try:
        maker = LocalAccountSigner(os.environ["MAKER_PRIVATE_KEY"])
        taker = LocalAccountSigner(os.environ["TAKER_PRIVATE_KEY"])
        print(f"\n[1] Maker: {maker.address}")
        print(f"    Taker: {taker.address}")

        # Maker side: approve if needed, sign, compress
        print("\n[2] Creating and signing an open order...")
        maker_tx = TransactionSender.from_config(pool, maker, maker.address, config)
        options = MakerOptions(
            signer_token=os.environ["SIGNER_TOKEN"],
            signer_amount=os.environ["SIGNER_AMOUNT"],
            sender_token=os.environ["SENDER_TOKEN"],
            sender_amount=os.environ["SENDER_AMOUNT"],
        )
        result, payload = await create_signed_order(pool, config, maker_tx, options)
        if result.approval_tx:
            print(f"    Approve TX: {config.tx_url(result.approval_tx)}")
        print(f"    Nonce: {result.order.nonce}")

        # Distribution: the post any recipient can decode
        meta = payload["meta"]
        cast = build_cast_payload(
            result.order,
            result.compressed,
            signer_token=meta["signerToken"],
            sender_token=meta["senderToken"],
        )
        print("\n[3] Post text:")
        for line in cast["text"].splitlines():
            print(f"    {line}")

        # Taker side: decode the post and step through the primary action
        print("\n[4] Taker loading the post...")
        session = TradeSession(pool, config)
        session.load_text(cast["text"])
        session.connect(TransactionSender.from_config(pool, taker, taker.address, config))
        await session.refresh()
        print(f"    {session.fee_text}")

        while session.primary_label in (PrimaryAction.WRAP, PrimaryAction.APPROVE):
            print(f"\n[5] {session.primary_label.value}...")
            print(f"    {await session.primary_action()}")

        if session.primary_label is not PrimaryAction.ACCEPT:
            print(f"\nCannot settle: {session.primary_label.value} ({session.status})")
            return

        print("\n[6] Settling...")
        print(f"    {await session.primary_action()}")
        if session.settlement:
            print(f"    Swap TX: {config.tx_url(session.settlement.tx_hash)}")

        print("\n" + "=" * 60)
        print("  Order flow:")
        print("  1. Maker approved the signer token and signed (EIP-712)")
        print("  2. Order posted as compressed GBZ1 text")
        print("  3. Taker checked, approved amount + fee and settled")
        print("=" * 60)

    except Exception as e:
        print(f"\nError: {e}")
        raise

    finally:
        await pool.close()


if __name__ == "__main__":
    asyncio.run(main())
