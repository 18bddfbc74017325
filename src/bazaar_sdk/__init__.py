"""Bazaar SDK.

Peer-to-peer signed-order swaps on Base: a maker signs an order off-chain,
distributes it as a compressed string, and a taker checks and settles it
on-chain in one atomic call.

Example usage:
    ```python
    from bazaar_sdk import (
        RpcPool,
        OrderChecker,
        OrderExecution,
        TransactionSender,
        LocalAccountSigner,
        decode_order,
        resolve_config,
    )

    config = resolve_config()
    order = decode_order(compressed)

    async with RpcPool(config.rpc_urls) as pool:
        result = await OrderChecker(pool, config).check(order, viewer)

        wallet = LocalAccountSigner(private_key)
        sender = TransactionSender.from_config(pool, wallet, wallet.address, config)
        settlement = await OrderExecution(pool, config, sender).take(order)
    ```
"""

from .config import (
    BazaarConfig,
    ResolvedBazaarConfig,
    resolve_config,
    resolve_swap_contract,
    config_from_env,
    CHAIN_ID_BASE,
    WETH_BASE,
    USDC_BASE,
)
from .errors import *  # noqa: F401,F403
from .errors import __all__ as _errors_all
from .wallet import TypedDataSigner, TransactionSigner, LocalAccountSigner
from .orders import (
    AssetKind,
    Party,
    Order,
    ZERO_ADDRESS,
    encode_order,
    decode_order,
    extract_compressed_order,
    create_party,
    create_order,
    sign_order,
    sign_order_with_signer,
    verify_order_signature,
    calculate_fee,
    required_total,
    generate_nonce,
    parse_units,
    format_units,
)
from .chain import RpcPool, TransactionSender
from .check import OrderChecker, CheckResult
from .execution import ExecutionState, OrderExecution
from .agents import TradeSession, PrimaryAction, build_cast_payload

__version__ = "0.1.0"

__all__ = [
    # Config
    "BazaarConfig",
    "ResolvedBazaarConfig",
    "resolve_config",
    "resolve_swap_contract",
    "config_from_env",
    "CHAIN_ID_BASE",
    "WETH_BASE",
    "USDC_BASE",
    # Wallet
    "TypedDataSigner",
    "TransactionSigner",
    "LocalAccountSigner",
    # Orders
    "AssetKind",
    "Party",
    "Order",
    "ZERO_ADDRESS",
    "encode_order",
    "decode_order",
    "extract_compressed_order",
    "create_party",
    "create_order",
    "sign_order",
    "sign_order_with_signer",
    "verify_order_signature",
    "calculate_fee",
    "required_total",
    "generate_nonce",
    "parse_units",
    "format_units",
    # Chain
    "RpcPool",
    "TransactionSender",
    # Checks and execution
    "OrderChecker",
    "CheckResult",
    "ExecutionState",
    "OrderExecution",
    # Drivers
    "TradeSession",
    "PrimaryAction",
    "build_cast_payload",
    *_errors_all,
]
