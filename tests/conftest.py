"""Shared fixtures: a resolved config, a fake node and wallets bound to it."""

import httpx
import pytest
import pytest_asyncio

from bazaar_sdk.chain.rpc import RpcPool
from bazaar_sdk.chain.transactions import TransactionSender
from bazaar_sdk.config import resolve_config
from bazaar_sdk.orders.types import AssetKind

from fakes import (
    MAKER_KEY,
    MAX_UINT,
    RPC_URL,
    TAKER_KEY,
    TOKEN_A,
    TOKEN_B,
    ChainWallet,
    FakeChain,
)


@pytest.fixture
def config():
    return resolve_config(
        {
            "rpc_urls": (RPC_URL,),
            "known_tokens": {TOKEN_B: ("TKB", 6)},
            "confirmation_timeout_seconds": 0.05,
            "poll_interval_seconds": 0.01,
        }
    )


@pytest.fixture
def swap(config):
    return config.swap_contract_for(AssetKind.ERC20)


@pytest.fixture
def chain(config, swap):
    """Maker holds 10 TKA approved to the swap; taker holds 1000 TKB, unapproved."""
    chain = FakeChain(swap, config.wrapped_native, config.quoter)
    chain.add_token(TOKEN_A, "TKA", 18)
    chain.add_token(TOKEN_B, "TKB", 6)
    chain.add_token(config.wrapped_native, "WETH", 18)
    return chain


@pytest.fixture
def maker_wallet(chain):
    return ChainWallet(MAKER_KEY, chain)


@pytest.fixture
def taker_wallet(chain):
    return ChainWallet(TAKER_KEY, chain)


@pytest.fixture
def funded(chain, maker_wallet, taker_wallet):
    chain.fund(TOKEN_A, maker_wallet.address, 10 * 10**18, allowance=MAX_UINT)
    chain.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=0)
    return chain


@pytest_asyncio.fixture
async def pool(chain):
    async with httpx.AsyncClient(transport=chain.transport()) as client:
        yield RpcPool([RPC_URL], http_client=client)


@pytest.fixture
def maker_tx(pool, maker_wallet, config):
    return TransactionSender.from_config(pool, maker_wallet, maker_wallet.address, config)


@pytest.fixture
def taker_tx(pool, taker_wallet, config):
    return TransactionSender.from_config(pool, taker_wallet, taker_wallet.address, config)
