"""Configuration for the Bazaar SDK.

User overrides are a ``BazaarConfig`` dict; ``resolve_config`` applies every
default and returns an immutable ``ResolvedBazaarConfig`` that is passed
explicitly to the RPC pool, check engine and execution machine.
"""

import os
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Tuple, TypedDict

from eth_utils import to_checksum_address

from .orders.signing import DOMAIN_NAME, DOMAIN_VERSION
from .orders.types import AssetKind

# Base mainnet
CHAIN_ID_BASE = 8453

BASE_RPC_URLS = ("https://mainnet.base.org", "https://base-rpc.publicnode.com")

# Swap deployments on Base, keyed by the sender leg kind
SWAP_CONTRACT_ERC20 = "0x8a9969ed0A9bb3cDA7521DDaA614aE86e72e0A57"
SWAP_CONTRACT_ERC721 = "0x2aa29F096257bc6B253bfA9F6404B20Ae0ef9C4d"
SWAP_CONTRACT_ERC1155 = "0xD19783B48b11AFE1544b001c6d807A513e5A95cf"

# Tokens on Base
WETH_BASE = "0x4200000000000000000000000000000000000006"
USDC_BASE = "0x833589fCD6eDb6E08f4c7C32D4f71b54bdA02913"

# Uniswap V3 QuoterV2 on Base
QUOTER_V2_BASE = "0x3d4e44Eb1374240CE5F1B871ab261CD16335B76a"

# Sentinel some wallets use for native ETH
NATIVE_SENTINEL = "0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE"

EXPLORER_BASE = "https://basescan.org"
ORDER_WEB_BASE = "https://dex.airswap.xyz/#/order/"
MINIAPP_BASE = "https://the-grand-bazaar.vercel.app/"


class BazaarConfig(TypedDict, total=False):
    """Configuration overrides for the SDK."""

    chain_id: int
    """Chain ID. Default: 8453 (Base)"""

    rpc_urls: Tuple[str, ...]
    """Equivalent read replicas, tried in order."""

    swap_contracts: Dict[str, str]
    """Settlement contract per sender kind name (erc20, erc721, erc1155)."""

    swap_contract_override: str
    """Explicit settlement contract; wins over kind-based resolution."""

    wrapped_native: str
    stable_token: str
    quoter: str
    quote_fee_tiers: Tuple[int, ...]

    known_tokens: Dict[str, Tuple[str, int]]
    """Address -> (symbol, decimals) used to reject inconsistent batch reads."""

    domain_name: str
    domain_version: str

    gas_multiplier_pct: int
    """Safety multiplier applied to gas estimates. Default: 120"""

    max_gas_limit: int
    """Hard gas ceiling, also the fallback when estimation fails. Default: 650000"""

    confirmation_timeout_seconds: float
    poll_interval_seconds: float
    request_timeout_seconds: float

    explorer_url: str
    order_web_base: str
    miniapp_base: str


@dataclass(frozen=True)
class ResolvedBazaarConfig:
    """Resolved configuration with all defaults applied."""

    chain_id: int
    rpc_urls: Tuple[str, ...]
    swap_contracts: Mapping[AssetKind, str]
    swap_contract_override: Optional[str]
    wrapped_native: str
    stable_token: str
    quoter: str
    quote_fee_tiers: Tuple[int, ...]
    known_tokens: Mapping[str, Tuple[str, int]]
    domain_name: str
    domain_version: str
    gas_multiplier_pct: int
    max_gas_limit: int
    confirmation_timeout_seconds: float
    poll_interval_seconds: float
    request_timeout_seconds: float
    explorer_url: str
    order_web_base: str
    miniapp_base: str

    def swap_contract_for(self, sender_kind: AssetKind) -> str:
        """Settlement contract for a sender kind, honoring the override."""
        if self.swap_contract_override:
            return self.swap_contract_override
        return self.swap_contracts[sender_kind]

    def known_token(self, token: str) -> Optional[Tuple[str, int]]:
        return self.known_tokens.get(token.lower())

    def tx_url(self, tx_hash: str) -> str:
        return f"{self.explorer_url}/tx/{tx_hash}"


def resolve_config(config: Optional[BazaarConfig] = None) -> ResolvedBazaarConfig:
    """Apply defaults to a partial configuration."""
    config = config or {}

    swap_contracts = {
        AssetKind.ERC20: SWAP_CONTRACT_ERC20,
        AssetKind.ERC721: SWAP_CONTRACT_ERC721,
        AssetKind.ERC1155: SWAP_CONTRACT_ERC1155,
    }
    for name, address in config.get("swap_contracts", {}).items():
        swap_contracts[AssetKind.parse(name)] = address

    known_tokens = {
        USDC_BASE.lower(): ("USDC", 6),
        WETH_BASE.lower(): ("WETH", 18),
    }
    for address, meta in config.get("known_tokens", {}).items():
        known_tokens[address.lower()] = meta

    override = config.get("swap_contract_override")
    rpc_urls = tuple(config.get("rpc_urls", BASE_RPC_URLS))
    if not rpc_urls:
        raise ValueError("At least one RPC URL is required")

    return ResolvedBazaarConfig(
        chain_id=config.get("chain_id", CHAIN_ID_BASE),
        rpc_urls=rpc_urls,
        swap_contracts={k: to_checksum_address(v) for k, v in swap_contracts.items()},
        swap_contract_override=to_checksum_address(override) if override else None,
        wrapped_native=to_checksum_address(config.get("wrapped_native", WETH_BASE)),
        stable_token=to_checksum_address(config.get("stable_token", USDC_BASE)),
        quoter=to_checksum_address(config.get("quoter", QUOTER_V2_BASE)),
        quote_fee_tiers=tuple(config.get("quote_fee_tiers", (500, 3000, 10000))),
        known_tokens=known_tokens,
        domain_name=config.get("domain_name", DOMAIN_NAME),
        domain_version=config.get("domain_version", DOMAIN_VERSION),
        gas_multiplier_pct=config.get("gas_multiplier_pct", 120),
        max_gas_limit=config.get("max_gas_limit", 650_000),
        confirmation_timeout_seconds=config.get("confirmation_timeout_seconds", 180.0),
        poll_interval_seconds=config.get("poll_interval_seconds", 2.0),
        request_timeout_seconds=config.get("request_timeout_seconds", 15.0),
        explorer_url=config.get("explorer_url", EXPLORER_BASE),
        order_web_base=config.get("order_web_base", ORDER_WEB_BASE),
        miniapp_base=config.get("miniapp_base", MINIAPP_BASE),
    )


def resolve_swap_contract(
    config: ResolvedBazaarConfig,
    sender_kind: AssetKind,
    payload_contract: Optional[str] = None,
) -> str:
    """Settlement contract for an order.

    Precedence: explicit override, then the contract recorded in an order
    payload, then the default deployment for the sender kind.
    """
    if config.swap_contract_override:
        return config.swap_contract_override
    if payload_contract:
        return to_checksum_address(payload_contract)
    return config.swap_contracts[sender_kind]


def config_from_env(environ: Optional[Mapping[str, str]] = None) -> BazaarConfig:
    """Read configuration overrides from environment variables."""
    env = os.environ if environ is None else environ
    config: BazaarConfig = {}

    urls = env.get("RPC_URLS") or env.get("RPC_URL")
    if urls:
        config["rpc_urls"] = tuple(u.strip() for u in urls.split(",") if u.strip())
    if env.get("CHAIN_ID"):
        config["chain_id"] = int(env["CHAIN_ID"])
    if env.get("SWAP_ADDRESS"):
        config["swap_contract_override"] = env["SWAP_ADDRESS"]
    if env.get("MAX_GAS_LIMIT"):
        config["max_gas_limit"] = int(env["MAX_GAS_LIMIT"])
    if env.get("GAS_MULTIPLIER_PCT"):
        config["gas_multiplier_pct"] = int(env["GAS_MULTIPLIER_PCT"])
    if env.get("CONFIRMATION_TIMEOUT"):
        config["confirmation_timeout_seconds"] = float(env["CONFIRMATION_TIMEOUT"])
    if env.get("AIRSWAP_WEB_BASE"):
        config["order_web_base"] = env["AIRSWAP_WEB_BASE"]
    if env.get("MINIAPP_BASE"):
        config["miniapp_base"] = env["MINIAPP_BASE"]

    return config
