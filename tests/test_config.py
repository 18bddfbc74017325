"""Tests for configuration resolution and logging setup."""

import logging

import pytest
import structlog

from bazaar_sdk.config import (
    BASE_RPC_URLS,
    SWAP_CONTRACT_ERC20,
    SWAP_CONTRACT_ERC721,
    USDC_BASE,
    WETH_BASE,
    config_from_env,
    resolve_config,
    resolve_swap_contract,
)
from bazaar_sdk.logging_config import setup_logging
from bazaar_sdk.orders.types import AssetKind

from fakes import TOKEN_A, TOKEN_B


class TestResolveConfig:
    """Tests for defaults and overrides."""

    def test_defaults(self):
        config = resolve_config()

        assert config.chain_id == 8453
        assert config.rpc_urls == BASE_RPC_URLS
        assert config.gas_multiplier_pct == 120
        assert config.max_gas_limit == 650_000
        assert config.quote_fee_tiers == (500, 3000, 10000)
        assert config.domain_name == "SWAP"
        assert config.domain_version == "4.2"
        assert config.known_token(USDC_BASE) == ("USDC", 6)
        assert config.known_token(WETH_BASE.upper().replace("0X", "0x")) == ("WETH", 18)
        assert config.swap_contract_override is None

    def test_swap_contract_per_kind(self):
        config = resolve_config()

        assert config.swap_contract_for(AssetKind.ERC20) == SWAP_CONTRACT_ERC20
        assert config.swap_contract_for(AssetKind.ERC721) == SWAP_CONTRACT_ERC721

    def test_overrides(self):
        config = resolve_config(
            {
                "rpc_urls": ("https://a.test", "https://b.test"),
                "swap_contracts": {"erc721": TOKEN_A.lower()},
                "known_tokens": {TOKEN_B: ("TKB", 6)},
                "max_gas_limit": 500_000,
            }
        )

        assert config.rpc_urls == ("https://a.test", "https://b.test")
        assert config.swap_contract_for(AssetKind.ERC721) == TOKEN_A
        assert config.known_token(TOKEN_B) == ("TKB", 6)
        assert config.known_token(USDC_BASE) == ("USDC", 6)
        assert config.max_gas_limit == 500_000

    def test_empty_rpc_urls_rejected(self):
        with pytest.raises(ValueError, match="RPC URL"):
            resolve_config({"rpc_urls": ()})

    def test_tx_url(self):
        assert resolve_config().tx_url("0xabc") == "https://basescan.org/tx/0xabc"

    def test_config_is_immutable(self):
        config = resolve_config()
        with pytest.raises(AttributeError):
            config.chain_id = 1


class TestSwapContractResolution:
    """Tests for settlement contract precedence."""

    def test_kind_default(self):
        assert resolve_swap_contract(resolve_config(), AssetKind.ERC20) == SWAP_CONTRACT_ERC20

    def test_payload_contract_beats_default(self):
        config = resolve_config()
        resolved = resolve_swap_contract(config, AssetKind.ERC20, TOKEN_A.lower())
        assert resolved == TOKEN_A

    def test_override_beats_everything(self):
        config = resolve_config({"swap_contract_override": TOKEN_B.lower()})

        assert resolve_swap_contract(config, AssetKind.ERC721, TOKEN_A) == TOKEN_B
        assert config.swap_contract_for(AssetKind.ERC20) == TOKEN_B


class TestConfigFromEnv:
    """Tests for environment overrides."""

    def test_reads_variables(self):
        env = {
            "RPC_URLS": "https://a.test, https://b.test,",
            "SWAP_ADDRESS": TOKEN_A,
            "MAX_GAS_LIMIT": "400000",
            "CONFIRMATION_TIMEOUT": "30",
        }
        config = resolve_config(config_from_env(env))

        assert config.rpc_urls == ("https://a.test", "https://b.test")
        assert config.swap_contract_override == TOKEN_A
        assert config.max_gas_limit == 400_000
        assert config.confirmation_timeout_seconds == 30.0

    def test_single_rpc_url(self):
        assert config_from_env({"RPC_URL": "https://one.test"}) == {
            "rpc_urls": ("https://one.test",)
        }

    def test_empty_environment(self):
        assert config_from_env({}) == {}


class TestLogging:
    """Tests for agent logging setup."""

    @pytest.fixture(autouse=True)
    def restore_logging(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)
        structlog.reset_defaults()

    def test_level_from_argument(self):
        setup_logging("debug")

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert logging.getLogger("httpx").level == logging.WARNING

    def test_level_from_environment(self, monkeypatch):
        monkeypatch.setenv("LOG_LEVEL", "WARNING")
        setup_logging()
        assert logging.getLogger().level == logging.WARNING

    def test_unknown_level_defaults_to_info(self):
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO
