"""
Transaction submission for settlement flows.

Handles the lifecycle of a single state-changing transaction:
- Fee overrides and gas limit policy
- Non-mutating simulation before submission
- Signing and broadcast
- Bounded confirmation wait
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from eth_utils import to_checksum_address

from ..config import ResolvedBazaarConfig
from ..errors import (
    ChainError,
    ChainUnavailable,
    ConfirmationTimeout,
    ContractReverted,
    ExecutionError,
    GasCeilingExceeded,
    RpcError,
    SimulationRejected,
)
from ..wallet import TransactionSigner
from .abi import decode_revert_reason
from .rpc import RpcPool

logger = logging.getLogger(__name__)

# Provider messages that describe node limits rather than contract logic
INFRA_ERROR_PATTERNS = (
    "timeout",
    "timed out",
    "rate limit",
    "too many requests",
    "429",
    "502",
    "503",
    "missing trie node",
    "header not found",
    "request limit",
    "over capacity",
    "execution aborted",
    "method not found",
    "not supported",
    "unavailable",
    "internal error",
    "connection",
)


def is_infrastructure_error(error: BaseException) -> bool:
    """True when an error means "unknown" rather than "rejected"."""
    if isinstance(error, ContractReverted):
        return False
    if isinstance(error, (ChainUnavailable, httpx.HTTPError, asyncio.TimeoutError)):
        return True
    message = str(error).lower()
    return any(pattern in message for pattern in INFRA_ERROR_PATTERNS)


@dataclass
class GasPolicy:
    """Gas limit policy: estimate times a multiplier, capped by a ceiling."""

    multiplier_pct: int = 120
    max_gas_limit: int = 650_000


@dataclass
class FeeOverrides:
    gas_price: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int


@dataclass
class GasDecision:
    gas_limit: int
    estimated: Optional[int]
    used_fallback: bool


@dataclass
class SimulationOutcome:
    """Result of a pre-submission eth_call.

    ``inconclusive`` means the node could not tell; submission proceeds.
    """

    ok: bool
    inconclusive: bool = False
    detail: Optional[str] = None


@dataclass
class TransactionReceipt:
    tx_hash: str
    status: int
    block_number: int
    gas_used: int

    @property
    def succeeded(self) -> bool:
        return self.status == 1


class TransactionSender:
    """
    Signs and submits transactions for one wallet.

    One instance serves one party; callers must not have two mutating
    transactions in flight for the same order.
    """

    def __init__(
        self,
        pool: RpcPool,
        wallet: TransactionSigner,
        address: str,
        chain_id: int,
        gas_policy: Optional[GasPolicy] = None,
        confirmation_timeout: float = 180.0,
        poll_interval: float = 2.0,
    ):
        self._pool = pool
        self.wallet = wallet
        self.address = to_checksum_address(address)
        self.chain_id = chain_id
        self.gas_policy = gas_policy or GasPolicy()
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @classmethod
    def from_config(
        cls,
        pool: RpcPool,
        wallet: TransactionSigner,
        address: str,
        config: ResolvedBazaarConfig,
    ) -> "TransactionSender":
        return cls(
            pool,
            wallet,
            address,
            chain_id=config.chain_id,
            gas_policy=GasPolicy(
                multiplier_pct=config.gas_multiplier_pct,
                max_gas_limit=config.max_gas_limit,
            ),
            confirmation_timeout=config.confirmation_timeout_seconds,
            poll_interval=config.poll_interval_seconds,
        )

    def _call_object(self, to: str, data: str, value: int) -> Dict[str, Any]:
        call_obj: Dict[str, Any] = {
            "from": self.address,
            "to": to_checksum_address(to),
            "data": data,
        }
        if value > 0:
            call_obj["value"] = hex(value)
        return call_obj

    async def fee_overrides(self) -> FeeOverrides:
        """EIP-1559 fees from the node gas price, priority capped at 10%."""
        response = await self._pool.request("eth_gasPrice", [])
        gas_price = int(response.result, 16)
        priority = max(gas_price // 10, 1)
        return FeeOverrides(
            gas_price=gas_price,
            max_fee_per_gas=max(gas_price, priority),
            max_priority_fee_per_gas=priority,
        )

    async def decide_gas_limit(self, to: str, data: str, value: int = 0) -> GasDecision:
        """
        Estimate gas with the safety multiplier, capped at the ceiling.

        If estimation fails for infrastructure reasons, or reverts without a
        recognized reason, the ceiling is used.

        Raises:
            GasCeilingExceeded: If the raw estimate is above the ceiling
            SimulationRejected: If estimation reverted with a recognized reason
        """
        ceiling = self.gas_policy.max_gas_limit
        try:
            response = await self._pool.request(
                "eth_estimateGas", [self._call_object(to, data, value)]
            )
        except ContractReverted as e:
            reason = decode_revert_reason(e.data)
            if reason:
                raise SimulationRejected(reason) from e
            logger.warning(f"estimateGas reverted, using manual gas limit {ceiling}: {e.message}")
            return GasDecision(gas_limit=ceiling, estimated=None, used_fallback=True)
        except ChainError as e:
            if not is_infrastructure_error(e):
                raise
            logger.warning(f"estimateGas failed, using manual gas limit {ceiling}: {e}")
            return GasDecision(gas_limit=ceiling, estimated=None, used_fallback=True)

        estimated = int(response.result, 16)
        if estimated > ceiling:
            raise GasCeilingExceeded(estimated, ceiling)
        gas_limit = min(estimated * self.gas_policy.multiplier_pct // 100, ceiling)
        return GasDecision(gas_limit=gas_limit, estimated=estimated, used_fallback=False)

    async def simulate(self, to: str, data: str, value: int = 0) -> SimulationOutcome:
        """
        Run the call without mutating state.

        Raises:
            SimulationRejected: If it reverted with a recognized reason
        """
        try:
            await self._pool.request("eth_call", [self._call_object(to, data, value), "latest"])
        except ContractReverted as e:
            reason = decode_revert_reason(e.data)
            if reason:
                raise SimulationRejected(reason) from e
            logger.warning(f"Simulation reverted without a recognized reason: {e.message}")
            return SimulationOutcome(ok=False, inconclusive=True, detail=e.message)
        except ChainError as e:
            if not is_infrastructure_error(e):
                raise
            logger.warning(f"Simulation inconclusive, proceeding: {e}")
            return SimulationOutcome(ok=False, inconclusive=True, detail=str(e))
        return SimulationOutcome(ok=True)

    async def send_transaction(
        self,
        to: str,
        data: str,
        value: int = 0,
        gas_limit: Optional[int] = None,
    ) -> str:
        """Sign and broadcast a transaction, returning its hash."""
        if gas_limit is None:
            gas_limit = (await self.decide_gas_limit(to, data, value)).gas_limit
        fees = await self.fee_overrides()
        nonce_response = await self._pool.request(
            "eth_getTransactionCount", [self.address, "pending"]
        )

        tx = {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": int(nonce_response.result, 16),
            "to": to_checksum_address(to),
            "value": value,
            "data": data,
            "gas": gas_limit,
            "maxFeePerGas": fees.max_fee_per_gas,
            "maxPriorityFeePerGas": fees.max_priority_fee_per_gas,
        }
        raw = await self.wallet.sign_transaction(tx)
        response = await self._pool.request("eth_sendRawTransaction", [raw])
        tx_hash = response.result
        logger.info(f"Transaction submitted: {tx_hash} via {response.endpoint}")
        return tx_hash

    async def wait_for_receipt(
        self, tx_hash: str, timeout: Optional[float] = None
    ) -> TransactionReceipt:
        """
        Poll for a receipt until it appears or the timeout elapses.

        Raises:
            ConfirmationTimeout: If no receipt appeared in time
        """
        timeout = self.confirmation_timeout if timeout is None else timeout
        deadline = time.monotonic() + timeout

        while True:
            try:
                response = await self._pool.request("eth_getTransactionReceipt", [tx_hash])
                receipt = response.result
            except (ChainUnavailable, RpcError) as e:
                if not is_infrastructure_error(e):
                    raise ExecutionError(f"Receipt lookup failed for {tx_hash}: {e}") from e
                logger.warning(f"Receipt lookup failed, retrying: {e}")
                receipt = None

            if receipt:
                return TransactionReceipt(
                    tx_hash=tx_hash,
                    status=int(receipt.get("status", "0x0"), 16),
                    block_number=int(receipt.get("blockNumber") or "0x0", 16),
                    gas_used=int(receipt.get("gasUsed") or "0x0", 16),
                )

            if time.monotonic() >= deadline:
                raise ConfirmationTimeout(tx_hash, timeout)
            await asyncio.sleep(self.poll_interval)
