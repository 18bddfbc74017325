"""
Preflight check engine.

Recomputes an order's validity against live chain state before any money
moves. Terminal findings (expired, already taken, fee drift) are raised; all
other findings are returned as a CheckResult for the execution machine.
"""

import asyncio
import logging
import time
from typing import Optional

from eth_abi.exceptions import DecodingError
from eth_utils import to_checksum_address

from ..config import ResolvedBazaarConfig
from ..errors import ChainError, FeeMismatch, OrderAlreadyTaken, OrderExpired
from ..orders.types import AssetKind, Order, Party, ZERO_ADDRESS
from ..orders.utils import calculate_fee, sender_total
from ..chain.abi import (
    SWAP_CHECK,
    SWAP_NONCE_USED,
    SWAP_PROTOCOL_FEE,
    SWAP_REQUIRED_SENDER_KIND,
    decode_bytes32_label,
    is_allowance_error,
    order_to_tuple,
)
from ..chain.rpc import RpcPool
from ..chain.tokens import (
    DEFAULT_DECIMALS,
    DEFAULT_SYMBOL,
    LegState,
    is_approved_for_all,
    read_leg,
)
from .pricing import LegPricer
from .types import CheckResult, LegSnapshot, PreflightReport

logger = logging.getLogger(__name__)


class OrderChecker:
    """
    Checks orders against one chain through an RpcPool.

    Example:
        ```python
        checker = OrderChecker(pool, resolve_config())
        result = await checker.check(order, viewer_wallet="0x...")
        if not result.taker_approval_ok:
            ...
        ```
    """

    def __init__(self, pool: RpcPool, config: ResolvedBazaarConfig):
        self._pool = pool
        self._config = config
        self._pricer = LegPricer(pool, config)

    async def preflight(self, order: Order, sender_wallet: Optional[str] = None) -> PreflightReport:
        """
        Read the settlement contract's own view of an order.

        Args:
            order: Order to check
            sender_wallet: Would-be sender passed to check()

        Raises:
            ChainUnavailable: If the fee or nonce could not be read
        """
        swap = order.swap_contract
        sender_wallet = to_checksum_address(sender_wallet or order.sender.wallet)

        fee_response, nonce_used, required_kind = await asyncio.gather(
            self._pool.eth_call(swap, SWAP_PROTOCOL_FEE.encode()),
            self._pool.call(swap, SWAP_NONCE_USED, order.signer.wallet, order.nonce),
            self._required_sender_kind(swap),
        )
        protocol_fee = SWAP_PROTOCOL_FEE.decode_single(fee_response.result)

        report = PreflightReport(
            swap_contract=swap,
            sender_wallet=sender_wallet,
            endpoint=fee_response.endpoint,
            protocol_fee=int(protocol_fee),
            required_sender_kind=required_kind,
            nonce_used=bool(nonce_used),
        )

        try:
            raw_errors = await self._pool.call(
                swap, SWAP_CHECK, sender_wallet, order_to_tuple(order)
            )
        except (ChainError, DecodingError, ValueError) as e:
            logger.warning(f"check() unavailable for nonce {order.nonce}: {e}")
            raw_errors = []

        report.raw_errors_hex = ["0x" + bytes(raw).hex() for raw in raw_errors]
        labels = [decode_bytes32_label(raw) for raw in raw_errors]
        labels = [label for label in labels if label]

        if order.signer.kind.is_nft and any(is_allowance_error(label) for label in labels):
            approved = await self._approved_for_all(order.signer, swap)
            if approved:
                labels = [label for label in labels if not is_allowance_error(label)]
                report.nft_approval_fallback = True

        report.check_errors = labels
        return report

    async def _required_sender_kind(self, swap: str) -> Optional[AssetKind]:
        try:
            raw = await self._pool.call(swap, SWAP_REQUIRED_SENDER_KIND)
            return AssetKind.parse("0x" + bytes(raw).hex())
        except (ChainError, DecodingError, ValueError) as e:
            logger.warning(f"requiredSenderKind() unavailable on {swap}: {e}")
            return None

    async def _approved_for_all(self, party: Party, operator: str) -> bool:
        try:
            return await is_approved_for_all(self._pool, party.token, party.wallet, operator)
        except (ChainError, DecodingError, ValueError) as e:
            logger.warning(f"isApprovedForAll fallback failed for {party.token}: {e}")
            return False

    async def _leg(
        self,
        party: Party,
        owner: Optional[str],
        required: int,
        spender: str,
        with_usd: bool,
    ) -> LegSnapshot:
        read_owner = owner or ZERO_ADDRESS

        async def state() -> LegState:
            try:
                return await read_leg(
                    self._pool, party, read_owner, spender, self._config.known_tokens
                )
            except (ChainError, DecodingError, ValueError) as e:
                logger.warning(f"Leg read degraded for {party.token}: {e}")
                decimals = DEFAULT_DECIMALS if party.kind is AssetKind.ERC20 else 0
                return LegState(
                    symbol=DEFAULT_SYMBOL, decimals=decimals, balance=None, allowance=0
                )

        async def usd() -> Optional[float]:
            if not with_usd:
                return None
            return await self._pricer.value(party, required)

        leg_state, usd_value = await asyncio.gather(state(), usd())
        has_owner = owner is not None
        balance_read = leg_state.balance is not None
        return LegSnapshot(
            party=party,
            owner=owner,
            symbol=leg_state.symbol,
            decimals=leg_state.decimals,
            required=required,
            balance=leg_state.balance if has_owner else 0,
            allowance=leg_state.allowance if has_owner else 0,
            balance_ok=has_owner and balance_read and leg_state.balance >= required,
            approval_ok=has_owner and leg_state.allowance >= required,
            usd_value=usd_value,
        )

    async def check(
        self,
        order: Order,
        viewer_wallet: Optional[str] = None,
        now: Optional[int] = None,
        with_usd: bool = False,
    ) -> CheckResult:
        """
        Run the preflight steps in order.

        Args:
            order: Decoded order
            viewer_wallet: Wallet that would settle the order, if connected
            now: Current unix time (default: wall clock)
            with_usd: Also value both legs in the stable token

        Returns:
            CheckResult with both legs and the computed totals

        Raises:
            OrderExpired: If now >= expiry
            OrderAlreadyTaken: If the signer nonce is consumed
            FeeMismatch: If the order fee differs from the live fee
            ChainUnavailable: If the contract could not be read at all
        """
        now = int(time.time()) if now is None else now
        if order.expiry <= now:
            raise OrderExpired(order.expiry, now)

        viewer = to_checksum_address(viewer_wallet) if viewer_wallet else None
        restricted_to_other = (
            viewer is not None
            and not order.is_open
            and viewer.lower() != order.sender.wallet.lower()
        )

        sender_for_check = viewer or order.sender.wallet
        report = await self.preflight(order, sender_for_check)
        if report.nonce_used:
            raise OrderAlreadyTaken(order.signer.wallet, order.nonce)
        if report.protocol_fee != order.protocol_fee:
            raise FeeMismatch(order.protocol_fee, report.protocol_fee)

        fee_amount = calculate_fee(order.sender.amount, order.protocol_fee)
        total = sender_total(order)

        sender_owner = viewer
        if sender_owner is None and not order.is_open:
            sender_owner = to_checksum_address(order.sender.wallet)

        signer_leg, sender_leg = await asyncio.gather(
            self._leg(
                order.signer, order.signer.wallet, order.signer.amount, order.swap_contract, with_usd
            ),
            self._leg(order.sender, sender_owner, total, order.swap_contract, with_usd),
        )

        result = CheckResult(
            order=order,
            viewer=viewer,
            preflight=report,
            signer_leg=signer_leg,
            sender_leg=sender_leg,
            fee_amount=fee_amount,
            total_required=total,
        )

        if restricted_to_other:
            result.not_your_order = True
            sender_leg.balance_ok = False
            sender_leg.approval_ok = False
            return result

        if (
            viewer is not None
            and order.sender.token.lower() == self._config.wrapped_native.lower()
            and not sender_leg.balance_ok
        ):
            await self._apply_wrap_shortfall(result, viewer)

        return result

    async def _apply_wrap_shortfall(self, result: CheckResult, viewer: str) -> None:
        shortfall = result.sender_leg.shortfall
        if shortfall is None:
            logger.warning(f"Balance unknown for {viewer}; not offering a wrap")
            return
        try:
            native = await self._pool.get_balance(viewer)
        except ChainError as e:
            logger.warning(f"Native balance read failed for {viewer}: {e}")
            return
        result.native_balance = native
        result.wrap_shortfall = shortfall
        result.wrap_eligible = native >= shortfall
