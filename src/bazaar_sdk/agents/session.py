"""Interactive trade session.

Wallet-connected driver for one order: load it, connect a wallet, refresh
checks, and run the single next step behind the primary action.

Example:
    ```python
    session = TradeSession(pool, config)
    session.load_text(post_text)
    session.connect(transactions)
    await session.refresh()
    while session.primary_label is PrimaryAction.APPROVE:
        await session.primary_action()
    ```
"""

import logging
from enum import Enum
from typing import Optional

from ..check.engine import OrderChecker
from ..check.types import CheckResult
from ..config import ResolvedBazaarConfig
from ..errors import BazaarError, ChainError, MalformedPayload, TerminalOrderState
from ..execution.machine import ExecutionState, OrderExecution, SettlementResult
from ..orders.codec import decode_order, extract_compressed_order
from ..orders.types import Order
from ..orders.utils import format_token_amount, format_units, short_address
from ..chain.rpc import RpcPool
from ..chain.transactions import TransactionSender

logger = logging.getLogger(__name__)


class PrimaryAction(str, Enum):
    CONNECT = "Connect"
    INSUFFICIENT_BALANCE = "Insufficient Balance"
    WRAP = "Wrap"
    APPROVE = "Approve"
    ACCEPT = "Accept"
    UNAVAILABLE = "Unavailable"


class TradeSession:
    """One viewer looking at one order."""

    def __init__(self, pool: RpcPool, config: ResolvedBazaarConfig):
        self._pool = pool
        self._config = config
        self._checker = OrderChecker(pool, config)
        self._transactions: Optional[TransactionSender] = None
        self._execution: Optional[OrderExecution] = None

        self.order: Optional[Order] = None
        self.compressed: Optional[str] = None
        self.check: Optional[CheckResult] = None
        self.terminal: Optional[TerminalOrderState] = None
        self.settlement: Optional[SettlementResult] = None
        self.status = "idle"

    @property
    def viewer(self) -> Optional[str]:
        return self._transactions.address if self._transactions else None

    def load(self, compressed: str) -> Order:
        """Load an order from its compressed form, discarding prior checks.

        Raises:
            MalformedPayload: If the string does not decode
        """
        self.order = decode_order(compressed)
        self.compressed = compressed.strip()
        self.check = None
        self.terminal = None
        self.settlement = None
        self._execution = None
        self.status = "order loaded"
        return self.order

    def load_text(self, text: str) -> Order:
        """Load an order from post text containing a GBZ1 line."""
        compressed = extract_compressed_order(text)
        if not compressed:
            raise MalformedPayload("No GBZ1 order line found in text")
        return self.load(compressed)

    def connect(self, transactions: TransactionSender) -> None:
        self._transactions = transactions
        self._execution = None
        self.check = None
        self.status = f"connected {short_address(transactions.address)}"

    def _execution_for_viewer(self) -> OrderExecution:
        if self._execution is None or self._execution.state is ExecutionState.FAILED:
            self._execution = OrderExecution(
                self._pool, self._config, self._transactions, checker=self._checker
            )
        return self._execution

    async def refresh(self, now: Optional[int] = None) -> Optional[CheckResult]:
        """Re-run the checks for the current viewer."""
        if self.order is None:
            return None
        self.status = "checking order"
        try:
            self.check = await self._checker.check(
                self.order, self.viewer, now=now, with_usd=True
            )
            self.terminal = None
            if self.viewer is not None and not self.check.sender_leg.balance_known:
                self.status = "balance unknown"
            else:
                self.status = "checks complete"
        except TerminalOrderState as e:
            self.check = None
            self.terminal = e
            self.status = e.reason
        except ChainError as e:
            self.status = f"check error: {e}"
        return self.check

    @property
    def primary_label(self) -> PrimaryAction:
        if self.viewer is None:
            return PrimaryAction.CONNECT
        check = self.check
        if self.terminal is not None or check is None or check.not_your_order:
            return PrimaryAction.UNAVAILABLE
        if not check.sender_leg.balance_known:
            return PrimaryAction.UNAVAILABLE
        if not check.taker_balance_ok:
            if check.wrap_eligible:
                return PrimaryAction.WRAP
            return PrimaryAction.INSUFFICIENT_BALANCE
        if not check.taker_approval_ok:
            return PrimaryAction.APPROVE
        return PrimaryAction.ACCEPT

    @property
    def fee_text(self) -> str:
        check = self.check
        if check is None:
            return ""
        fee = float(format_units(check.fee_amount, check.sender_leg.decimals))
        return (
            f"Includes {format_token_amount(fee)} {check.sender_leg.symbol} "
            f"protocol fee ({check.protocol_fee_bps} bps)"
        )

    async def primary_action(self, now: Optional[int] = None) -> str:
        """
        Perform the one step behind the primary label, then re-check.

        Returns:
            The status after the step
        """
        label = self.primary_label
        if label is PrimaryAction.CONNECT:
            self.status = "connect a wallet"
            return self.status
        if label is PrimaryAction.INSUFFICIENT_BALANCE:
            self.status = "insufficient balance"
            return self.status
        if label is PrimaryAction.UNAVAILABLE:
            return self.status

        execution = self._execution_for_viewer()
        try:
            if label is PrimaryAction.WRAP:
                self.status = "sending wrap tx"
                tx_hash = await execution.wrap_shortfall(self.check)
                self.status = f"wrap confirmed: {tx_hash[:10]}..."
            elif label is PrimaryAction.APPROVE:
                self.status = "sending approve tx"
                tx_hash = await execution.approve_sender(self.check)
                self.status = f"approve confirmed: {tx_hash[:10]}..."
            else:
                self.status = "sending swap tx"
                self.settlement = await execution.take(self.order, now=now)
                self.status = f"swap confirmed: {self.settlement.tx_hash[:10]}..."
        except BazaarError as e:
            logger.warning(f"{label.value} failed: {e}")
            self.status = f"action error: {e}"
            return self.status

        step_status = self.status
        await self.refresh(now=now)
        self.status = step_status
        return self.status
