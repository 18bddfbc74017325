"""
Order execution state machine.

Drives one party through approve -> (wrap) -> sign -> publish for the maker,
or approve -> (wrap) -> settle for the taker. Every mutating step blocks on
confirmation before the next one is enabled, and the check engine is re-run
after each of them.
"""

import asyncio
import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional

from eth_utils import to_checksum_address

from ..check.engine import OrderChecker
from ..check.types import CheckResult
from ..config import ResolvedBazaarConfig
from ..errors import (
    ChainUnavailable,
    ConfirmationTimeout,
    ExecutionError,
    FeeMismatch,
    InsufficientAllowance,
    InsufficientFunds,
    InvalidTransition,
    OrderAlreadyTaken,
    OrderNotForWallet,
    SignatureInvalid,
    TransactionReverted,
)
from ..orders.codec import encode_order
from ..orders.signing import sign_order_with_signer, verify_order_signature
from ..orders.types import AssetKind, Order, Party
from ..chain.abi import (
    ERC20_APPROVE,
    SET_APPROVAL_FOR_ALL,
    SWAP_NONCE_USED,
    SWAP_PROTOCOL_FEE,
    SWAP_SWAP,
    WETH_DEPOSIT,
    order_to_tuple,
)
from ..chain.rpc import RpcPool
from ..chain.tokens import read_leg
from ..chain.transactions import (
    GasDecision,
    SimulationOutcome,
    TransactionReceipt,
    TransactionSender,
)
from ..wallet import TypedDataSigner

logger = logging.getLogger(__name__)


class ExecutionState(str, Enum):
    IDLE = "idle"
    APPROVING = "approving"
    WRAPPING = "wrapping"
    SIGNING = "signing"
    PUBLISHED = "published"
    SETTLING = "settling"
    SETTLED = "settled"
    FAILED = "failed"


# FAILED is reachable from every non-final state
ALLOWED_TRANSITIONS: Dict[ExecutionState, frozenset] = {
    ExecutionState.IDLE: frozenset(
        {
            ExecutionState.APPROVING,
            ExecutionState.WRAPPING,
            ExecutionState.SIGNING,
            ExecutionState.SETTLING,
        }
    ),
    ExecutionState.APPROVING: frozenset(
        {
            ExecutionState.WRAPPING,
            ExecutionState.SIGNING,
            ExecutionState.SETTLING,
            ExecutionState.IDLE,
        }
    ),
    ExecutionState.WRAPPING: frozenset(
        {ExecutionState.SIGNING, ExecutionState.SETTLING, ExecutionState.IDLE}
    ),
    ExecutionState.SIGNING: frozenset({ExecutionState.PUBLISHED, ExecutionState.IDLE}),
    ExecutionState.PUBLISHED: frozenset({ExecutionState.SETTLING}),
    ExecutionState.SETTLING: frozenset({ExecutionState.SETTLED, ExecutionState.IDLE}),
    ExecutionState.SETTLED: frozenset(),
    ExecutionState.FAILED: frozenset(),
}

FINAL_STATES = frozenset({ExecutionState.SETTLED, ExecutionState.FAILED})


@dataclass
class Transition:
    state: ExecutionState
    at: float
    detail: Optional[str] = None


@dataclass
class MakeResult:
    """A signed order ready for distribution."""

    order: Order
    compressed: str
    approval_tx: Optional[str] = None
    wrap_tx: Optional[str] = None


@dataclass
class SettlementResult:
    """A confirmed settlement."""

    tx_hash: str
    receipt: TransactionReceipt
    recipient: str
    gas: GasDecision
    simulation: SimulationOutcome
    check: CheckResult
    approval_tx: Optional[str] = None
    wrap_tx: Optional[str] = None


class OrderExecution:
    """
    State machine for one party acting on one order.

    Example:
        ```python
        execution = OrderExecution(pool, config, sender)
        settlement = await execution.take(order)
        print(config.tx_url(settlement.tx_hash))
        ```
    """

    def __init__(
        self,
        pool: RpcPool,
        config: ResolvedBazaarConfig,
        transactions: TransactionSender,
        signer: Optional[TypedDataSigner] = None,
        checker: Optional[OrderChecker] = None,
    ):
        self._pool = pool
        self._config = config
        self._transactions = transactions
        self._signer = signer or transactions.wallet
        self._checker = checker or OrderChecker(pool, config)
        self._lock = asyncio.Lock()

        self.state = ExecutionState.IDLE
        self.history: List[Transition] = [Transition(ExecutionState.IDLE, time.time())]
        self.failure_reason: Optional[str] = None
        self.tx_hashes: Dict[str, str] = {}

    @property
    def address(self) -> str:
        return self._transactions.address

    def _transition(self, state: ExecutionState, detail: Optional[str] = None) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise InvalidTransition(f"Cannot move from {self.state.value} to {state.value}")
        logger.info(f"Execution {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(Transition(state, time.time(), detail))

    def fail(self, reason: str) -> None:
        """Move to FAILED from any non-final state."""
        if self.state in FINAL_STATES:
            raise InvalidTransition(f"Cannot fail from {self.state.value}")
        logger.warning(f"Execution failed in {self.state.value}: {reason}")
        self.failure_reason = reason
        self.state = ExecutionState.FAILED
        self.history.append(Transition(ExecutionState.FAILED, time.time(), reason))

    def _require_idle(self) -> None:
        if self.state is not ExecutionState.IDLE:
            raise InvalidTransition(f"Execution already {self.state.value}")

    @contextmanager
    def _running(self) -> Iterator[None]:
        """
        Guard one run from IDLE so it never ends in a busy state.

        A confirmation timeout or a cancellation before anything was sent
        returns to IDLE; every other error moves to FAILED.
        """
        self._require_idle()
        sent_before = dict(self.tx_hashes)
        try:
            yield
        except ConfirmationTimeout:
            if self.state is not ExecutionState.IDLE:
                self._transition(ExecutionState.IDLE, "confirmation timeout")
            raise
        except asyncio.CancelledError:
            if self.state not in FINAL_STATES:
                if self.tx_hashes == sent_before:
                    if self.state is not ExecutionState.IDLE:
                        self._transition(ExecutionState.IDLE, "cancelled")
                else:
                    self.fail("cancelled after sending a transaction")
            raise
        except Exception as e:
            if self.state not in FINAL_STATES:
                self.fail(str(e) or type(e).__name__)
            raise

    async def _confirm(self, label: str, tx_hash: str) -> TransactionReceipt:
        self.tx_hashes[label] = tx_hash
        receipt = await self._transactions.wait_for_receipt(tx_hash)
        if not receipt.succeeded:
            raise TransactionReverted(tx_hash)
        logger.info(f"{label} confirmed: {tx_hash}")
        return receipt

    async def _approve(self, party: Party, spender: str, amount: int) -> str:
        if party.kind is AssetKind.ERC20:
            data = ERC20_APPROVE.encode(to_checksum_address(spender), amount)
        else:
            data = SET_APPROVAL_FOR_ALL.encode(to_checksum_address(spender), True)
        tx_hash = await self._transactions.send_transaction(party.token, data)
        await self._confirm("approve", tx_hash)
        return tx_hash

    async def _wrap(self, amount: int) -> str:
        tx_hash = await self._transactions.send_transaction(
            self._config.wrapped_native, WETH_DEPOSIT.encode(), value=amount
        )
        await self._confirm("wrap", tx_hash)
        return tx_hash

    async def make(self, order: Order) -> MakeResult:
        """
        Approve, wrap if needed, sign and compress an order as its signer.

        Args:
            order: Unsigned order whose signer wallet is this party

        Returns:
            MakeResult with the signed order and its compressed form

        Raises:
            OrderAlreadyTaken: If the nonce is already consumed
            FeeMismatch: If the order fee differs from the live fee
            InsufficientFunds: If a wrapped-native shortfall cannot be covered
        """
        async with self._lock:
            with self._running():
                return await self._make(order)

    async def _make(self, order: Order) -> MakeResult:
        if order.signer.wallet.lower() != self.address.lower():
            raise OrderNotForWallet(
                f"Order signer {order.signer.wallet} is not this wallet {self.address}"
            )

        swap = order.swap_contract
        nonce_used, live_fee = await asyncio.gather(
            self._pool.call(swap, SWAP_NONCE_USED, order.signer.wallet, order.nonce),
            self._pool.call(swap, SWAP_PROTOCOL_FEE),
        )
        if nonce_used:
            raise OrderAlreadyTaken(order.signer.wallet, order.nonce)
        if int(live_fee) != order.protocol_fee:
            raise FeeMismatch(order.protocol_fee, int(live_fee))

        signer = order.signer
        leg = await read_leg(self._pool, signer, self.address, swap, self._config.known_tokens)
        result = MakeResult(order=order, compressed="")

        if leg.allowance < signer.amount:
            self._transition(ExecutionState.APPROVING)
            result.approval_tx = await self._approve(signer, swap, signer.amount)

        if leg.balance is None:
            if signer.token.lower() == self._config.wrapped_native.lower():
                raise ChainUnavailable(
                    f"Could not read {signer.token} balance for {self.address}"
                )
            logger.warning(f"Signer balance of {signer.token} is unknown; signing anyway")
        elif leg.balance < signer.amount:
            shortfall = signer.amount - leg.balance
            if signer.token.lower() == self._config.wrapped_native.lower():
                native = await self._pool.get_balance(self.address)
                if native < shortfall:
                    raise InsufficientFunds(
                        self.address, signer.token, signer.amount, leg.balance + native
                    )
                self._transition(ExecutionState.WRAPPING, f"shortfall {shortfall}")
                result.wrap_tx = await self._wrap(shortfall)
            else:
                logger.warning(
                    f"Signer balance {leg.balance} is below {signer.amount}; "
                    "takers will see the order as not accepted until it is funded"
                )

        self._transition(ExecutionState.SIGNING)
        signed = await sign_order_with_signer(
            self._signer,
            order,
            domain_name=self._config.domain_name,
            domain_version=self._config.domain_version,
        )
        result.order = signed
        result.compressed = encode_order(signed)
        self._transition(ExecutionState.PUBLISHED, result.compressed)
        return result

    async def approve_sender(self, check: CheckResult) -> str:
        """
        Approve the sender total as a single interactive step.

        The machine returns to IDLE once the approval is confirmed; the
        caller re-runs the check before the next step.
        """
        order = check.order
        async with self._lock:
            with self._running():
                self._transition(ExecutionState.APPROVING)
                tx_hash = await self._approve(
                    order.sender, order.swap_contract, check.total_required
                )
            self._transition(ExecutionState.IDLE, tx_hash)
            return tx_hash

    async def wrap_shortfall(self, check: CheckResult) -> str:
        """Wrap exactly the reported shortfall as a single interactive step.

        Raises:
            InsufficientFunds: If the check found no coverable shortfall
        """
        if not check.sender_leg.balance_known:
            raise ChainUnavailable(
                f"Could not read {check.order.sender.token} balance for {self.address}"
            )
        if not check.wrap_eligible or check.wrap_shortfall <= 0:
            raise InsufficientFunds(
                self.address,
                check.order.sender.token,
                check.total_required,
                check.sender_leg.balance,
            )
        async with self._lock:
            with self._running():
                self._transition(ExecutionState.WRAPPING, f"shortfall {check.wrap_shortfall}")
                tx_hash = await self._wrap(check.wrap_shortfall)
            self._transition(ExecutionState.IDLE, tx_hash)
            return tx_hash

    async def take(
        self,
        order: Order,
        recipient: Optional[str] = None,
        verify_signature: bool = True,
        now: Optional[int] = None,
    ) -> SettlementResult:
        """
        Check, approve, wrap if needed, simulate and settle an order as its sender.

        Args:
            order: Decoded, signed order
            recipient: Address receiving the signer leg (default: this wallet)
            verify_signature: Recover the signer locally before spending gas
            now: Current unix time for the expiry check

        Returns:
            SettlementResult for the confirmed swap

        Raises:
            SignatureInvalid: If the signature does not recover to the signer
            OrderNotForWallet: If the order is restricted to another wallet
            OrderExpired, OrderAlreadyTaken, FeeMismatch: Terminal order states
            InsufficientFunds: If the sender total cannot be covered
            SimulationRejected: If simulation reverted with a recognized reason
            TransactionReverted: If the swap was mined and reverted
            ConfirmationTimeout: If a transaction was not mined in time; the
                machine returns to IDLE and the call may be retried
        """
        async with self._lock:
            with self._running():
                return await self._take(order, recipient, verify_signature, now)

    async def _take(
        self,
        order: Order,
        recipient: Optional[str],
        verify_signature: bool,
        now: Optional[int],
    ) -> SettlementResult:
        if verify_signature and not verify_order_signature(
            order,
            domain_name=self._config.domain_name,
            domain_version=self._config.domain_version,
        ):
            raise SignatureInvalid(f"Signature does not recover to {order.signer.wallet}")

        if not order.is_open and order.sender.wallet.lower() != self.address.lower():
            raise OrderNotForWallet(
                f"Order is restricted to {order.sender.wallet}, not {self.address}"
            )

        check = await self._checker.check(order, self.address, now=now)
        required_kind = check.preflight.required_sender_kind
        if required_kind is not None and required_kind is not order.sender.kind:
            raise ExecutionError(
                f"Sender kind {order.sender.kind.name} does not match "
                f"the contract's required {required_kind.name}"
            )
        if check.check_errors:
            logger.warning(f"check() reported {check.check_errors} before approvals")

        signer = order.signer
        for leg in (check.signer_leg, check.sender_leg):
            if not leg.balance_known:
                raise ChainUnavailable(
                    f"Could not read {leg.party.token} balance for {leg.owner}"
                )
        if not check.maker_balance_ok:
            raise InsufficientFunds(
                signer.wallet, signer.token, signer.amount, check.signer_leg.balance
            )
        if not check.maker_approval_ok:
            raise InsufficientAllowance(
                signer.wallet, signer.token, signer.amount, check.signer_leg.allowance
            )

        approval_tx = None
        wrap_tx = None
        needs_wrap = not check.taker_balance_ok
        if needs_wrap and not check.wrap_eligible:
            raise InsufficientFunds(
                self.address, order.sender.token, check.total_required, check.sender_leg.balance
            )

        if not check.taker_approval_ok:
            self._transition(ExecutionState.APPROVING)
            approval_tx = await self._approve(
                order.sender, order.swap_contract, check.total_required
            )

        if needs_wrap:
            self._transition(ExecutionState.WRAPPING, f"shortfall {check.wrap_shortfall}")
            wrap_tx = await self._wrap(check.wrap_shortfall)

        if approval_tx or wrap_tx:
            check = await self._checker.check(order, self.address, now=now)
            if not check.sender_leg.balance_known:
                raise ChainUnavailable(
                    f"Could not re-read {order.sender.token} balance for {self.address}"
                )
            if not check.taker_balance_ok:
                raise InsufficientFunds(
                    self.address, order.sender.token, check.total_required, check.sender_leg.balance
                )
            if not check.taker_approval_ok:
                raise InsufficientAllowance(
                    self.address, order.sender.token, check.total_required, check.sender_leg.allowance
                )

        recipient = to_checksum_address(recipient or self.address)
        self._transition(ExecutionState.SETTLING)
        data = SWAP_SWAP.encode(recipient, 0, order_to_tuple(order))

        simulation = await self._transactions.simulate(order.swap_contract, data)
        gas = await self._transactions.decide_gas_limit(order.swap_contract, data)
        tx_hash = await self._transactions.send_transaction(
            order.swap_contract, data, gas_limit=gas.gas_limit
        )
        receipt = await self._confirm("swap", tx_hash)
        self._transition(ExecutionState.SETTLED, tx_hash)

        return SettlementResult(
            tx_hash=tx_hash,
            receipt=receipt,
            recipient=recipient,
            gas=gas,
            simulation=simulation,
            check=check,
            approval_tx=approval_tx,
            wrap_tx=wrap_tx,
        )
