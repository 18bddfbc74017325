"""Tests for the order execution state machine."""

import asyncio
from dataclasses import replace

import pytest
from eth_account import Account

from bazaar_sdk.check import OrderChecker
from bazaar_sdk.errors import (
    ChainUnavailable,
    ConfirmationTimeout,
    FeeMismatch,
    InsufficientAllowance,
    InsufficientFunds,
    InvalidTransition,
    OrderAlreadyTaken,
    OrderNotForWallet,
    SignatureInvalid,
    SimulationRejected,
    TransactionReverted,
)
from bazaar_sdk.execution import ExecutionState, OrderExecution
from bazaar_sdk.orders import decode_order, verify_order_signature

from fakes import (
    FEE_WALLET,
    MAX_UINT,
    OTHER_KEY,
    TOKEN_A,
    TOKEN_B,
    build_order,
    revert_error,
)

OTHER = Account.from_key(OTHER_KEY).address


@pytest.fixture
def taker(pool, config, taker_tx):
    return OrderExecution(pool, config, taker_tx)


@pytest.fixture
def maker(pool, config, maker_tx):
    return OrderExecution(pool, config, maker_tx)


def _states(execution):
    return [transition.state for transition in execution.history]


class TestTake:
    """Tests for settling an order as its sender."""

    @pytest.mark.asyncio
    async def test_approve_then_settle(self, taker, funded, swap, maker_wallet, taker_wallet):
        order = build_order(swap, maker_wallet.address)
        settlement = await taker.take(order)

        assert _states(taker) == [
            ExecutionState.IDLE,
            ExecutionState.APPROVING,
            ExecutionState.SETTLING,
            ExecutionState.SETTLED,
        ]
        assert settlement.receipt.succeeded
        assert settlement.approval_tx == taker.tx_hashes["approve"]
        assert settlement.tx_hash == taker.tx_hashes["swap"]
        assert settlement.recipient == taker_wallet.address
        assert settlement.gas.gas_limit == 216_000
        assert settlement.check.taker_approval_ok

        tkb = funded.token(TOKEN_B)
        assert tkb.balance(maker_wallet.address) == 300_000_000
        assert tkb.balance(FEE_WALLET) == 1_500_000
        assert tkb.balance(taker_wallet.address) == 1_000_000_000 - 301_500_000
        assert funded.token(TOKEN_A).balance(taker_wallet.address) == 1_500_000_000_000_000_000
        assert (maker_wallet.address.lower(), 1) in funded.used_nonces

    @pytest.mark.asyncio
    async def test_approval_covers_fee(self, taker, funded, swap, maker_wallet, taker_wallet):
        await taker.take(build_order(swap, maker_wallet.address))

        approve_tx = funded.sent[0][1]
        assert approve_tx["to"].lower() == TOKEN_B.lower()
        # whole approval consumed by amount plus fee
        assert funded.allowance(TOKEN_B, taker_wallet.address) == 0

    @pytest.mark.asyncio
    async def test_already_approved_goes_straight_to_settle(
        self, taker, funded, swap, maker_wallet, taker_wallet
    ):
        funded.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=MAX_UINT)
        settlement = await taker.take(build_order(swap, maker_wallet.address))

        assert settlement.approval_tx is None
        assert _states(taker)[1] is ExecutionState.SETTLING
        assert len(funded.sent) == 1

    @pytest.mark.asyncio
    async def test_wrap_shortfall_then_settle(
        self, taker, funded, swap, config, maker_wallet, taker_wallet
    ):
        weth = config.wrapped_native
        funded.fund(weth, taker_wallet.address, 10**17, allowance=MAX_UINT)
        funded.native[taker_wallet.address.lower()] = 2 * 10**18
        order = build_order(swap, maker_wallet.address, sender_token=weth, sender_amount=10**18)

        settlement = await taker.take(order)

        assert _states(taker) == [
            ExecutionState.IDLE,
            ExecutionState.WRAPPING,
            ExecutionState.SETTLING,
            ExecutionState.SETTLED,
        ]
        shortfall = 10**18 + 5 * 10**15 - 10**17
        assert funded.sent[0][1]["value"] == shortfall
        assert settlement.wrap_tx is not None
        assert funded.native[taker_wallet.address.lower()] == 2 * 10**18 - shortfall
        assert funded.token(weth).balance(maker_wallet.address) == 10**18

    @pytest.mark.asyncio
    async def test_uncoverable_shortfall(self, taker, funded, swap, config, maker_wallet):
        order = build_order(
            swap, maker_wallet.address, sender_token=config.wrapped_native, sender_amount=10**18
        )
        with pytest.raises(InsufficientFunds):
            await taker.take(order)

        assert taker.state is ExecutionState.FAILED
        assert funded.sent == []

    @pytest.mark.asyncio
    async def test_custom_recipient(self, taker, funded, swap, maker_wallet):
        funded.fund(TOKEN_B, taker.address, 1_000 * 10**6, allowance=MAX_UINT)
        await taker.take(build_order(swap, maker_wallet.address), recipient=OTHER)

        assert funded.token(TOKEN_A).balance(OTHER) == 1_500_000_000_000_000_000


class TestTakeRefusals:
    """Tests for orders the taker must not spend gas on."""

    @pytest.mark.asyncio
    async def test_fee_mismatch_fails_without_sending(self, taker, funded, swap, maker_wallet):
        with pytest.raises(FeeMismatch):
            await taker.take(build_order(swap, maker_wallet.address, protocol_fee=30))

        assert taker.state is ExecutionState.FAILED
        assert "fee" in taker.failure_reason.lower()
        assert funded.sent == []
        assert ExecutionState.SETTLING not in _states(taker)

    @pytest.mark.asyncio
    async def test_unknown_balance_never_wraps(
        self, taker, funded, swap, config, maker_wallet, taker_wallet
    ):
        weth = config.wrapped_native
        total = 10**18 + 5 * 10**15
        funded.fund(weth, taker_wallet.address, total - 1, allowance=MAX_UINT)
        funded.native[taker_wallet.address.lower()] = 5 * 10**18
        funded.errors[f"call:balanceOf:{weth.lower()}"] = {
            "code": -32000,
            "message": "header not found",
        }
        order = build_order(swap, maker_wallet.address, sender_token=weth, sender_amount=10**18)

        with pytest.raises(ChainUnavailable, match="balance"):
            await taker.take(order)

        assert funded.sent == []
        assert funded.native[taker_wallet.address.lower()] == 5 * 10**18
        assert ExecutionState.WRAPPING not in _states(taker)

    @pytest.mark.asyncio
    async def test_tampered_order(self, taker, funded, swap, maker_wallet):
        order = build_order(swap, maker_wallet.address)
        tampered = replace(order, signer=replace(order.signer, amount=order.signer.amount * 2))

        with pytest.raises(SignatureInvalid):
            await taker.take(tampered)
        assert taker.state is ExecutionState.FAILED
        assert funded.methods == []

    @pytest.mark.asyncio
    async def test_restricted_to_another_wallet(self, taker, funded, swap, maker_wallet):
        order = build_order(swap, maker_wallet.address, sender_wallet=OTHER)

        with pytest.raises(OrderNotForWallet):
            await taker.take(order)
        assert funded.sent == []

    @pytest.mark.asyncio
    async def test_maker_not_approved(self, taker, chain, swap, maker_wallet, taker_wallet):
        chain.fund(TOKEN_A, maker_wallet.address, 10 * 10**18, allowance=0)
        chain.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=MAX_UINT)

        with pytest.raises(InsufficientAllowance) as exc_info:
            await taker.take(build_order(swap, maker_wallet.address))
        assert exc_info.value.wallet == maker_wallet.address
        assert chain.sent == []

    @pytest.mark.asyncio
    async def test_simulation_rejected(self, taker, funded, swap, maker_wallet, taker_wallet):
        funded.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=MAX_UINT)
        funded.errors["call:swap"] = revert_error("SenderInvalid()")

        with pytest.raises(SimulationRejected, match="SenderInvalid"):
            await taker.take(build_order(swap, maker_wallet.address))
        assert taker.state is ExecutionState.FAILED
        assert funded.sent == []

    @pytest.mark.asyncio
    async def test_inconclusive_simulation_proceeds(
        self, taker, funded, swap, maker_wallet, taker_wallet
    ):
        funded.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=MAX_UINT)
        funded.errors["call:swap"] = revert_error()
        funded.errors["eth_estimateGas"] = revert_error()

        settlement = await taker.take(build_order(swap, maker_wallet.address))

        assert settlement.simulation.inconclusive
        assert settlement.gas.used_fallback
        assert funded.sent[0][1]["gas"] == 650_000
        assert taker.state is ExecutionState.SETTLED

    @pytest.mark.asyncio
    async def test_reverted_swap(self, taker, funded, swap, maker_wallet, taker_wallet):
        funded.fund(TOKEN_B, taker_wallet.address, 1_000 * 10**6, allowance=MAX_UINT)
        funded.revert_swaps = True

        with pytest.raises(TransactionReverted):
            await taker.take(build_order(swap, maker_wallet.address))
        assert taker.state is ExecutionState.FAILED


class TestRecovery:
    """Tests for confirmation timeouts and reuse."""

    @pytest.mark.asyncio
    async def test_timeout_returns_to_idle(self, taker, funded, swap, maker_wallet):
        funded.withhold_receipts = True
        order = build_order(swap, maker_wallet.address)

        with pytest.raises(ConfirmationTimeout):
            await taker.take(order)
        assert taker.state is ExecutionState.IDLE
        assert _states(taker)[-2:] == [ExecutionState.APPROVING, ExecutionState.IDLE]

        # the approval landed late; a retry re-checks and settles
        funded.withhold_receipts = False
        settlement = await taker.take(order)
        assert settlement.approval_tx is None
        assert taker.state is ExecutionState.SETTLED

    @pytest.mark.asyncio
    async def test_settled_machine_cannot_be_reused(self, taker, funded, swap, maker_wallet):
        funded.fund(TOKEN_B, taker.address, 1_000 * 10**6, allowance=MAX_UINT)
        order = build_order(swap, maker_wallet.address)
        await taker.take(order)

        with pytest.raises(InvalidTransition):
            await taker.take(order)
        with pytest.raises(InvalidTransition):
            taker.fail("late")

    @pytest.mark.asyncio
    async def test_fail_from_idle(self, taker):
        taker.fail("user cancelled")

        assert taker.state is ExecutionState.FAILED
        assert taker.failure_reason == "user cancelled"

    @pytest.mark.asyncio
    async def test_interactive_steps(self, taker, pool, config, funded, swap, maker_wallet):
        """Approve and wrap as separate steps, each returning to IDLE."""
        checker = OrderChecker(pool, config)
        order = build_order(swap, maker_wallet.address)

        check = await checker.check(order, taker.address)
        tx_hash = await taker.approve_sender(check)
        assert taker.state is ExecutionState.IDLE
        assert funded.allowance(TOKEN_B, taker.address) == check.total_required
        assert taker.tx_hashes["approve"] == tx_hash

        check = await checker.check(order, taker.address)
        assert check.ready
        with pytest.raises(InsufficientFunds):
            await taker.wrap_shortfall(check)

    @pytest.mark.asyncio
    async def test_rejected_signature_fails_instead_of_sticking(
        self, taker, pool, config, funded, swap, maker_wallet, taker_wallet
    ):
        check = await OrderChecker(pool, config).check(
            build_order(swap, maker_wallet.address), taker.address
        )
        taker_wallet.rejecting = True

        with pytest.raises(RuntimeError, match="rejected"):
            await taker.approve_sender(check)

        assert taker.state is ExecutionState.FAILED
        assert "rejected" in taker.failure_reason
        assert funded.sent == []

    @pytest.mark.asyncio
    async def test_rejected_signature_during_take(
        self, taker, funded, swap, maker_wallet, taker_wallet
    ):
        taker_wallet.rejecting = True

        with pytest.raises(RuntimeError):
            await taker.take(build_order(swap, maker_wallet.address))

        assert taker.state is ExecutionState.FAILED
        assert ExecutionState.APPROVING in _states(taker)

    @pytest.mark.asyncio
    async def test_cancel_before_sending_returns_to_idle(
        self, taker, taker_tx, pool, config, funded, swap, maker_wallet, monkeypatch
    ):
        order = build_order(swap, maker_wallet.address)
        check = await OrderChecker(pool, config).check(order, taker.address)

        async def never_sends(*args, **kwargs):
            await asyncio.Event().wait()

        monkeypatch.setattr(taker_tx, "send_transaction", never_sends)
        task = asyncio.ensure_future(taker.approve_sender(check))
        while taker.state is not ExecutionState.APPROVING:
            await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert taker.state is ExecutionState.IDLE
        assert _states(taker)[-2:] == [ExecutionState.APPROVING, ExecutionState.IDLE]

        monkeypatch.undo()
        await taker.approve_sender(check)
        assert funded.allowance(TOKEN_B, taker.address) == check.total_required


class TestMake:
    """Tests for approving and signing as the maker."""

    @pytest.mark.asyncio
    async def test_approve_sign_publish(self, maker, chain, swap, maker_wallet):
        chain.fund(TOKEN_A, maker_wallet.address, 10 * 10**18, allowance=0)
        unsigned = build_order(swap, maker_wallet.address, signed_by=None)

        result = await maker.make(unsigned)

        assert _states(maker) == [
            ExecutionState.IDLE,
            ExecutionState.APPROVING,
            ExecutionState.SIGNING,
            ExecutionState.PUBLISHED,
        ]
        assert chain.allowance(TOKEN_A, maker_wallet.address) == unsigned.signer.amount
        assert result.approval_tx is not None
        assert result.order.is_signed

        decoded = decode_order(result.compressed)
        assert decoded == result.order
        assert verify_order_signature(decoded, expected_signer=maker_wallet.address)

    @pytest.mark.asyncio
    async def test_already_approved_signs_directly(self, maker, funded, swap, maker_wallet):
        result = await maker.make(build_order(swap, maker_wallet.address, signed_by=None))

        assert result.approval_tx is None
        assert funded.sent == []
        assert maker.state is ExecutionState.PUBLISHED

    @pytest.mark.asyncio
    async def test_unfunded_non_native_still_signs(self, maker, chain, swap, maker_wallet):
        chain.fund(TOKEN_A, maker_wallet.address, 0, allowance=MAX_UINT)
        result = await maker.make(build_order(swap, maker_wallet.address, signed_by=None))
        assert result.order.is_signed

    @pytest.mark.asyncio
    async def test_wrap_shortfall(self, maker, chain, swap, config, maker_wallet):
        weth = config.wrapped_native
        chain.native[maker_wallet.address.lower()] = 3 * 10**18
        unsigned = build_order(
            swap, maker_wallet.address, signer_token=weth, signer_amount=10**18, signed_by=None
        )

        result = await maker.make(unsigned)

        assert result.wrap_tx is not None
        assert ExecutionState.WRAPPING in _states(maker)
        assert chain.token(weth).balance(maker_wallet.address) == 10**18
        assert chain.allowance(weth, maker_wallet.address) == 10**18

    @pytest.mark.asyncio
    async def test_uncoverable_wrap(self, maker, chain, swap, config, maker_wallet):
        weth = config.wrapped_native
        chain.native[maker_wallet.address.lower()] = 10**17
        unsigned = build_order(
            swap, maker_wallet.address, signer_token=weth, signer_amount=10**18, signed_by=None
        )

        with pytest.raises(InsufficientFunds):
            await maker.make(unsigned)
        assert maker.state is ExecutionState.FAILED

    @pytest.mark.asyncio
    async def test_wrong_wallet(self, maker, funded, swap):
        with pytest.raises(OrderNotForWallet):
            await maker.make(build_order(swap, OTHER, signed_by=None))

    @pytest.mark.asyncio
    async def test_live_fee_drift(self, maker, funded, swap, maker_wallet):
        funded.protocol_fee = 7
        with pytest.raises(FeeMismatch):
            await maker.make(build_order(swap, maker_wallet.address, signed_by=None))
        assert maker.state is ExecutionState.FAILED


class TestEndToEnd:
    """Tests for one order from the maker's signature to settlement."""

    @pytest.mark.asyncio
    async def test_publish_check_take_then_taken(
        self, pool, config, maker, taker, funded, swap, maker_wallet, taker_wallet
    ):
        published = await maker.make(build_order(swap, maker_wallet.address, signed_by=None))
        order = decode_order(published.compressed)
        checker = OrderChecker(pool, config)

        before = await checker.check(order, taker_wallet.address)
        assert not before.taker_approval_ok
        assert before.total_required == 301_500_000

        settlement = await taker.take(order)
        assert settlement.receipt.succeeded

        with pytest.raises(OrderAlreadyTaken):
            await checker.check(order, taker_wallet.address)
