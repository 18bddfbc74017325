"""Error taxonomy for the Bazaar order protocol.

Terminal order states are never retried. Recoverable states drive the next
execution step. Chain errors are retried by endpoint fallback before they
surface.
"""

from typing import Any, List, Optional


class BazaarError(Exception):
    """Base exception for the SDK."""

    pass


class MalformedPayload(BazaarError, ValueError):
    """A compressed order could not be decompressed or split into fields."""

    pass


class TerminalOrderState(BazaarError):
    """The order can no longer be settled."""

    reason = "terminal"


class OrderExpired(TerminalOrderState):
    """Current time is at or past the order expiry."""

    reason = "expired"

    def __init__(self, expiry: int, now: int):
        super().__init__(f"Order expired at {expiry} (now {now})")
        self.expiry = expiry
        self.now = now


class OrderAlreadyTaken(TerminalOrderState):
    """The signer's nonce has been consumed on-chain."""

    reason = "already_taken"

    def __init__(self, signer_wallet: str, nonce: int):
        super().__init__(f"Nonce {nonce} already used by {signer_wallet}")
        self.signer_wallet = signer_wallet
        self.nonce = nonce


class FeeMismatch(TerminalOrderState):
    """The order's protocol fee differs from the live contract fee."""

    reason = "fee_mismatch"

    def __init__(self, order_fee: int, live_fee: int):
        super().__init__(
            f"Protocol fee mismatch: order has {order_fee} bps, contract has {live_fee} bps"
        )
        self.order_fee = order_fee
        self.live_fee = live_fee


class RecoverableOrderState(BazaarError):
    """A shortfall the next execution step can fix."""

    pass


class InsufficientFunds(RecoverableOrderState):
    """Wallet balance is below the required amount."""

    def __init__(self, wallet: str, token: str, required: int, available: int):
        super().__init__(
            f"Insufficient balance of {token} for {wallet}: need {required}, have {available}"
        )
        self.wallet = wallet
        self.token = token
        self.required = required
        self.available = available


class InsufficientAllowance(RecoverableOrderState):
    """Allowance to the settlement contract is below the required amount."""

    def __init__(self, wallet: str, token: str, required: int, allowance: int):
        super().__init__(
            f"Allowance of {token} for {wallet} is {allowance}, need {required}"
        )
        self.wallet = wallet
        self.token = token
        self.required = required
        self.allowance = allowance


class ChainError(BazaarError):
    """Base class for chain access failures."""

    pass


class RpcError(ChainError):
    """A JSON-RPC error object returned by an endpoint."""

    def __init__(self, code: Optional[int], message: str, data: Any = None):
        super().__init__(f"RPC error {code}: {message}")
        self.code = code
        self.message = message
        self.data = data

    @classmethod
    def from_payload(cls, payload: Any) -> "RpcError":
        if not isinstance(payload, dict):
            return cls(None, str(payload))
        code = payload.get("code")
        message = str(payload.get("message", ""))
        data = payload.get("data")
        if code == 3 or "revert" in message.lower():
            return ContractReverted(code, message, data)
        return cls(code, message, data)


class ContractReverted(RpcError):
    """The call executed and reverted; every endpoint would agree."""

    pass


class ChainUnavailable(ChainError):
    """Every configured endpoint failed."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(f"{message}: {last_error}" if last_error else message)
        self.last_error = last_error


class ExecutionError(BazaarError):
    """Base class for execution failures."""

    pass


class InvalidTransition(ExecutionError):
    """The execution state machine was asked for a disallowed transition."""

    pass


class OrderNotForWallet(ExecutionError):
    """A restricted order was presented to a different sender wallet."""

    pass


class SignatureInvalid(ExecutionError):
    """The order signature does not recover to the signer wallet."""

    pass


class SimulationRejected(ExecutionError):
    """A pre-submission simulation reverted with a recognized reason."""

    def __init__(self, reason: str):
        super().__init__(f"Simulation rejected: {reason}")
        self.reason = reason


class GasCeilingExceeded(ExecutionError):
    """The gas estimate is above the configured ceiling."""

    def __init__(self, estimated: int, ceiling: int):
        super().__init__(f"Estimated gas {estimated} exceeds max gas limit {ceiling}")
        self.estimated = estimated
        self.ceiling = ceiling


class TransactionReverted(ExecutionError):
    """A submitted transaction was mined with status 0."""

    def __init__(self, tx_hash: str):
        super().__init__(f"Transaction reverted: {tx_hash}")
        self.tx_hash = tx_hash


class ConfirmationTimeout(ExecutionError):
    """A submitted transaction was not mined within the timeout."""

    def __init__(self, tx_hash: str, timeout: float):
        super().__init__(f"Confirmation timeout after {timeout}s for {tx_hash}")
        self.tx_hash = tx_hash
        self.timeout = timeout


__all__: List[str] = [
    "BazaarError",
    "MalformedPayload",
    "TerminalOrderState",
    "OrderExpired",
    "OrderAlreadyTaken",
    "FeeMismatch",
    "RecoverableOrderState",
    "InsufficientFunds",
    "InsufficientAllowance",
    "ChainError",
    "RpcError",
    "ContractReverted",
    "ChainUnavailable",
    "ExecutionError",
    "InvalidTransition",
    "OrderNotForWallet",
    "SignatureInvalid",
    "SimulationRejected",
    "GasCeilingExceeded",
    "TransactionReverted",
    "ConfirmationTimeout",
]
