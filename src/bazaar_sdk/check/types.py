"""Check Types

Snapshots produced by the preflight engine. They are never persisted and go
stale after any state-changing transaction.
"""

from dataclasses import dataclass, field
from typing import List, Optional

from ..orders.types import AssetKind, Order, Party


@dataclass
class PreflightReport:
    """Live contract view of an order, as reported by the settlement contract."""

    swap_contract: str
    sender_wallet: str
    """Wallet passed to check() as the would-be sender."""

    endpoint: Optional[str]
    protocol_fee: int
    """Live fee in basis points."""

    required_sender_kind: Optional[AssetKind]
    nonce_used: bool
    check_errors: List[str] = field(default_factory=list)
    """Errors from check(), decoded from bytes32 where possible."""

    raw_errors_hex: List[str] = field(default_factory=list)
    nft_approval_fallback: bool = False
    """True when an allowance error was suppressed by isApprovedForAll."""


@dataclass
class LegSnapshot:
    """One leg of the order and what its owner holds and has approved."""

    party: Party
    owner: Optional[str]
    symbol: str
    decimals: int
    required: int
    """Amount the owner must hold and approve (sender total for the sender leg)."""

    balance: Optional[int] = 0
    """None when the owner balance could not be read."""

    allowance: int = 0
    balance_ok: bool = False
    approval_ok: bool = False
    usd_value: Optional[float] = None

    @property
    def kind(self) -> AssetKind:
        return self.party.kind

    @property
    def balance_known(self) -> bool:
        return self.balance is not None

    @property
    def shortfall(self) -> Optional[int]:
        if self.balance is None:
            return None
        return max(self.required - self.balance, 0)


@dataclass
class CheckResult:
    """Preflight findings for one viewer.

    Consumed by the execution machine as transition guards.
    """

    order: Order
    viewer: Optional[str]
    preflight: PreflightReport
    signer_leg: LegSnapshot
    sender_leg: LegSnapshot
    fee_amount: int
    total_required: int
    not_your_order: bool = False
    """True when a restricted order is viewed by a wallet other than its sender."""

    native_balance: Optional[int] = None
    wrap_shortfall: int = 0
    wrap_eligible: bool = False

    @property
    def protocol_fee_bps(self) -> int:
        return self.preflight.protocol_fee

    @property
    def maker_balance_ok(self) -> bool:
        return self.signer_leg.balance_ok

    @property
    def maker_approval_ok(self) -> bool:
        return self.signer_leg.approval_ok

    @property
    def maker_accepted(self) -> bool:
        return self.maker_balance_ok and self.maker_approval_ok

    @property
    def taker_balance_ok(self) -> bool:
        return self.sender_leg.balance_ok

    @property
    def taker_approval_ok(self) -> bool:
        return self.sender_leg.approval_ok

    @property
    def check_errors(self) -> List[str]:
        return self.preflight.check_errors

    @property
    def ready(self) -> bool:
        """True when nothing stands between the viewer and settlement."""
        return (
            not self.not_your_order
            and self.maker_accepted
            and self.taker_balance_ok
            and self.taker_approval_ok
            and not self.check_errors
        )

    def summary(self) -> dict:
        """JSON-friendly view, amounts as strings."""
        return {
            "swapContract": self.preflight.swap_contract,
            "endpoint": self.preflight.endpoint,
            "protocolFeeBps": self.protocol_fee_bps,
            "nonceUsed": self.preflight.nonce_used,
            "signerSymbol": self.signer_leg.symbol,
            "senderSymbol": self.sender_leg.symbol,
            "signerDecimals": self.signer_leg.decimals,
            "senderDecimals": self.sender_leg.decimals,
            "makerBalanceOk": self.maker_balance_ok,
            "makerApprovalOk": self.maker_approval_ok,
            "makerAccepted": self.maker_accepted,
            "takerBalanceOk": self.taker_balance_ok,
            "takerApprovalOk": self.taker_approval_ok,
            "takerBalance": (
                str(self.sender_leg.balance) if self.sender_leg.balance_known else "unknown"
            ),
            "takerAllowance": str(self.sender_leg.allowance),
            "feeAmount": str(self.fee_amount),
            "totalRequired": str(self.total_required),
            "wrapShortfall": str(self.wrap_shortfall),
            "wrapEligible": self.wrap_eligible,
            "notYourOrder": self.not_your_order,
            "checkErrors": list(self.check_errors),
            "nftApprovalFallback": self.preflight.nft_approval_fallback,
            "signerUsdValue": self.signer_leg.usd_value,
            "senderUsdValue": self.sender_leg.usd_value,
        }
