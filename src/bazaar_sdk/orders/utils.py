"""Fee, amount and display utilities for Bazaar orders.

Fee arithmetic is integer-only and must match the settlement contract.
Display helpers are lossy and never feed back into amounts.
"""

import math
import random
import time
from decimal import Decimal, InvalidOperation
from typing import Optional, Tuple

from .types import AssetKind, Order, Party

# Basis point denominator used by the Swap contract
BPS_DENOMINATOR = 10_000

# Display suffixes for thousands, millions, ...
AMOUNT_SUFFIXES = ("", "k", "M", "B", "T", "Q")


def calculate_fee(sender_amount: int, fee_bps: int) -> int:
    """Calculate the protocol fee charged on the sender leg.

    Args:
        sender_amount: Sender amount in token base units
        fee_bps: Fee in basis points (e.g., 50 = 0.5%)

    Returns:
        Fee amount in token base units, floor-divided like the contract
    """
    if sender_amount < 0 or fee_bps < 0:
        raise ValueError("Amount and fee must be non-negative")
    return (sender_amount * fee_bps) // BPS_DENOMINATOR


def required_total(sender_amount: int, fee_bps: int) -> int:
    """Total the sender must hold and approve: amount plus protocol fee."""
    return sender_amount + calculate_fee(sender_amount, fee_bps)


def sender_total(order: Order, fee_bps: Optional[int] = None) -> int:
    """Sender total for an order, including any affiliate amount.

    Args:
        order: The order being settled
        fee_bps: Live fee to use instead of the recorded one
    """
    bps = order.protocol_fee if fee_bps is None else fee_bps
    return required_total(order.sender.amount, bps) + order.affiliate_amount


def parse_units(amount: str, decimals: int) -> int:
    """Parse a human-readable amount into base units.

    Args:
        amount: Decimal string (e.g., "1.5")
        decimals: Token decimals

    Returns:
        Integer amount in base units

    Raises:
        ValueError: If the amount is not a number, is negative, or has more
            fractional digits than the token supports
    """
    try:
        value = Decimal(str(amount).strip())
    except InvalidOperation:
        raise ValueError(f"Invalid amount: {amount}")
    if not value.is_finite() or value < 0:
        raise ValueError(f"Invalid amount: {amount}")
    scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise ValueError(f"Amount {amount} has more than {decimals} decimals")
    return int(scaled)


def format_units(amount: int, decimals: int) -> str:
    """Format base units as an exact decimal string (e.g., 1500000, 6 -> "1.5")."""
    if decimals == 0:
        return str(amount)
    sign = "-" if amount < 0 else ""
    whole, frac = divmod(abs(amount), 10**decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0")
    return f"{sign}{whole}.{frac_text}" if frac_text else f"{sign}{whole}"


def format_bps(bps: int) -> str:
    """Format basis points to percentage string (e.g., 50 -> "0.5%")."""
    return f"{bps / 100}%"


def generate_nonce(now: Optional[int] = None) -> int:
    """Pick a fresh nonce: unix seconds times 1e6 plus a random suffix."""
    seconds = int(time.time()) if now is None else now
    return seconds * 1_000_000 + random.randrange(1_000_000)


def describe_amount(party: Party, decimals: int = 18) -> str:
    """Human description of a leg, dispatched on its kind."""
    if party.kind is AssetKind.ERC20:
        return format_units(party.amount, decimals)
    if party.kind is AssetKind.ERC721:
        return f"#{party.id}"
    return f"{party.amount} x #{party.id}"


def usd_value(party: Party, decimals: int, unit_price: Optional[float]) -> Optional[float]:
    """USD value of a leg; NFT kinds are never priced."""
    if party.kind is not AssetKind.ERC20 or unit_price is None:
        return None
    return float(Decimal(party.amount).scaleb(-decimals)) * unit_price


def short_address(address: str) -> str:
    return f"{address[:6]}...{address[-4:]}" if address else ""


def _trim(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def compact_amount(value: float, digits: int = 3) -> str:
    """Compact display with k/M/B suffixes (e.g., 1234567 -> "1.235M")."""
    n = float(value)
    if not math.isfinite(n):
        return str(value)
    size = abs(n)
    if size >= 1_000_000_000:
        return f"{_trim(f'{n / 1_000_000_000:.{digits}f}')}B"
    if size >= 1_000_000:
        return f"{_trim(f'{n / 1_000_000:.{digits}f}')}M"
    if size >= 1_000:
        return f"{_trim(f'{n / 1_000:.{digits}f}')}k"
    if size >= 1:
        return _trim(f"{n:.{digits}f}")
    return _trim(f"{n:.3g}")


def format_token_amount_parts(value: float) -> Tuple[str, str]:
    """Split a display amount into a rounded number and a suffix.

    Prefers a four-digit integer in the next lower tier, so 1_234_567
    renders as 1235k.
    """
    n = float(value)
    if not math.isfinite(n):
        return str(value), ""
    size = abs(n)
    tier = 0
    while tier < len(AMOUNT_SUFFIXES) - 1 and size >= 1000 ** (tier + 1):
        tier += 1
    scaled = n / 1000**tier
    if tier > 0 and abs(scaled) < 1000:
        down = n / 1000 ** (tier - 1)
        if abs(down) < 10_000:
            tier -= 1
            scaled = down
    return str(int(round(scaled))), AMOUNT_SUFFIXES[tier]


def format_token_amount(value: float) -> str:
    number, suffix = format_token_amount_parts(value)
    return f"{number}{suffix}"
