"""Preflight checks against live chain state."""

from .engine import OrderChecker
from .pricing import LegPricer
from .types import CheckResult, LegSnapshot, PreflightReport

__all__ = [
    "OrderChecker",
    "LegPricer",
    "CheckResult",
    "LegSnapshot",
    "PreflightReport",
]
