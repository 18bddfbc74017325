"""Order execution state machine."""

from .machine import (
    ExecutionState,
    OrderExecution,
    MakeResult,
    SettlementResult,
    Transition,
)

__all__ = [
    "ExecutionState",
    "OrderExecution",
    "MakeResult",
    "SettlementResult",
    "Transition",
]
