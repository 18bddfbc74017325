"""Chain access: ABI helpers, endpoint-fallback RPC, token reads and transactions."""

from .rpc import RpcPool, RpcCall, RpcResponse, RpcResult, BatchResponse
from .tokens import (
    TokenSnapshot,
    LegState,
    read_token,
    read_leg,
    read_token_metadata,
    detect_token_kind,
)
from .transactions import (
    TransactionSender,
    TransactionReceipt,
    GasPolicy,
    GasDecision,
    SimulationOutcome,
    is_infrastructure_error,
)

__all__ = [
    "RpcPool",
    "RpcCall",
    "RpcResponse",
    "RpcResult",
    "BatchResponse",
    "TokenSnapshot",
    "LegState",
    "read_token",
    "read_leg",
    "read_token_metadata",
    "detect_token_kind",
    "TransactionSender",
    "TransactionReceipt",
    "GasPolicy",
    "GasDecision",
    "SimulationOutcome",
    "is_infrastructure_error",
]
