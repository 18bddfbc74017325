"""Drivers for the execution machine: maker and taker agents, interactive session."""

from .distribution import build_cast_payload, cast_from_maker_payload
from .maker import MakerOptions, build_maker_payload, create_signed_order, order_from_payload
from .session import PrimaryAction, TradeSession
from .taker import load_order, read_balances, settle_order

__all__ = [
    "build_cast_payload",
    "cast_from_maker_payload",
    "MakerOptions",
    "build_maker_payload",
    "create_signed_order",
    "order_from_payload",
    "PrimaryAction",
    "TradeSession",
    "load_order",
    "read_balances",
    "settle_order",
]
