"""USD valuation of order legs through the stable token and a DEX quoter."""

import asyncio
import logging
from dataclasses import replace
from typing import Optional

from eth_abi.exceptions import DecodingError

from ..config import NATIVE_SENTINEL, ResolvedBazaarConfig
from ..errors import ChainError
from ..orders.types import Party
from ..orders.utils import usd_value
from ..chain.abi import QUOTE_EXACT_INPUT_SINGLE
from ..chain.rpc import RpcPool

logger = logging.getLogger(__name__)

STABLE_DECIMALS = 6


class LegPricer:
    """Quotes ERC20 amounts in the configured stable token.

    NFT legs are never priced.
    """

    def __init__(self, pool: RpcPool, config: ResolvedBazaarConfig):
        self._pool = pool
        self._config = config

    def _quote_token(self, token: str) -> str:
        if token.lower() == NATIVE_SENTINEL.lower():
            return self._config.wrapped_native
        return token

    async def _quote_tier(self, token: str, amount: int, fee_tier: int) -> Optional[int]:
        try:
            return await self._pool.call(
                self._config.quoter,
                QUOTE_EXACT_INPUT_SINGLE,
                (token, self._config.stable_token, amount, fee_tier, 0),
            )
        except (ChainError, DecodingError, ValueError) as e:
            logger.debug(f"No quote for {token} at fee tier {fee_tier}: {e}")
            return None

    async def quote(self, token: str, amount: int) -> Optional[int]:
        """Stable-token base units for ``amount`` of ``token``, or None."""
        token = self._quote_token(token)
        if token.lower() == self._config.stable_token.lower():
            return amount
        if amount <= 0:
            return 0

        tiers = self._config.quote_fee_tiers
        quotes = await asyncio.gather(
            *(self._quote_tier(token, amount, tier) for tier in tiers)
        )
        for quoted in quotes:
            if quoted is not None:
                return int(quoted)
        return None

    async def value(self, party: Party, amount: Optional[int] = None) -> Optional[float]:
        """USD value of a leg, or None if it cannot be priced."""
        if party.kind.is_nft:
            return None
        quoted = await self.quote(party.token, party.amount if amount is None else amount)
        if quoted is None:
            return None
        stable_leg = replace(party, token=self._config.stable_token, amount=quoted)
        return usd_value(stable_leg, STABLE_DECIMALS, 1.0)
