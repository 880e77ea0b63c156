"""SwapExecutor — bounded, partial-fill conversion of base into target asset.

One trade per action:
- amount_in = min(available balance, max_amount_per_action)
- no minimum output; the execution price is capped by the price guard
- a partial fill at the ceiling is a success, not a failure
"""

from __future__ import annotations

import logging
from typing import Any, Dict

from buyburn.config_store import ConfigStore, Configuration
from buyburn.constants import DEFAULT_FEE_TIER, ENGINE_ADDRESS
from buyburn.errors import NoFundsAvailable
from buyburn.exchange import ExchangePool

logger = logging.getLogger(__name__)


class SwapResult:
    def __init__(
        self,
        amount_in: int,
        amount_spent: int,
        amount_out: int,
        limit_sqrt_price_x96: int,
        limit_reached: bool,
    ) -> None:
        self.amount_in = amount_in
        self.amount_spent = amount_spent
        self.amount_out = amount_out
        self.limit_sqrt_price_x96 = limit_sqrt_price_x96
        self.limit_reached = limit_reached

    @property
    def partial(self) -> bool:
        return self.amount_spent < self.amount_in

    def to_dict(self) -> Dict[str, Any]:
        return {
            "amount_in": self.amount_in,
            "amount_spent": self.amount_spent,
            "amount_out": self.amount_out,
            "limit_sqrt_price_x96": self.limit_sqrt_price_x96,
            "limit_reached": self.limit_reached,
        }


def compute_amount_in(available_balance: int, config: Configuration) -> int:
    return min(available_balance, config.max_amount_per_action)


class SwapExecutor:
    """Submits the capped trade and records the action timestamp."""

    def __init__(
        self,
        pool: ExchangePool,
        store: ConfigStore,
        base_asset: str,
        target_asset: str,
        fee_tier: int = DEFAULT_FEE_TIER,
        holder: str = ENGINE_ADDRESS,
    ) -> None:
        self.pool = pool
        self.store = store
        self.base_asset = base_asset
        self.target_asset = target_asset
        self.fee_tier = fee_tier
        self.holder = holder

    def swap(
        self,
        available_balance: int,
        config: Configuration,
        limit_sqrt_price_x96: int,
        now: int,
    ) -> SwapResult:
        amount_in = compute_amount_in(available_balance, config)
        if amount_in == 0:
            raise NoFundsAvailable()

        trade = self.pool.trade(
            token_in=self.base_asset,
            token_out=self.target_asset,
            fee_tier=self.fee_tier,
            payer=self.holder,
            recipient=self.holder,
            amount_in=amount_in,
            min_amount_out=0,
            sqrt_price_limit_x96=limit_sqrt_price_x96,
        )

        self.store.record_action_timestamp(now)

        result = SwapResult(
            amount_in=amount_in,
            amount_spent=trade.amount_in,
            amount_out=trade.amount_out,
            limit_sqrt_price_x96=limit_sqrt_price_x96,
            limit_reached=trade.limit_reached,
        )
        if result.partial:
            logger.info(
                "Partial fill at price ceiling: spent=%d of %d out=%d",
                result.amount_spent, amount_in, result.amount_out,
            )
        else:
            logger.info("Swap filled: spent=%d out=%d", result.amount_spent, result.amount_out)
        return result
