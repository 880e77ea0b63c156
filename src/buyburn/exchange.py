"""Exchange pool interface + PAPER concentrated-liquidity pool.

The engine reads the pool's cumulative-tick oracle and current state, and
submits a single price-bounded trade.  PaperPool simulates one liquidity
range with exact integer swap math:
- tick cumulative observations written once per second, interpolated on read
- price-limited trades fill partially instead of failing
- fee tier charged on input, fees stay in the pool
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Any, Callable, Deque, List, Sequence, Tuple

from buyburn.constants import (
    DEFAULT_FEE_TIER,
    FEE_TIER_DENOMINATOR,
    PAPER_OBSERVATION_CARDINALITY,
)
from buyburn.ledger import AssetLedger
from buyburn.tick_math import (
    MAX_SQRT_RATIO,
    MIN_SQRT_RATIO,
    Q96,
    get_sqrt_ratio_at_tick,
    get_tick_at_sqrt_ratio,
)

logger = logging.getLogger(__name__)


class PoolState:
    """Slot-0 style view of the pool."""

    def __init__(self, sqrt_price_x96: int, tick: int, liquidity: int) -> None:
        self.sqrt_price_x96 = sqrt_price_x96
        self.tick = tick
        self.liquidity = liquidity


class TradeResult:
    def __init__(
        self,
        amount_in: int,
        amount_out: int,
        fee_amount: int,
        sqrt_price_x96_after: int,
        tick_after: int,
        limit_reached: bool,
    ) -> None:
        self.amount_in = amount_in
        self.amount_out = amount_out
        self.fee_amount = fee_amount
        self.sqrt_price_x96_after = sqrt_price_x96_after
        self.tick_after = tick_after
        self.limit_reached = limit_reached

    def to_dict(self) -> dict:
        return {
            "amount_in": self.amount_in,
            "amount_out": self.amount_out,
            "fee_amount": self.fee_amount,
            "sqrt_price_x96_after": self.sqrt_price_x96_after,
            "tick_after": self.tick_after,
            "limit_reached": self.limit_reached,
        }


class ExchangePool(ABC):
    """Capability contract the engine needs from an AMM pool."""

    @abstractmethod
    def observe(self, seconds_agos: Sequence[int]) -> List[int]:
        """Cumulative tick sums at each ``seconds_ago`` offset from now."""

    @abstractmethod
    def current_state(self) -> PoolState:
        """Current sqrt price, tick and in-range liquidity."""

    @abstractmethod
    def trade(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        payer: str,
        recipient: str,
        amount_in: int,
        min_amount_out: int,
        sqrt_price_limit_x96: int,
    ) -> TradeResult:
        """Swap up to ``amount_in``; stops early at the price limit."""


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


class PaperPool(ExchangePool):
    """Single-range constant-liquidity pool (token1 priced in token0).

    Buying token0 with token1 moves the price (and tick) up; selling
    token0 moves it down.
    """

    def __init__(
        self,
        ledger: AssetLedger,
        token0: str,
        token1: str,
        liquidity: int,
        tick: int,
        clock: Callable[[], int],
        fee_tier: int = DEFAULT_FEE_TIER,
        address: str = "paper.pool",
        cardinality: int = PAPER_OBSERVATION_CARDINALITY,
    ) -> None:
        if liquidity <= 0:
            raise ValueError("Liquidity must be positive: {}".format(liquidity))
        self.ledger = ledger
        self.token0 = token0
        self.token1 = token1
        self.liquidity = liquidity
        self.fee_tier = fee_tier
        self.address = address
        self._clock = clock
        self._sqrt_price_x96 = get_sqrt_ratio_at_tick(tick)
        self._tick = tick
        self._cardinality = cardinality
        # (timestamp, tick_cumulative)
        self._observations = deque(maxlen=cardinality)  # type: Deque[Tuple[int, int]]
        self._observations.append((clock(), 0))

    # ── Oracle ────────────────────────────────────────────────────────────────

    def _write_observation(self) -> None:
        """Accumulate the outgoing tick up to now (once per timestamp)."""
        now = self._clock()
        last_ts, last_cum = self._observations[-1]
        if now == last_ts:
            return
        if now < last_ts:
            raise ValueError("Pool clock moved backwards: {} < {}".format(now, last_ts))
        self._observations.append((now, last_cum + self._tick * (now - last_ts)))

    def _cumulative_at(self, target: int) -> int:
        last_ts, last_cum = self._observations[-1]
        if target >= last_ts:
            return last_cum + self._tick * (target - last_ts)

        oldest_ts = self._observations[0][0]
        if target < oldest_ts:
            raise ValueError(
                "Observation too old: target={} oldest={}".format(target, oldest_ts)
            )

        obs = list(self._observations)
        for (ts_a, cum_a), (ts_b, cum_b) in zip(obs, obs[1:]):
            if ts_a <= target < ts_b:
                return cum_a + (cum_b - cum_a) * (target - ts_a) // (ts_b - ts_a)
        return obs[-1][1]

    def observe(self, seconds_agos: Sequence[int]) -> List[int]:
        now = self._clock()
        return [self._cumulative_at(now - ago) for ago in seconds_agos]

    def current_state(self) -> PoolState:
        return PoolState(self._sqrt_price_x96, self._tick, self.liquidity)

    def set_tick(self, tick: int) -> None:
        """Move the price instantly (simulates another trader or a manipulation)."""
        self._write_observation()
        self._sqrt_price_x96 = get_sqrt_ratio_at_tick(tick)
        self._tick = tick

    # ── Swaps ─────────────────────────────────────────────────────────────────

    def trade(
        self,
        token_in: str,
        token_out: str,
        fee_tier: int,
        payer: str,
        recipient: str,
        amount_in: int,
        min_amount_out: int,
        sqrt_price_limit_x96: int,
    ) -> TradeResult:
        if {token_in, token_out} != {self.token0, self.token1}:
            raise ValueError("Pool does not trade {} -> {}".format(token_in, token_out))
        if fee_tier != self.fee_tier:
            raise ValueError("Fee tier mismatch: {} != {}".format(fee_tier, self.fee_tier))
        if amount_in <= 0:
            raise ValueError("Trade amount must be positive: {}".format(amount_in))

        zero_for_one = token_in == self.token0
        current = self._sqrt_price_x96
        if not MIN_SQRT_RATIO < sqrt_price_limit_x96 < MAX_SQRT_RATIO:
            raise ValueError("Price limit {} out of bounds".format(sqrt_price_limit_x96))
        if zero_for_one:
            already_reached = sqrt_price_limit_x96 >= current
        else:
            already_reached = sqrt_price_limit_x96 <= current
        if already_reached:
            if min_amount_out > 0:
                raise ValueError("Too little received: 0 < {}".format(min_amount_out))
            logger.info("PAPER trade: price limit %d already reached, zero fill", sqrt_price_limit_x96)
            return TradeResult(0, 0, 0, current, self._tick, True)

        amount_less_fee = amount_in * (FEE_TIER_DENOMINATOR - self.fee_tier) // FEE_TIER_DENOMINATOR
        max_in = self._amount_in_to_reach(current, sqrt_price_limit_x96, zero_for_one)

        if amount_less_fee >= max_in:
            next_sqrt = sqrt_price_limit_x96
            used = max_in
            fee_amount = _ceil_div(used * self.fee_tier, FEE_TIER_DENOMINATOR - self.fee_tier)
            spent = min(amount_in, used + fee_amount)
            limit_reached = True
        else:
            next_sqrt = self._next_sqrt_price(current, amount_less_fee, zero_for_one)
            spent = amount_in
            fee_amount = amount_in - amount_less_fee
            limit_reached = False

        amount_out = self._amount_out(current, next_sqrt, zero_for_one)
        if amount_out < min_amount_out:
            raise ValueError("Too little received: {} < {}".format(amount_out, min_amount_out))

        self.ledger.transfer(token_in, payer, self.address, spent)
        self.ledger.transfer(token_out, self.address, recipient, amount_out)

        self._write_observation()
        self._sqrt_price_x96 = next_sqrt
        self._tick = get_tick_at_sqrt_ratio(next_sqrt)

        logger.info(
            "PAPER trade: %s %d -> %s %d tick=%d limit_reached=%s",
            token_in, spent, token_out, amount_out, self._tick, limit_reached,
        )
        return TradeResult(spent, amount_out, fee_amount, next_sqrt, self._tick, limit_reached)

    def _amount_in_to_reach(self, current: int, target: int, zero_for_one: bool) -> int:
        L = self.liquidity
        if zero_for_one:
            return _ceil_div(L * Q96 * (current - target), current * target)
        return _ceil_div(L * (target - current), Q96)

    def _next_sqrt_price(self, current: int, amount: int, zero_for_one: bool) -> int:
        L = self.liquidity
        if zero_for_one:
            numerator = L * Q96
            return _ceil_div(numerator * current, numerator + amount * current)
        return current + amount * Q96 // L

    def _amount_out(self, before: int, after: int, zero_for_one: bool) -> int:
        L = self.liquidity
        if zero_for_one:
            return L * (before - after) // Q96
        return L * Q96 * (after - before) // (after * before)

    # ── Atomic participant ────────────────────────────────────────────────────

    def snapshot(self) -> Any:
        return self._sqrt_price_x96, self._tick, list(self._observations)

    def restore(self, state: Any) -> None:
        sqrt_price, tick, observations = state
        self._sqrt_price_x96 = sqrt_price
        self._tick = tick
        self._observations = deque(observations, maxlen=self._cardinality)
