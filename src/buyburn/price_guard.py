"""PriceGuard — time-weighted deviation check + execution price ceiling.

Implements:
- Reference mean tick over a short look-back window of the pool oracle
- Upward-deviation rejection (a pumped price must not be bought into)
- Ceiling sqrt price at current_tick + max_deviation_bps for the swap
"""

from __future__ import annotations

import logging
from typing import Dict

from buyburn.constants import TWAP_WINDOW_SEC
from buyburn.errors import PriceDeviationExceeded
from buyburn.exchange import ExchangePool
from buyburn.tick_math import MAX_SQRT_RATIO, clamp_tick, get_sqrt_ratio_at_tick

logger = logging.getLogger(__name__)


def _div_toward_zero(numerator: int, denominator: int) -> int:
    q = abs(numerator) // abs(denominator)
    return q if (numerator >= 0) == (denominator > 0) else -q


class PriceObservation:
    """Current tick and the window's mean tick.  Recomputed per action."""

    def __init__(self, current_tick: int, reference_mean_tick: int) -> None:
        self.current_tick = current_tick
        self.reference_mean_tick = reference_mean_tick

    @property
    def deviation(self) -> int:
        return self.current_tick - self.reference_mean_tick

    def to_dict(self) -> Dict[str, int]:
        return {
            "current_tick": self.current_tick,
            "reference_mean_tick": self.reference_mean_tick,
            "deviation": self.deviation,
        }


class PriceGuard:
    """Bounds the buy price relative to the pool's recent mean tick.

    Only upward deviation is rejected.  A price that dropped below the
    reference mean passes, and the ceiling still sits max_deviation_bps
    ticks above the current tick.
    """

    def __init__(self, window_sec: int = TWAP_WINDOW_SEC) -> None:
        if window_sec <= 0:
            raise ValueError("TWAP window must be positive: {}".format(window_sec))
        self.window_sec = window_sec

    def observe(self, pool: ExchangePool) -> PriceObservation:
        cum_previous, cum_current = pool.observe([self.window_sec, 0])
        reference = _div_toward_zero(cum_current - cum_previous, self.window_sec)
        current_tick = pool.current_state().tick
        return PriceObservation(current_tick, reference)

    def check(self, observation: PriceObservation, max_deviation_bps: int) -> None:
        if observation.deviation > max_deviation_bps:
            logger.warning(
                "Price deviation exceeded: tick=%d mean=%d max=%d",
                observation.current_tick, observation.reference_mean_tick, max_deviation_bps,
            )
            raise PriceDeviationExceeded(
                observation.current_tick,
                observation.reference_mean_tick,
                max_deviation_bps,
            )

    def limit_for(self, observation: PriceObservation, max_deviation_bps: int) -> int:
        """Ceiling sqrt price for a checked observation."""
        limit_tick = clamp_tick(observation.current_tick + max_deviation_bps)
        return min(get_sqrt_ratio_at_tick(limit_tick), MAX_SQRT_RATIO - 1)

    def limit_price(self, pool: ExchangePool, max_deviation_bps: int) -> int:
        """Observe, check, and return the Q64.96 ceiling for the next buy."""
        observation = self.observe(pool)
        self.check(observation, max_deviation_bps)
        limit = self.limit_for(observation, max_deviation_bps)
        logger.debug(
            "Price guard passed: tick=%d mean=%d limit_tick=%d",
            observation.current_tick,
            observation.reference_mean_tick,
            observation.current_tick + max_deviation_bps,
        )
        return limit
