"""Tests for the PAPER concentrated-liquidity pool."""

import pytest

from buyburn.clock import ManualClock
from buyburn.errors import TransferFailed
from buyburn.exchange import PaperPool
from buyburn.ledger import AssetLedger
from buyburn.tick_math import MAX_SQRT_RATIO, get_sqrt_ratio_at_tick

BASE = "WETH"
TARGET = "TOKEN"
TRADER = "trader"


def _pool(liquidity: int = 10 ** 24, tick: int = 100, reserve: int = 10 ** 30):
    clock = ManualClock(1000)
    ledger = AssetLedger()
    pool = PaperPool(ledger, token0=TARGET, token1=BASE, liquidity=liquidity, tick=tick, clock=clock)
    ledger.mint(TARGET, pool.address, reserve)
    ledger.mint(BASE, pool.address, reserve)
    ledger.mint(BASE, TRADER, 10 ** 20)
    ledger.mint(TARGET, TRADER, 10 ** 20)
    return pool, ledger, clock


# ── Oracle ────────────────────────────────────────────────────────────────────

def test_observe_constant_tick() -> None:
    pool, _, clock = _pool(tick=100)
    clock.advance(10)
    prev, cur = pool.observe([1, 0])
    assert cur - prev == 100


def test_observe_interpolates_history() -> None:
    pool, _, clock = _pool(tick=100)
    clock.advance(10)
    pool.set_tick(200)
    clock.advance(10)
    a, b, c = pool.observe([20, 10, 0])
    assert b - a == 100 * 10
    assert c - b == 200 * 10
    prev, cur = pool.observe([15, 5])
    assert cur - prev == 100 * 5 + 200 * 5


def test_same_second_tick_jump_not_in_mean() -> None:
    pool, _, clock = _pool(tick=95)
    clock.advance(60)
    pool.set_tick(100)
    prev, cur = pool.observe([1, 0])
    assert cur - prev == 95
    assert pool.current_state().tick == 100


def test_observe_too_old_rejected() -> None:
    pool, _, clock = _pool()
    with pytest.raises(ValueError, match="too old"):
        pool.observe([1, 0])


# ── Trades ────────────────────────────────────────────────────────────────────

def test_buy_full_fill_moves_price_up() -> None:
    pool, ledger, _ = _pool()
    before = pool.current_state()
    limit = get_sqrt_ratio_at_tick(110)

    result = pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 0, limit)

    assert result.limit_reached is False
    assert result.amount_in == 10 ** 18
    assert result.fee_amount == 3 * 10 ** 15
    assert 0 < result.amount_out < 10 ** 18
    after = pool.current_state()
    assert after.sqrt_price_x96 > before.sqrt_price_x96
    assert after.sqrt_price_x96 < limit
    assert ledger.balance_of(TRADER, BASE) == 10 ** 20 - 10 ** 18
    assert ledger.balance_of(TRADER, TARGET) == 10 ** 20 + result.amount_out


def test_buy_partial_fill_stops_at_limit() -> None:
    pool, ledger, _ = _pool(liquidity=10 ** 18)
    limit = get_sqrt_ratio_at_tick(110)

    result = pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 0, limit)

    assert result.limit_reached is True
    assert result.amount_in < 10 ** 18
    assert result.amount_out > 0
    assert pool.current_state().sqrt_price_x96 == limit
    assert pool.current_state().tick == 110
    assert ledger.balance_of(TRADER, BASE) == 10 ** 20 - result.amount_in


def test_sell_moves_price_down() -> None:
    pool, _, _ = _pool()
    limit = get_sqrt_ratio_at_tick(90)
    result = pool.trade(TARGET, BASE, 3000, TRADER, TRADER, 10 ** 18, 0, limit)
    assert result.amount_out > 0
    assert pool.current_state().tick < 100


def test_limit_at_current_price_is_zero_fill() -> None:
    pool, ledger, _ = _pool(tick=100)
    before = pool.current_state()
    trade = pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 0, get_sqrt_ratio_at_tick(100))
    assert trade.amount_in == 0
    assert trade.amount_out == 0
    assert trade.limit_reached
    assert pool.current_state().sqrt_price_x96 == before.sqrt_price_x96
    assert ledger.balance_of(TRADER, BASE) == 10 ** 20


def test_limit_behind_current_price_is_zero_fill() -> None:
    pool, _, _ = _pool(tick=100)
    trade = pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 0, get_sqrt_ratio_at_tick(90))
    assert (trade.amount_in, trade.amount_out, trade.tick_after) == (0, 0, 100)


def test_zero_fill_still_honours_min_amount_out() -> None:
    pool, _, _ = _pool(tick=100)
    with pytest.raises(ValueError, match="Too little"):
        pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 1, get_sqrt_ratio_at_tick(100))


def test_limit_out_of_bounds_rejected() -> None:
    pool, _, _ = _pool()
    with pytest.raises(ValueError, match="out of bounds"):
        pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10, 0, MAX_SQRT_RATIO)


def test_min_amount_out_enforced() -> None:
    pool, _, _ = _pool()
    with pytest.raises(ValueError, match="Too little"):
        pool.trade(BASE, TARGET, 3000, TRADER, TRADER, 10 ** 18, 10 ** 19, get_sqrt_ratio_at_tick(110))


def test_wrong_fee_tier_rejected() -> None:
    pool, _, _ = _pool()
    with pytest.raises(ValueError, match="Fee tier"):
        pool.trade(BASE, TARGET, 500, TRADER, TRADER, 10, 0, get_sqrt_ratio_at_tick(110))


def test_payer_without_funds_fails() -> None:
    pool, _, _ = _pool()
    with pytest.raises(TransferFailed):
        pool.trade(BASE, TARGET, 3000, "nobody", TRADER, 10 ** 18, 0, get_sqrt_ratio_at_tick(110))


def test_snapshot_restore() -> None:
    pool, _, clock = _pool()
    clock.advance(5)
    state = pool.snapshot()
    pool.set_tick(500)
    pool.restore(state)
    assert pool.current_state().tick == 100
    clock.advance(5)
    prev, cur = pool.observe([10, 0])
    assert cur - prev == 1000
