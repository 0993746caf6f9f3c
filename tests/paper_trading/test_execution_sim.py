# tests/paper_trading/test_execution_sim.py
"""Tests for execution simulation against the order book."""

import math
import random

import pytest

from copysim.exceptions import (
    EmptyBookError,
    ExcessiveSlippageError,
    InsufficientLiquidityError,
)
from copysim.paper_trading.execution_sim import ExecutionSimulator
from copysim.paper_trading.orderbook import OrderBook


class TestExecutionSimulator:
    @pytest.fixture
    def simulator(self):
        return ExecutionSimulator(max_slippage_percent=10.0, taker_fee_rate=0.01)

    @pytest.fixture
    def book(self):
        return OrderBook.from_levels(
            "m1",
            "t1",
            bids=[(0.64, 10000), (0.63, 20000)],
            asks=[(0.65, 50000), (0.66, 30000)],
        )

    def test_preceding_trade_consumes_front_of_book(self, simulator, book, make_trade):
        """The copied trader took 40k at 0.65, leaving 10k there for us."""
        preceding = make_trade(side="BUY", shares=40000, price=0.65)

        result = simulator.simulate("BUY", 20000, book, preceding_trade=preceding)

        assert [(f.price, f.shares) for f in result.fills] == [(0.65, 10000), (0.66, 10000)]
        assert result.executed_shares == 20000
        assert result.average_price == pytest.approx(0.655)
        assert result.total_cost == pytest.approx(13100)
        assert not result.is_partial

    def test_book_is_not_mutated(self, simulator, book, make_trade):
        simulator.simulate("BUY", 20000, book, preceding_trade=make_trade(shares=40000))

        assert book.asks[0].size == 50000
        assert book.asks[0].cumulative_size == 50000

    def test_fully_consumed_level_is_dropped(self, simulator, book, make_trade):
        preceding = make_trade(shares=50000, price=0.65)

        result = simulator.simulate("BUY", 1000, book, preceding_trade=preceding)

        assert [f.price for f in result.fills] == [0.66]

    def test_price_impact_against_mid(self, simulator, book):
        result = simulator.simulate("BUY", 1000, book)

        # mid = 0.645, fill at 0.65
        assert result.average_price == pytest.approx(0.65)
        assert result.price_impact == pytest.approx((0.65 - 0.645) / 0.645 * 100)

    def test_sell_walks_bids(self, simulator, book):
        result = simulator.simulate("SELL", 15000, book)

        assert [(f.price, f.shares) for f in result.fills] == [(0.64, 10000), (0.63, 5000)]
        assert result.price_impact < 0

    def test_zero_size_levels_skipped(self, simulator):
        book = OrderBook.from_levels("m1", "t1", bids=[(0.49, 100)], asks=[(0.50, 0), (0.51, 100)])

        result = simulator.simulate("BUY", 50, book)

        assert [f.price for f in result.fills] == [0.51]

    def test_empty_side_raises(self, simulator):
        no_asks = OrderBook.from_levels("m1", "t1", bids=[(0.5, 100)], asks=[])
        with pytest.raises(EmptyBookError):
            simulator.simulate("BUY", 10, no_asks)

        no_bids = OrderBook.from_levels("m1", "t1", bids=[], asks=[(0.5, 100)])
        with pytest.raises(EmptyBookError):
            simulator.simulate("SELL", 10, no_bids)

    def test_insufficient_liquidity_skips_by_default(self, simulator, book):
        with pytest.raises(InsufficientLiquidityError) as exc_info:
            simulator.simulate("BUY", 100000, book)

        assert exc_info.value.fill_percentage == pytest.approx(80.0)
        assert exc_info.value.reason == "insufficient_liquidity"

    def test_partial_fill_allowed_when_policy_off(self, book):
        simulator = ExecutionSimulator(skip_on_insufficient_liquidity=False)

        result = simulator.simulate("BUY", 100000, book)

        assert result.is_partial
        assert result.executed_shares == 80000
        assert sum(f.shares for f in result.fills) == result.executed_shares
        assert result.fill_percentage == pytest.approx(80.0)

    def test_excessive_slippage_skips(self, simulator):
        thin = OrderBook.from_levels("m1", "t1", bids=[(0.40, 100)], asks=[(0.60, 1000)])

        with pytest.raises(ExcessiveSlippageError) as exc_info:
            simulator.simulate("BUY", 100, thin)

        assert exc_info.value.price_impact == pytest.approx(20.0)

    def test_excessive_slippage_allowed_when_policy_off(self):
        simulator = ExecutionSimulator(skip_on_insufficient_liquidity=False)
        thin = OrderBook.from_levels("m1", "t1", bids=[(0.40, 100)], asks=[(0.60, 1000)])

        result = simulator.simulate("BUY", 100, thin)

        assert result.average_price == pytest.approx(0.60)

    def test_taker_and_maker_fees(self, simulator):
        assert simulator.calculate_fee(100.0) == pytest.approx(1.0)
        assert simulator.calculate_fee(100.0, is_maker=True) == 0.0

    def test_slippage_estimate(self, simulator):
        estimate = simulator.estimate_slippage_from_size(1000, 100000, "BUY")
        assert estimate == pytest.approx(0.005 + math.sqrt(0.01) * 0.05)

    def test_slippage_estimate_without_volume(self, simulator):
        assert simulator.estimate_slippage_from_size(1000, 0, "BUY") == pytest.approx(0.10)


def _random_book(rng):
    best_bid = round(rng.uniform(0.05, 0.85), 2)
    best_ask = round(best_bid + rng.choice([0.01, 0.02, 0.05]), 2)
    bids = [
        (round(best_bid - 0.01 * i, 2), rng.choice([0, rng.uniform(1, 5000)]))
        for i in range(rng.randint(1, 6))
        if best_bid - 0.01 * i > 0
    ]
    asks = [
        (round(best_ask + 0.01 * i, 2), rng.choice([0, rng.uniform(1, 5000)]))
        for i in range(rng.randint(1, 6))
    ]
    return OrderBook.from_levels("m1", "t1", bids=bids, asks=asks)


@pytest.mark.parametrize("seed", [3, 11, 99])
def test_fill_invariants_over_random_books(make_trade, seed):
    """Random books, preceding fills and both policy settings."""
    rng = random.Random(seed)
    outcomes = {"filled": 0, "skipped": 0}

    for _ in range(200):
        book = _random_book(rng)
        before = [(lvl.price, lvl.size, lvl.cumulative_size) for lvl in book.bids + book.asks]
        side = rng.choice(["BUY", "SELL"])
        desired = rng.uniform(1, 12000)
        preceding = None
        if rng.random() < 0.7:
            preceding = make_trade(side=side, shares=rng.uniform(1, 8000))
        simulator = ExecutionSimulator(
            max_slippage_percent=rng.choice([1.0, 10.0, 50.0]),
            skip_on_insufficient_liquidity=rng.random() < 0.5,
        )

        try:
            result = simulator.simulate(side, desired, book, preceding_trade=preceding)
        except (InsufficientLiquidityError, ExcessiveSlippageError):
            assert simulator.skip_on_insufficient_liquidity
            outcomes["skipped"] += 1
            continue
        finally:
            assert [(lvl.price, lvl.size, lvl.cumulative_size) for lvl in book.bids + book.asks] == before

        outcomes["filled"] += 1
        assert result.executed_shares <= desired + 1e-9
        assert sum(f.shares for f in result.fills) == pytest.approx(result.executed_shares)
        assert sum(f.cost for f in result.fills) == pytest.approx(result.total_cost)
        assert all(f.shares > 0 for f in result.fills)

        prices = [f.price for f in result.fills]
        assert prices == sorted(prices, reverse=(side == "SELL"))

        levels = book.asks if side == "BUY" else book.bids
        available = sum(lvl.size for lvl in levels) - (preceding.shares if preceding else 0.0)
        assert result.executed_shares <= max(available, 0.0) + 1e-6

        if simulator.skip_on_insufficient_liquidity:
            assert result.executed_shares == pytest.approx(desired)
            assert abs(result.price_impact) <= simulator.max_slippage_percent

    assert outcomes["filled"] > 0
    assert outcomes["skipped"] > 0
