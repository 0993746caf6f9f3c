# tests/paper_trading/test_portfolio.py
"""Tests for portfolio accounting and P&L reconciliation."""

import random

import pytest

from copysim.exceptions import AccountingError
from copysim.paper_trading.portfolio import (
    create_portfolio,
    recompute_portfolio,
    reconcile_pnl,
)
from copysim.paper_trading.position_manager import (
    apply_buy,
    apply_sell,
    new_position,
    position_value,
)


def test_new_portfolio_is_all_cash():
    portfolio = create_portfolio(1000.0)

    assert portfolio.id.startswith("portfolio_")
    assert portfolio.total_value == 1000.0
    assert portfolio.available_cash == 1000.0
    assert portfolio.total_pnl == 0.0
    assert portfolio.positions == []


def test_buy_mark_sell_sell_cycle(make_trade):
    """Buy 100 @ 1.00, mark to 1.20, sell half twice, 1% fee throughout."""
    portfolio = create_portfolio(1000.0)

    buy = make_trade(side="BUY", shares=100, price=1.0, fee=1.0)
    position = new_position(buy)
    apply_buy(position, buy)
    portfolio.available_cash -= buy.total_cost + buy.fee
    recompute_portfolio(portfolio, [position], 1000.0)

    assert portfolio.available_cash == pytest.approx(899.0)
    assert portfolio.total_value == pytest.approx(999.0)
    assert portfolio.total_pnl == pytest.approx(-1.0)

    position.current_price = 1.2
    recompute_portfolio(portfolio, [position], 1000.0)
    assert portfolio.total_value == pytest.approx(1019.0)
    assert portfolio.total_pnl == pytest.approx(19.0)

    for _ in range(2):
        sell = make_trade(side="SELL", shares=50, price=1.2, fee=0.6)
        apply_sell(position, sell)
        portfolio.available_cash += sell.total_cost - sell.fee
        recompute_portfolio(portfolio, [position], 1000.0)

    assert portfolio.available_cash == pytest.approx(1017.80)
    assert portfolio.total_value == pytest.approx(1017.80)
    assert portfolio.total_pnl == pytest.approx(17.80)
    assert portfolio.total_pnl_percent == pytest.approx(1.78)
    assert portfolio.positions == []
    assert portfolio.closed_positions_count == 1
    assert portfolio.win_rate == 100.0
    assert reconcile_pnl(portfolio, [position]) == pytest.approx(0.0, abs=1e-9)


def test_recompute_stamps_new_snapshot_id():
    portfolio = create_portfolio(500.0)
    first_id = portfolio.id

    recompute_portfolio(portfolio, [], 500.0)

    assert portfolio.id != first_id


def test_win_rate_over_closed_positions(make_trade):
    portfolio = create_portfolio(1000.0)
    positions = []
    for i, exit_price in enumerate([1.5, 0.5, 2.0]):
        buy = make_trade(shares=10, price=1.0, market_id=f"m{i}")
        pos = new_position(buy)
        apply_buy(pos, buy)
        apply_sell(pos, make_trade(side="SELL", shares=10, price=exit_price, market_id=f"m{i}"))
        positions.append(pos)

    recompute_portfolio(portfolio, positions, 1000.0)

    assert portfolio.closed_positions_count == 3
    assert portfolio.win_rate == pytest.approx(200 / 3)


def test_reconcile_logs_by_default():
    portfolio = create_portfolio(1000.0)
    portfolio.total_pnl = 5.0

    assert reconcile_pnl(portfolio, []) == pytest.approx(5.0)


def test_reconcile_strict_raises():
    portfolio = create_portfolio(1000.0)
    portfolio.total_pnl = 5.0

    with pytest.raises(AccountingError):
        reconcile_pnl(portfolio, [], strict=True)


def test_reconcile_within_tolerance():
    portfolio = create_portfolio(1000.0)
    portfolio.total_pnl = 0.005

    assert reconcile_pnl(portfolio, [], strict=True) == pytest.approx(0.005)


@pytest.mark.parametrize("seed", [1, 7, 42])
def test_invariants_hold_over_random_sequences(make_trade, seed):
    """Random buys, sells and re-marks across a few outcomes."""
    rng = random.Random(seed)
    initial = 10000.0
    fee_rate = 0.01
    portfolio = create_portfolio(initial)
    current = {}
    retired = []

    for _ in range(300):
        key = rng.choice(["a", "b", "c"])
        price = round(rng.uniform(0.05, 0.95), 3)
        action = rng.random()
        position = current.get(key)

        if action < 0.45:
            shares = round(rng.uniform(1, 200), 2)
            buy = make_trade(shares=shares, price=price, fee=shares * price * fee_rate, market_id=key)
            if portfolio.available_cash < buy.total_cost + buy.fee:
                continue
            if position is None or not position.is_open:
                if position is not None:
                    retired.append(position)
                position = new_position(buy)
                current[key] = position
            apply_buy(position, buy)
            portfolio.available_cash -= buy.total_cost + buy.fee
        elif action < 0.8:
            if position is None or not position.is_open:
                continue
            shares = min(round(rng.uniform(1, 200), 2), position.shares)
            sell = make_trade(side="SELL", shares=shares, price=price, fee=shares * price * fee_rate, market_id=key)
            apply_sell(position, sell)
            portfolio.available_cash += sell.total_cost - sell.fee
        else:
            if position is None or not position.is_open:
                continue
            position.current_price = price

        all_positions = list(current.values()) + retired
        recompute_portfolio(portfolio, all_positions, initial)

        open_value = sum(position_value(p) for p in all_positions if p.is_open)
        assert portfolio.total_value == pytest.approx(portfolio.available_cash + open_value)
        assert portfolio.total_pnl == pytest.approx(portfolio.total_value - initial)
        assert portfolio.available_cash >= -1e-9
        for p in all_positions:
            assert p.shares >= 0
            if not p.is_open:
                assert p.shares == 0 and p.unrealized_pnl == 0
        assert abs(reconcile_pnl(portfolio, all_positions)) < 1e-6
