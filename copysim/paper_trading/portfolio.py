"""Portfolio-level accounting.

``total_value == available_cash + sum(shares * current_price)`` over open
positions, and ``total_pnl == total_value - initial_capital``. Both hold
after every call to ``recompute_portfolio``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable

import structlog

from copysim.exceptions import AccountingError
from copysim.paper_trading.position_manager import Position, position_value, recompute_unrealized
from copysim.utils.parsing import generate_id

logger = structlog.get_logger()


def create_portfolio_id() -> str:
    return generate_id("portfolio")


@dataclass
class Portfolio:
    id: str
    timestamp: datetime
    total_invested: float  # initial capital baseline
    total_value: float
    available_cash: float
    total_pnl: float = 0.0
    total_pnl_percent: float = 0.0
    positions: list[Position] = field(default_factory=list)
    closed_positions_count: int = 0
    win_rate: float = 0.0


def create_portfolio(initial_capital: float) -> Portfolio:
    return Portfolio(
        id=create_portfolio_id(),
        timestamp=datetime.now(timezone.utc),
        total_invested=initial_capital,
        total_value=initial_capital,
        available_cash=initial_capital,
    )


def recompute_portfolio(
    portfolio: Portfolio,
    all_positions: Iterable[Position],
    initial_capital: float,
) -> Portfolio:
    """Recompute every aggregate from the full position set.

    Must run after any cash or position change. Stamps a fresh snapshot id.
    """
    all_positions = list(all_positions)
    open_positions = [p for p in all_positions if p.is_open]
    for pos in open_positions:
        recompute_unrealized(pos)

    positions_value = sum(position_value(p) for p in open_positions)

    portfolio.positions = open_positions
    portfolio.total_value = portfolio.available_cash + positions_value
    portfolio.total_pnl = portfolio.total_value - initial_capital
    portfolio.total_pnl_percent = (
        portfolio.total_pnl / initial_capital * 100 if initial_capital else 0.0
    )

    closed_positions = [p for p in all_positions if not p.is_open]
    portfolio.closed_positions_count = len(closed_positions)
    if closed_positions:
        wins = sum(1 for p in closed_positions if p.realized_pnl > 0)
        portfolio.win_rate = wins / len(closed_positions) * 100
    else:
        portfolio.win_rate = 0.0

    portfolio.timestamp = datetime.now(timezone.utc)
    portfolio.id = create_portfolio_id()
    return portfolio


def reconcile_pnl(
    portfolio: Portfolio,
    all_positions: Iterable[Position],
    tolerance: float = 0.01,
    strict: bool = False,
) -> float:
    """Compare canonical P&L against realized + unrealized across positions.

    Returns the discrepancy. Above ``tolerance`` it is logged, or raised as
    AccountingError when ``strict`` is set.
    """
    all_positions = list(all_positions)
    realized = sum(p.realized_pnl for p in all_positions)
    unrealized = sum(p.unrealized_pnl for p in all_positions if p.is_open)
    discrepancy = portfolio.total_pnl - (realized + unrealized)

    if abs(discrepancy) > tolerance:
        if strict:
            raise AccountingError(
                f"P&L mismatch: total {portfolio.total_pnl:.2f} vs "
                f"positions {realized + unrealized:.2f}"
            )
        logger.warning(
            "pnl_discrepancy",
            total_pnl=round(portfolio.total_pnl, 2),
            realized=round(realized, 2),
            unrealized=round(unrealized, 2),
            discrepancy=round(discrepancy, 4),
        )
    return discrepancy
