"""Position ledger for the copied portfolio.

Positions are keyed by (market, outcome). All mutations go through the
functions below so ``unrealized_pnl`` always equals
``shares * current_price - total_invested`` for open positions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from copysim.execution.models import Trade

CLOSE_EPSILON = 0.001


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def position_id(market_id: str, outcome_id: str) -> str:
    return f"pos_{market_id}_{outcome_id}"


@dataclass
class Position:
    """Aggregate exposure to one (market, outcome) pair."""

    id: str
    market_id: str
    outcome_id: str
    market_question: str = ""
    shares: float = 0.0
    average_entry_price: float = 0.0
    total_invested: float = 0.0
    current_price: float = 0.0
    unrealized_pnl: float = 0.0
    realized_pnl: float = 0.0
    is_open: bool = True
    opened_at: datetime = field(default_factory=_utcnow)
    closed_at: Optional[datetime] = None
    updated_at: datetime = field(default_factory=_utcnow)
    average_exit_price: Optional[float] = None


def new_position(trade: Trade) -> Position:
    """Zero-state position for the trade's (market, outcome)."""
    return Position(
        id=position_id(trade.market_id, trade.outcome_id),
        market_id=trade.market_id,
        outcome_id=trade.outcome_id,
        market_question=trade.market_question,
        current_price=trade.price,
        opened_at=trade.timestamp,
        updated_at=trade.timestamp,
    )


def position_value(position: Position) -> float:
    return position.shares * position.current_price


def recompute_unrealized(position: Position) -> float:
    if not position.is_open or position.shares == 0:
        position.unrealized_pnl = 0.0
    else:
        position.unrealized_pnl = position.shares * position.current_price - position.total_invested
    return position.unrealized_pnl


def apply_buy(position: Position, trade: Trade) -> None:
    """Add a BUY to the position. The fee is capitalised into the cost basis."""
    position.shares += trade.shares
    position.total_invested += trade.total_cost + trade.fee
    position.average_entry_price = (
        position.total_invested / position.shares if position.shares > 0 else 0.0
    )
    position.current_price = trade.price
    position.updated_at = _utcnow()
    recompute_unrealized(position)


def apply_sell(position: Position, trade: Trade) -> float:
    """Remove a SELL from the position and return the realized P&L it produced.

    Sells larger than the holding are clamped. Selling from a closed
    position does nothing and returns 0.
    """
    if not position.is_open or position.shares <= 0:
        return 0.0

    shares_sold = min(trade.shares, position.shares)
    proceeds = trade.total_cost - trade.fee
    if shares_sold < trade.shares and trade.shares > 0:
        proceeds *= shares_sold / trade.shares

    cost_basis = position.average_entry_price * shares_sold
    realized = proceeds - cost_basis

    position.realized_pnl += realized
    position.shares -= shares_sold
    position.total_invested -= cost_basis
    position.current_price = trade.price
    position.updated_at = _utcnow()

    if position.shares <= CLOSE_EPSILON:
        close_position(position, exit_price=trade.price)
    else:
        recompute_unrealized(position)

    return realized


def close_position(position: Position, exit_price: float) -> None:
    position.shares = 0.0
    position.total_invested = 0.0
    position.unrealized_pnl = 0.0
    position.is_open = False
    position.average_exit_price = exit_price
    position.closed_at = _utcnow()
    position.updated_at = position.closed_at


def settle_position(position: Position, settlement_price: float) -> float:
    """Force-close at the market's payout price and return the settlement value.

    No counterparty trade exists, so this bypasses ``apply_sell``. The
    settlement P&L is added to any P&L already realized by earlier sells.
    """
    if not position.is_open:
        return 0.0
    settlement_value = position.shares * settlement_price
    final_pnl = settlement_value - position.total_invested

    position.current_price = settlement_price
    position.realized_pnl += final_pnl
    close_position(position, exit_price=settlement_price)
    return settlement_value
