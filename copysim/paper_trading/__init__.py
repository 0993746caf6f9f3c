"""Copied-portfolio simulation: order books, fills and the ledger."""

from .execution_sim import ExecutionSimulator
from .metrics import CopyTradingMetrics, format_report
from .orderbook import OrderBook, OrderLevel, mid_price, spread, total_depth
from .portfolio import Portfolio, create_portfolio, recompute_portfolio, reconcile_pnl
from .position_manager import (
    Position,
    apply_buy,
    apply_sell,
    new_position,
    position_id,
    recompute_unrealized,
    settle_position,
)

__all__ = [
    "ExecutionSimulator",
    "CopyTradingMetrics",
    "format_report",
    "OrderBook",
    "OrderLevel",
    "mid_price",
    "spread",
    "total_depth",
    "Portfolio",
    "create_portfolio",
    "recompute_portfolio",
    "reconcile_pnl",
    "Position",
    "apply_buy",
    "apply_sell",
    "new_position",
    "position_id",
    "recompute_unrealized",
    "settle_position",
]
